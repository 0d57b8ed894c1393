"""Line-oriented regex rules loaded from YAML category files.

A category file looks like::

    id: logging
    name: Logging hygiene
    rules:
      - id: console-log
        description: Use the structured logger instead of console.log
        pattern: '\\bconsole\\.log\\('
        message: console.log bypasses the logger
        suggestion: Use logger.info(...)
        replacement: 'logger.info('
        severity: warning
        certainty: definite
        extensions: [".ts", ".js"]

Category files are looked up in several directories; the first
directory that defines a category id wins and later duplicates are
ignored.  Files that fail to parse are logged and skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.fixer_shared.models import Certainty, Severity, Violation
from src.style_rules.base import Rule, iter_source_files, read_source

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (".py",)


class PatternRule(Rule):
    """Flags every line matching a regular expression."""

    def __init__(
        self,
        rule_id: str,
        category: str,
        pattern: str,
        description: str = "",
        message: str = "",
        suggestion: str | None = None,
        replacement: str | None = None,
        severity: Severity = Severity.WARNING,
        certainty: Certainty = Certainty.DEFINITE,
        extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
    ) -> None:
        self.rule_id = rule_id
        self.category = category
        self.description = description or f"Pattern {pattern!r} must not appear"
        self.message = message or self.description
        self.suggestion = suggestion
        self.replacement = replacement
        self.default_severity = severity
        self.default_certainty = certainty
        self.extensions = extensions
        self._regex = re.compile(pattern)

    def detect(self, root: Path) -> list[Violation]:
        violations: list[Violation] = []
        for path in iter_source_files(root, self.extensions):
            source = read_source(path)
            if source is None:
                continue
            for lineno, line in enumerate(source.splitlines(), start=1):
                match = self._regex.search(line)
                if match is None:
                    continue
                fix = None
                if self.replacement is not None:
                    fix = match.expand(self.replacement)
                violations.append(
                    self._violation(
                        path,
                        lineno,
                        match.start() + 1,
                        match.group(0),
                        self.message,
                        suggestion=self.suggestion,
                        fix=fix,
                    )
                )
        return violations


@dataclass
class Category:
    """A named group of rules."""
    id: str
    name: str = ""
    rules: list[Rule] = field(default_factory=list)


def category_from_dict(raw: dict[str, Any]) -> Category:
    """Build a :class:`Category` from a parsed YAML mapping.

    Raises:
        ValueError: If the mapping lacks required keys or a pattern
            does not compile.
    """
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ValueError("category file must define an 'id'")
    category_id = str(raw["id"])
    rules: list[Rule] = []
    for entry in raw.get("rules") or []:
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("pattern"):
            raise ValueError(f"rule in category '{category_id}' needs 'id' and 'pattern'")
        try:
            rules.append(
                PatternRule(
                    rule_id=str(entry["id"]),
                    category=category_id,
                    pattern=str(entry["pattern"]),
                    description=str(entry.get("description", "")),
                    message=str(entry.get("message", "")),
                    suggestion=entry.get("suggestion"),
                    replacement=entry.get("replacement"),
                    severity=Severity(entry.get("severity", Severity.WARNING.value)),
                    certainty=Certainty(entry.get("certainty", Certainty.DEFINITE.value)),
                    extensions=tuple(entry.get("extensions") or DEFAULT_EXTENSIONS),
                )
            )
        except re.error as exc:
            raise ValueError(
                f"rule '{entry['id']}' in category '{category_id}' has an invalid pattern: {exc}"
            ) from exc
    return Category(id=category_id, name=str(raw.get("name", category_id)), rules=rules)


def load_categories_from_dir(directory: Path | str) -> list[Category]:
    """Load every ``*.yaml`` / ``*.yml`` category file in *directory*."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    categories: list[Category] = []
    files = sorted(
        p for p in directory.iterdir() if p.suffix in (".yaml", ".yml") and p.is_file()
    )
    for path in files:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            categories.append(category_from_dict(raw))
        except (OSError, yaml.YAMLError, ValueError) as exc:
            logger.warning("Failed to load category from %s: %s", path, exc)
    return categories


def load_categories(directories: list[Path | str]) -> list[Category]:
    """Load categories from *directories* in priority order.

    The first directory to define a category id wins.
    """
    seen: set[str] = set()
    categories: list[Category] = []
    for directory in directories:
        for category in load_categories_from_dir(directory):
            if category.id in seen:
                logger.debug(
                    "Category '%s' from %s shadowed by an earlier definition",
                    category.id,
                    directory,
                )
                continue
            seen.add(category.id)
            categories.append(category)
    return categories
