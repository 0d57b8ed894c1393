"""Rule registry: the set of rules one pipeline run fans out over."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from src.fixer_shared.protocols import RuleDetector
from src.style_rules.builtin import builtin_rules
from src.style_rules.patterns import load_categories

if TYPE_CHECKING:
    from src.fix_orchestrator.config import DetectionConfig

logger = logging.getLogger(__name__)

USER_RULE_DIR = Path.home() / ".style-fixer" / "rules"
PROJECT_RULE_DIR = Path(".style-fixer") / "rules"


def rule_key(rule: RuleDetector) -> str:
    """Return the globally unique ``category/rule_id`` key of *rule*."""
    return f"{rule.category}/{rule.rule_id}"


class RuleRegistry:
    """Ordered collection of rules keyed by ``category/rule_id``."""

    def __init__(self, rules: Iterable[RuleDetector] = ()) -> None:
        self._rules: dict[str, RuleDetector] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: RuleDetector) -> None:
        """Add *rule*.

        Raises:
            ValueError: If a rule with the same key is already registered.
        """
        key = rule_key(rule)
        if key in self._rules:
            raise ValueError(f"Duplicate rule '{key}'")
        self._rules[key] = rule

    def get(self, key: str) -> RuleDetector | None:
        return self._rules.get(key)

    @property
    def rules(self) -> list[RuleDetector]:
        return list(self._rules.values())

    @property
    def categories(self) -> list[str]:
        """Distinct categories in registration order."""
        return list(dict.fromkeys(rule.category for rule in self._rules.values()))

    def filter(self, categories: Iterable[str]) -> RuleRegistry:
        """Return a registry restricted to *categories* (empty = all)."""
        wanted = set(categories)
        if not wanted:
            return RuleRegistry(self.rules)
        return RuleRegistry(r for r in self.rules if r.category in wanted)

    def __iter__(self) -> Iterator[RuleDetector]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self._rules)


def default_registry(config: "DetectionConfig | None" = None) -> RuleRegistry:
    """Build the registry for a run.

    Rule directories are searched in priority order: configured
    ``rule_dirs``, the project's ``.style-fixer/rules``, then the user's
    ``~/.style-fixer/rules``.  Built-in rules come first unless disabled.
    A pattern rule whose key collides with an already registered rule is
    skipped with a warning.
    """
    rule_dirs: list[Path | str] = []
    include_builtin = True
    categories: list[str] = []
    if config is not None:
        rule_dirs.extend(config.rule_dirs)
        include_builtin = config.builtin_rules
        categories = list(config.categories)
    rule_dirs.extend([PROJECT_RULE_DIR, USER_RULE_DIR])

    registry = RuleRegistry(builtin_rules() if include_builtin else ())
    for category in load_categories(rule_dirs):
        for rule in category.rules:
            try:
                registry.register(rule)
            except ValueError as exc:
                logger.warning("Skipping rule: %s", exc)

    return registry.filter(categories)
