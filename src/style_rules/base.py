"""Rule base class and shared file walking."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from src.fixer_shared.models import Certainty, Severity, Violation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Excluded directories (frozenset for O(1) lookup)
# ---------------------------------------------------------------------------
EXCLUDED_DIRS: frozenset[str] = frozenset({
    "node_modules",
    ".venv",
    "venv",
    "__pycache__",
    ".git",
    "dist",
    "build",
    ".change-queue",
    ".style-fixer",
})

SNIPPET_LIMIT = 100


def iter_source_files(
    root: Path, extensions: Iterable[str] = (".py",)
) -> Iterator[Path]:
    """Yield files under *root* with one of *extensions*, sorted.

    *root* may itself be a file, in which case it is yielded when its
    suffix matches.
    """
    root = Path(root)
    suffixes = frozenset(extensions)
    if root.is_file():
        if root.suffix in suffixes:
            yield root
        return
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix not in suffixes:
            continue
        if EXCLUDED_DIRS & set(path.relative_to(root).parts):
            continue
        yield path


def read_source(path: Path) -> str | None:
    """Read a source file, returning ``None`` when it cannot be read."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except (OSError, PermissionError) as exc:
        logger.debug("Skipping unreadable file %s: %s", path, exc)
        return None


class Rule:
    """Base class for rules that report :class:`Violation` objects.

    Subclasses set the class attributes and implement :meth:`detect`.
    """

    rule_id: str = ""
    category: str = ""
    description: str = ""
    default_severity: Severity = Severity.ERROR
    default_certainty: Certainty = Certainty.DEFINITE

    @property
    def key(self) -> str:
        """Globally unique ``category/rule_id`` key."""
        return f"{self.category}/{self.rule_id}"

    def detect(self, root: Path) -> list[Violation]:
        raise NotImplementedError

    def _violation(
        self,
        file_path: Path | str,
        line: int,
        column: int,
        snippet: str,
        message: str,
        suggestion: str | None = None,
        severity: Severity | None = None,
        certainty: Certainty | None = None,
        fix: str | None = None,
    ) -> Violation:
        if len(snippet) > SNIPPET_LIMIT:
            # A truncated snippet can no longer anchor a literal fix.
            fix = None
        return Violation(
            rule_id=self.rule_id,
            category=self.category,
            message=message,
            file_path=str(file_path),
            line=line,
            column=column,
            snippet=snippet[:SNIPPET_LIMIT],
            severity=severity or self.default_severity,
            certainty=certainty or self.default_certainty,
            suggestion=suggestion,
            fix=fix,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.key}>"
