"""Shared data models for the style-fixer pipeline.

In-process records (violations, phase results) are plain dataclasses.
Everything that is persisted to the change queue is a Pydantic v2 model
so that corrupt queue entries fail validation instead of propagating.
The queue JSON uses camelCase keys; Python code uses snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    """How severe a violation is."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Certainty(str, Enum):
    """Whether a violation is definite or only potential."""
    DEFINITE = "definite"
    POTENTIAL = "potential"


SEVERITY_LEVEL: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


@dataclass(frozen=True)
class Violation:
    """One occurrence of a rule being broken, at a specific file/line."""
    rule_id: str
    category: str
    message: str
    file_path: str
    line: int
    column: int = 1
    snippet: str = ""
    severity: Severity = Severity.ERROR
    certainty: Certainty = Certainty.DEFINITE
    suggestion: str | None = None
    # Literal replacement for ``snippet`` when the rule can compute one.
    fix: str | None = None


# ---------------------------------------------------------------------------
# Queue models
# ---------------------------------------------------------------------------


class _QueueModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json(self) -> dict:
        """Serialise with the camelCase keys used on disk."""
        return self.model_dump(by_alias=True, mode="json")


class Change(_QueueModel):
    """A single line-anchored edit.

    ``line_number`` is 1-indexed and valid against the file content as it
    was at the start of the current iteration.
    """
    line_number: int = Field(..., ge=1)
    violation_type: str
    current_code: str = ""
    proposed_fix: str = ""
    explanation: str = ""
    # True when ``proposed_fix`` is a literal replacement of ``current_code``.
    mechanical: bool = False


class ChangeDescriptor(_QueueModel):
    """One rule's proposed edits to one file, for one iteration."""
    category: str
    rule: str
    target_file: str
    changes: list[Change] = Field(default_factory=list)


class MergedDescriptor(_QueueModel):
    """The union of all rules' proposed edits to one file."""
    target_file: str
    changes: list[Change] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    # ``category/rule`` keys.
    rules: list[str] = Field(default_factory=list)
    conflicts: list[int] = Field(default_factory=list)

    def ordered_changes(self) -> list[Change]:
        """Return the changes in the order they must be applied.

        Bottom-to-top: descending ``line_number``.  The sort is stable, so
        several changes on the same line keep their discovery order.
        """
        return sorted(self.changes, key=lambda c: c.line_number, reverse=True)


# ---------------------------------------------------------------------------
# Phase results
# ---------------------------------------------------------------------------


@dataclass
class RuleRunResult:
    """Outcome of one rule's detection task."""
    rule_key: str
    success: bool = False
    violations: int = 0
    descriptors: list[str] = field(default_factory=list)
    error: str = ""


@dataclass
class DetectionResult:
    """Aggregate outcome of the detection phase."""
    rules_total: int = 0
    rules_failed: int = 0
    violations_found: int = 0
    descriptors_written: int = 0
    rule_results: list[RuleRunResult] = field(default_factory=list)


@dataclass
class MergeResult:
    """Aggregate outcome of the merge phase.

    An empty ``merged_paths`` list is the convergence signal.
    """
    merged_paths: list[str] = field(default_factory=list)
    descriptors_read: int = 0
    descriptors_skipped: int = 0
    total_changes: int = 0
    conflicts: dict[str, list[int]] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return not self.merged_paths


@dataclass
class ApplyResult:
    """Result of one remediation task."""
    target_file: str = ""
    merged_path: str = ""
    success: bool = False
    cost: float | None = None
    error: str = ""
    duration_s: float = 0.0


@dataclass
class ApplySummary:
    """Aggregate outcome of the apply phase (reporting only)."""
    results: list[ApplyResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def total_cost(self) -> float:
        return sum(r.cost or 0.0 for r in self.results)
