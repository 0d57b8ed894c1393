"""Runtime-checkable protocols for rule detectors and remediation backends."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from src.fixer_shared.models import ApplyResult, MergedDescriptor, Violation


@runtime_checkable
class RuleDetector(Protocol):
    """Protocol for a single style rule.

    ``(category, rule_id)`` must be globally unique.
    """

    rule_id: str
    category: str
    description: str

    def detect(self, root: Path) -> list[Violation] | Any:
        """Scan *root* (a file or a directory) for violations.

        Detectors may read the filesystem but never write to the change
        queue.  The return value may also be an awaitable resolving to a
        list of violations.

        Args:
            root: File or directory to scan.

        Returns:
            Violations found.
        """
        ...


@runtime_checkable
class RemediationBackend(Protocol):
    """Protocol for the capability that edits a file."""

    name: str

    async def apply_changes(
        self, merged: MergedDescriptor, merged_path: Path
    ) -> ApplyResult:
        """Apply every change of *merged* to its target file.

        Changes must be applied in descending line order.

        Args:
            merged: The merged descriptor for one file.
            merged_path: Where the descriptor is persisted.

        Returns:
            Success flag and optional cost.
        """
        ...
