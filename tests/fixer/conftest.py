"""Shared fixtures for the style-fixer tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from src.fix_orchestrator.change_queue import ChangeQueue
from src.fix_orchestrator.config import ApplyConfig, DetectionConfig, FixerConfig
from src.fixer_shared.constants import BACKEND_PATCH
from src.fixer_shared.models import (
    ApplyResult,
    Certainty,
    Change,
    ChangeDescriptor,
    MergedDescriptor,
    Severity,
    Violation,
)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class StubRule:
    """Rule double returning a fixed list of violations (or raising)."""

    def __init__(
        self,
        rule_id: str,
        category: str,
        violations: list[Violation] | None = None,
        error: Exception | None = None,
        description: str = "",
    ) -> None:
        self.rule_id = rule_id
        self.category = category
        self.description = description or f"{category} {rule_id}"
        self.violations = violations or []
        self.error = error
        self.calls: list[Path] = []

    def detect(self, root: Path) -> list[Violation]:
        self.calls.append(root)
        if self.error is not None:
            raise self.error
        return list(self.violations)


class RecordingBackend:
    """Backend double that records calls and fails for chosen files."""

    name = "recording"

    def __init__(self, fail_for: set[str] | None = None, cost: float = 0.01) -> None:
        self.fail_for = fail_for or set()
        self.cost = cost
        self.calls: list[MergedDescriptor] = []

    async def apply_changes(self, merged: MergedDescriptor, merged_path: Path) -> ApplyResult:
        self.calls.append(merged)
        if merged.target_file in self.fail_for:
            raise RuntimeError(f"cannot edit {merged.target_file}")
        return ApplyResult(
            target_file=merged.target_file,
            merged_path=str(merged_path),
            success=True,
            cost=self.cost,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def queue(tmp_path: Path) -> ChangeQueue:
    """An empty change queue under the test's temp directory."""
    return ChangeQueue(tmp_path / ".change-queue")


@pytest.fixture
def fixer_config(tmp_path: Path) -> FixerConfig:
    """Config writing all run artifacts under the temp directory."""
    return FixerConfig(
        detection=DetectionConfig(max_concurrent=4, min_severity="info"),
        apply=ApplyConfig(max_concurrent=2, backend=BACKEND_PATCH),
        max_iterations=5,
        queue_dir=str(tmp_path / ".change-queue"),
        state_dir=str(tmp_path / ".style-fixer"),
    )


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small project with mechanically fixable violations."""
    root = tmp_path / "project"
    pkg = root / "pkg"
    pkg.mkdir(parents=True)
    (pkg / "__init__.py").write_text("", encoding="utf-8")
    (pkg / "handlers.py").write_text(
        "def handle(value):\n"
        "    if value == None:\n"
        "        return 0\n"
        "    try:\n"
        "        return int(value)\n"
        "    except:\n"
        "        return -1\n",
        encoding="utf-8",
    )
    (pkg / "clean.py").write_text(
        "def add(a, b):\n"
        "    return a + b\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def make_violation() -> Callable[..., Violation]:
    """Factory for violations with sensible defaults."""

    def _make(
        file_path: str | Path,
        line: int,
        rule_id: str = "rule-001",
        category: str = "style",
        **kwargs: Any,
    ) -> Violation:
        kwargs.setdefault("message", f"{rule_id} at line {line}")
        kwargs.setdefault("snippet", "bad()")
        kwargs.setdefault("severity", Severity.ERROR)
        kwargs.setdefault("certainty", Certainty.DEFINITE)
        return Violation(
            rule_id=rule_id,
            category=category,
            file_path=str(file_path),
            line=line,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_descriptor() -> Callable[..., ChangeDescriptor]:
    """Factory for change descriptors with one change per line number."""

    def _make(
        category: str,
        rule: str,
        target_file: str,
        lines: list[int],
        mechanical: bool = False,
    ) -> ChangeDescriptor:
        return ChangeDescriptor(
            category=category,
            rule=rule,
            target_file=target_file,
            changes=[
                Change(
                    line_number=line,
                    violation_type=f"{category}/{rule}",
                    current_code="old",
                    proposed_fix="new",
                    explanation=f"fix line {line}",
                    mechanical=mechanical,
                )
                for line in lines
            ],
        )

    return _make


@pytest.fixture
def stub_rule() -> type[StubRule]:
    return StubRule


@pytest.fixture
def recording_backend() -> type[RecordingBackend]:
    return RecordingBackend
