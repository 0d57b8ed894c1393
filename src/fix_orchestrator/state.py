"""Run progress persistence with atomic writes."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.fixer_shared.constants import (
    OUTCOME_CONVERGED,
    STATE_DIR,
    STATE_FILE,
    STATE_SCANNING,
)
from src.fixer_shared.utils import atomic_write_json, load_json


@dataclass
class IterationRecord:
    """Human-readable summary of one detect -> merge -> apply cycle."""

    iteration: int = 0
    rules_run: int = 0
    rules_failed: int = 0
    violations_found: int = 0
    descriptors_written: int = 0
    descriptors_skipped: int = 0
    files_merged: int = 0
    conflicts: dict[str, list[int]] = field(default_factory=dict)
    files_fixed: int = 0
    files_failed: int = 0
    cost: float = 0.0


@dataclass
class RunState:
    """Progress of a pipeline run.

    Persisted to ``RUN_STATE.json`` after every phase.  It is a progress
    report, not a resume point: the change queue is the only state that
    phases hand to each other.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    target: str = ""
    max_iterations: int = 1
    iteration: int = 1
    current_state: str = STATE_SCANNING
    current_phase: str = ""
    outcome: str = ""
    iterations: list[IterationRecord] = field(default_factory=list)
    total_cost: float = 0.0
    phase_costs: dict[str, float] = field(default_factory=dict)
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    updated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    interrupted: bool = False
    interrupt_reason: str = ""
    state_dir: str = STATE_DIR
    schema_version: int = 1

    @property
    def converged(self) -> bool:
        return self.outcome == OUTCOME_CONVERGED

    def current_record(self) -> IterationRecord:
        """Return the record of the current iteration, creating it if needed."""
        if not self.iterations or self.iterations[-1].iteration != self.iteration:
            self.iterations.append(IterationRecord(iteration=self.iteration))
        return self.iterations[-1]

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialise the state to a plain dictionary."""
        return asdict(self)

    def save(self, directory: Path | str | None = None) -> Path:
        """Persist state to disk using atomic writes.

        Args:
            directory: Target directory.  Defaults to ``state_dir``.

        Returns:
            The path the state was written to.
        """
        directory = Path(directory) if directory else Path(self.state_dir)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / STATE_FILE
        self.updated_at = datetime.now(timezone.utc).isoformat()
        atomic_write_json(target, self.to_dict())
        return target

    @classmethod
    def load(cls, directory: Path | str | None = None) -> RunState | None:
        """Load state from a JSON file.

        Returns:
            Reconstructed ``RunState``, or ``None`` if the file is
            missing or invalid.
        """
        directory = Path(directory) if directory else Path(STATE_DIR)
        data = load_json(directory / STATE_FILE)
        if data is None:
            return None
        # Filter to only known fields
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        known_record = {f.name for f in IterationRecord.__dataclass_fields__.values()}
        filtered["iterations"] = [
            IterationRecord(**{k: v for k, v in rec.items() if k in known_record})
            for rec in filtered.get("iterations", [])
            if isinstance(rec, dict)
        ]
        return cls(**filtered)
