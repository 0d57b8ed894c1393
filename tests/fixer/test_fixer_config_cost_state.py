"""Tests for configuration loading, cost tracking and run-state persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.fix_orchestrator.config import (
    ApplyConfig,
    DetectionConfig,
    FixerConfig,
    load_fixer_config,
)
from src.fix_orchestrator.cost import PipelineCostTracker
from src.fix_orchestrator.state import IterationRecord, RunState
from src.fixer_shared.constants import (
    BACKEND_CLAUDE,
    DEFAULT_MAX_CONCURRENT_FILES,
    DEFAULT_MAX_CONCURRENT_RULES,
    DEFAULT_MAX_ITERATIONS,
    OUTCOME_CONVERGED,
    STATE_FILE,
)
from src.fixer_shared.models import ApplyResult


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestConfigDefaults:
    def test_fixer_config_defaults(self) -> None:
        cfg = FixerConfig()
        assert cfg.max_iterations == DEFAULT_MAX_ITERATIONS
        assert cfg.budget_limit is None
        assert cfg.phase_timeouts == {}
        assert isinstance(cfg.detection, DetectionConfig)
        assert isinstance(cfg.apply, ApplyConfig)

    def test_sub_config_defaults(self) -> None:
        assert DetectionConfig().max_concurrent == DEFAULT_MAX_CONCURRENT_RULES
        assert DetectionConfig().include_potential is True
        assert DetectionConfig().min_severity == "info"
        assert ApplyConfig().max_concurrent == DEFAULT_MAX_CONCURRENT_FILES
        assert ApplyConfig().backend == BACKEND_CLAUDE


class TestLoadFixerConfig:
    def test_none_returns_defaults(self) -> None:
        assert load_fixer_config(None) == FixerConfig()

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        assert load_fixer_config(tmp_path / "absent.yaml") == FixerConfig()

    def test_empty_file_returns_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_fixer_config(path) == FixerConfig()

    def test_yaml_values(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "max_iterations: 3\n"
            "budget_limit: 2.5\n"
            "phase_timeouts:\n"
            "  apply: 900\n"
            "detection:\n"
            "  max_concurrent: 2\n"
            "  categories: [errors]\n"
            "apply:\n"
            "  backend: patch\n"
            "  max_turns: 5\n",
            encoding="utf-8",
        )
        cfg = load_fixer_config(path)
        assert cfg.max_iterations == 3
        assert cfg.budget_limit == 2.5
        assert cfg.phase_timeouts == {"apply": 900}
        assert cfg.detection.max_concurrent == 2
        assert cfg.detection.categories == ["errors"]
        assert cfg.apply.backend == "patch"
        assert cfg.apply.max_turns == 5

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "future_option: true\n"
            "detection:\n"
            "  not_a_field: 1\n",
            encoding="utf-8",
        )
        cfg = load_fixer_config(path)
        assert cfg.detection == DetectionConfig()


# ---------------------------------------------------------------------------
# Cost tracking
# ---------------------------------------------------------------------------


class TestPipelineCostTracker:
    def test_accumulates_per_phase(self) -> None:
        tracker = PipelineCostTracker()
        spent = tracker.record(
            "apply#1",
            [
                ApplyResult(target_file="a.py", success=True, cost=0.125),
                ApplyResult(target_file="b.py", success=True, cost=0.125),
            ],
        )
        tracker.record("apply#2", [ApplyResult(target_file="a.py", cost=0.5)])
        assert spent == pytest.approx(0.25)
        assert tracker.phase_costs == {"apply#1": 0.25, "apply#2": 0.5}
        assert tracker.total_cost == pytest.approx(0.75)

    def test_unpriced_results_add_nothing(self) -> None:
        tracker = PipelineCostTracker()
        spent = tracker.record(
            "apply#1",
            [
                ApplyResult(target_file="a.py", success=False, cost=None),
                ApplyResult(target_file="b.py", success=True, cost=0.5),
            ],
        )
        assert spent == 0.5
        assert tracker.phase_costs == {"apply#1": 0.5}

    def test_empty_pass_is_recorded(self) -> None:
        tracker = PipelineCostTracker()
        assert tracker.record("apply#1", []) == 0.0
        assert tracker.phase_costs == {"apply#1": 0.0}

    def test_same_phase_twice_adds_up(self) -> None:
        tracker = PipelineCostTracker()
        for _ in range(2):
            tracker.record("apply#1", [ApplyResult(target_file="a.py", cost=1.0)])
        assert tracker.phase_costs["apply#1"] == 2.0

    def test_no_limit_always_within_budget(self) -> None:
        tracker = PipelineCostTracker()
        tracker.record("apply#1", [ApplyResult(target_file="a.py", cost=1000.0)])
        assert tracker.check_budget() == (True, "")

    def test_at_limit_is_within_budget(self) -> None:
        tracker = PipelineCostTracker(budget_limit=1.0)
        tracker.record("apply#1", [ApplyResult(target_file="a.py", cost=1.0)])
        assert tracker.check_budget() == (True, "")

    def test_over_limit(self) -> None:
        tracker = PipelineCostTracker(budget_limit=1.0)
        tracker.record("apply#1", [ApplyResult(target_file="a.py", cost=1.5)])
        within, msg = tracker.check_budget()
        assert not within
        assert msg == "Budget exceeded: $1.50 spent, limit is $1.00"


# ---------------------------------------------------------------------------
# RunState
# ---------------------------------------------------------------------------


class TestRunState:
    def test_current_record_created_once_per_iteration(self) -> None:
        state = RunState()
        first = state.current_record()
        assert state.current_record() is first
        state.iteration = 2
        second = state.current_record()
        assert second is not first
        assert [r.iteration for r in state.iterations] == [1, 2]

    def test_save_and_load(self, tmp_path: Path) -> None:
        state = RunState(target="/p", max_iterations=4, state_dir=str(tmp_path))
        record = state.current_record()
        record.violations_found = 7
        record.conflicts = {"/p/a.py": [3]}
        state.outcome = OUTCOME_CONVERGED
        path = state.save()

        assert path == tmp_path / STATE_FILE
        loaded = RunState.load(tmp_path)
        assert loaded is not None
        assert loaded.run_id == state.run_id
        assert loaded.converged
        assert loaded.iterations == [
            IterationRecord(iteration=1, violations_found=7, conflicts={"/p/a.py": [3]})
        ]

    def test_load_missing(self, tmp_path: Path) -> None:
        assert RunState.load(tmp_path) is None

    def test_load_ignores_unknown_fields(self, tmp_path: Path) -> None:
        (tmp_path / STATE_FILE).write_text(
            json.dumps({"target": "/p", "legacy_field": 1, "iterations": [{"iteration": 1, "old": 2}]}),
            encoding="utf-8",
        )
        loaded = RunState.load(tmp_path)
        assert loaded is not None
        assert loaded.target == "/p"
        assert loaded.iterations[0].iteration == 1

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        RunState(state_dir=str(tmp_path)).save()
        assert sorted(p.name for p in tmp_path.iterdir()) == [STATE_FILE]
