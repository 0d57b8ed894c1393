"""Tests for the iteration controller (end-to-end over a temp project)."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from src.fix_orchestrator.backends import TextPatchBackend
from src.fix_orchestrator.config import FixerConfig
from src.fix_orchestrator.exceptions import (
    BudgetExceededError,
    ConfigurationError,
    PhaseTimeoutError,
    QueueStateError,
)
from src.fix_orchestrator.pipeline import execute_pipeline, run_pipeline
from src.fix_orchestrator.shutdown import GracefulShutdown
from src.fix_orchestrator.state import RunState
from src.fixer_shared.constants import (
    OUTCOME_BUDGET_EXHAUSTED,
    OUTCOME_CONVERGED,
    OUTCOME_INTERRUPTED,
    PHASE_APPLY,
    PHASE_DETECTION,
    PHASE_MERGE,
    STATE_DONE,
    STATE_FILE,
)
from src.style_rules.builtin import builtin_rules


# ---------------------------------------------------------------------------
# Convergence
# ---------------------------------------------------------------------------


class TestConvergence:
    @pytest.mark.asyncio
    async def test_fixable_tree_converges_on_second_scan(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        state = await run_pipeline(
            source_tree, fixer_config, builtin_rules(), TextPatchBackend()
        )

        assert state.outcome == OUTCOME_CONVERGED
        assert state.converged
        assert state.iteration == 2
        assert state.current_state == STATE_DONE
        first, second = state.iterations
        assert first.files_merged == 1
        assert first.files_fixed == 1
        assert second.violations_found == 0

        text = (source_tree / "pkg" / "handlers.py").read_text(encoding="utf-8")
        assert "if value is None:" in text
        assert "except Exception:" in text

    @pytest.mark.asyncio
    async def test_files_whose_names_flatten_alike_both_fixed(
        self, tmp_path: Path, fixer_config: FixerConfig
    ):
        target = tmp_path / "flat"
        (target / "a").mkdir(parents=True)
        bad = "try:\n    pass\nexcept:\n    pass\n"
        (target / "a_b.py").write_text(bad, encoding="utf-8")
        (target / "a" / "b.py").write_text(bad, encoding="utf-8")

        state = await run_pipeline(target, fixer_config, builtin_rules(), TextPatchBackend())

        assert state.outcome == OUTCOME_CONVERGED
        assert state.iterations[0].files_merged == 2
        for path in (target / "a_b.py", target / "a" / "b.py"):
            assert "except Exception:" in path.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_clean_tree_converges_without_remediation(
        self, tmp_path: Path, fixer_config: FixerConfig, recording_backend
    ):
        target = tmp_path / "clean"
        target.mkdir()
        (target / "ok.py").write_text("x = 1\n", encoding="utf-8")
        backend = recording_backend()

        state = await run_pipeline(target, fixer_config, builtin_rules(), backend)

        assert state.outcome == OUTCOME_CONVERGED
        assert state.iteration == 1
        assert backend.calls == []
        assert len(state.iterations) == 1

    @pytest.mark.asyncio
    async def test_queue_is_empty_after_run(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        await run_pipeline(source_tree, fixer_config, builtin_rules(), TextPatchBackend())
        queue_root = Path(fixer_config.queue_dir)
        assert list(queue_root.glob("*.json")) == []
        assert list((queue_root / "merged").glob("*.json")) == []

    @pytest.mark.asyncio
    async def test_stale_queue_entries_dropped_at_start(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        queue_root = Path(fixer_config.queue_dir)
        queue_root.mkdir(parents=True)
        (queue_root / "left-over.json").write_text("{}", encoding="utf-8")

        state = await run_pipeline(
            source_tree, fixer_config, builtin_rules(), TextPatchBackend()
        )
        assert state.outcome == OUTCOME_CONVERGED


# ---------------------------------------------------------------------------
# Bounded termination
# ---------------------------------------------------------------------------


class TestIterationBudget:
    @pytest.mark.asyncio
    async def test_unfixable_violation_exhausts_budget(
        self, tmp_path: Path, fixer_config: FixerConfig
    ):
        target = tmp_path / "proj"
        target.mkdir()
        (target / "mod.py").write_text(
            "def collect(items=[]):\n    return items\n", encoding="utf-8"
        )
        fixer_config.max_iterations = 3

        state = await run_pipeline(
            target, fixer_config, builtin_rules(), TextPatchBackend()
        )

        assert state.outcome == OUTCOME_BUDGET_EXHAUSTED
        assert state.iteration == 3
        assert len(state.iterations) == 3
        assert all(r.files_failed == 1 for r in state.iterations)

    @pytest.mark.asyncio
    async def test_single_iteration_budget(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        fixer_config.max_iterations = 1
        state = await run_pipeline(
            source_tree, fixer_config, builtin_rules(), TextPatchBackend()
        )
        # The fix was applied but never confirmed by a second scan.
        assert state.outcome == OUTCOME_BUDGET_EXHAUSTED
        assert state.iteration == 1

    @pytest.mark.asyncio
    async def test_failing_rules_still_converge(
        self, source_tree: Path, fixer_config: FixerConfig, stub_rule, recording_backend
    ):
        rules = [stub_rule("broken", "c", error=RuntimeError("boom"))]
        state = await run_pipeline(source_tree, fixer_config, rules, recording_backend())
        assert state.outcome == OUTCOME_CONVERGED
        assert state.iterations[0].rules_failed == 1


# ---------------------------------------------------------------------------
# Shutdown, budget, timeouts
# ---------------------------------------------------------------------------


class TestAbnormalEndings:
    @pytest.mark.asyncio
    async def test_shutdown_request_interrupts(
        self, source_tree: Path, fixer_config: FixerConfig, recording_backend
    ):
        shutdown = GracefulShutdown()
        shutdown.request_stop("Received SIGINT")
        backend = recording_backend()

        state = await run_pipeline(
            source_tree, fixer_config, builtin_rules(), backend, shutdown=shutdown
        )

        assert state.outcome == OUTCOME_INTERRUPTED
        assert state.interrupted
        assert state.interrupt_reason == "Received SIGINT"
        assert not state.converged
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_budget_limit(
        self, source_tree: Path, fixer_config: FixerConfig, recording_backend
    ):
        fixer_config.budget_limit = 0.5
        backend = recording_backend(cost=1.0)
        with pytest.raises(BudgetExceededError) as exc_info:
            await run_pipeline(source_tree, fixer_config, builtin_rules(), backend)
        assert exc_info.value.total_cost == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_task_costs_recorded_per_pass(
        self, source_tree: Path, fixer_config: FixerConfig, recording_backend
    ):
        state = await run_pipeline(
            source_tree, fixer_config, builtin_rules(), recording_backend(cost=0.25)
        )
        assert state.phase_costs[f"{PHASE_APPLY}#1"] == pytest.approx(0.25)
        assert state.iterations[0].cost == pytest.approx(0.25)
        assert state.total_cost == pytest.approx(sum(state.phase_costs.values()))

    @pytest.mark.asyncio
    async def test_detection_timeout(self, source_tree: Path, fixer_config: FixerConfig):
        class HangingRule:
            rule_id = "hang"
            category = "c"
            description = ""

            async def detect(self, root):
                await asyncio.sleep(5)
                return []

        fixer_config.phase_timeouts = {PHASE_DETECTION: 0.05}
        with pytest.raises(PhaseTimeoutError) as exc_info:
            await run_pipeline(source_tree, fixer_config, [HangingRule()], TextPatchBackend())
        assert exc_info.value.phase_name == PHASE_DETECTION

    @pytest.mark.asyncio
    async def test_queue_written_outside_detection_is_rejected(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        queue_root = Path(fixer_config.queue_dir)

        class LeakyBackend(TextPatchBackend):
            async def apply_changes(self, merged, merged_path):
                (queue_root / "stray.json").write_text("{}", encoding="utf-8")
                return await super().apply_changes(merged, merged_path)

        with pytest.raises(QueueStateError):
            await run_pipeline(source_tree, fixer_config, builtin_rules(), LeakyBackend())


# ---------------------------------------------------------------------------
# Validation, persistence, callbacks
# ---------------------------------------------------------------------------


class TestRunBookkeeping:
    @pytest.mark.asyncio
    async def test_missing_target(self, tmp_path: Path, fixer_config: FixerConfig):
        with pytest.raises(ConfigurationError):
            await run_pipeline(tmp_path / "nope", fixer_config, [], TextPatchBackend())

    @pytest.mark.asyncio
    async def test_non_positive_iterations(
        self, source_tree: Path, fixer_config: FixerConfig
    ):
        fixer_config.max_iterations = 0
        with pytest.raises(ConfigurationError):
            await run_pipeline(source_tree, fixer_config, [], TextPatchBackend())

    @pytest.mark.asyncio
    async def test_run_state_persisted(self, source_tree: Path, fixer_config: FixerConfig):
        await run_pipeline(source_tree, fixer_config, builtin_rules(), TextPatchBackend())

        assert (Path(fixer_config.state_dir) / STATE_FILE).is_file()
        loaded = RunState.load(fixer_config.state_dir)
        assert loaded is not None
        assert loaded.outcome == OUTCOME_CONVERGED
        assert len(loaded.iterations) == 2

    @pytest.mark.asyncio
    async def test_phase_callback_order(self, source_tree: Path, fixer_config: FixerConfig):
        seen: list[tuple[str, int]] = []
        await run_pipeline(
            source_tree,
            fixer_config,
            builtin_rules(),
            TextPatchBackend(),
            on_phase=lambda phase, iteration, result: seen.append((phase, iteration)),
        )
        assert seen == [
            (PHASE_DETECTION, 1),
            (PHASE_MERGE, 1),
            (PHASE_APPLY, 1),
            (PHASE_DETECTION, 2),
            (PHASE_MERGE, 2),
        ]


class TestExecutePipeline:
    @pytest.mark.asyncio
    async def test_returns_final_state(self, source_tree: Path, fixer_config: FixerConfig):
        state = await execute_pipeline(
            source_tree, builtin_rules(), TextPatchBackend(), config=fixer_config
        )
        assert state.outcome == OUTCOME_CONVERGED

    @pytest.mark.asyncio
    async def test_budget_error_marks_state(
        self, source_tree: Path, fixer_config: FixerConfig, recording_backend
    ):
        fixer_config.budget_limit = 0.0
        with pytest.raises(BudgetExceededError):
            await execute_pipeline(
                source_tree, builtin_rules(), recording_backend(cost=0.1), config=fixer_config
            )
        saved = RunState.load(fixer_config.state_dir)
        assert saved is not None
        assert saved.interrupted
        assert saved.interrupt_reason == "Budget exceeded"
