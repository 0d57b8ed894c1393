"""Style-fixer pipeline -- the iteration controller.

Drives the convergence loop::

    scanning (detect -> merge) --converge--> done
             |
         remediate
             v
    remediating (apply) --rescan--> scanning      (iterations remain)
                        --exhaust-> done          (budget used up)

Phases never overlap: each coordinator awaits every task it spawned
before the controller moves on, and the change queue is the only thing
one phase hands to the next.  The decision of which trigger to fire is
made by :func:`~src.fix_orchestrator.state_machine.next_trigger`; this
module does the I/O around it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from src.fix_orchestrator.apply import run_apply
from src.fix_orchestrator.change_queue import ChangeQueue
from src.fix_orchestrator.config import FixerConfig, load_fixer_config
from src.fix_orchestrator.cost import PipelineCostTracker
from src.fix_orchestrator.detection import run_detection
from src.fix_orchestrator.exceptions import (
    BudgetExceededError,
    ConfigurationError,
    PhaseTimeoutError,
    PipelineError,
)
from src.fix_orchestrator.merge import run_merge
from src.fix_orchestrator.shutdown import GracefulShutdown
from src.fix_orchestrator.state import RunState
from src.fix_orchestrator.state_machine import (
    TRIGGER_CONVERGE,
    TRIGGER_EXHAUST,
    TRIGGER_INTERRUPT,
    TRIGGER_RESCAN,
    create_iteration_machine,
    next_trigger,
)
from src.fixer_shared.constants import (
    OUTCOME_BUDGET_EXHAUSTED,
    OUTCOME_CONVERGED,
    OUTCOME_INTERRUPTED,
    PHASE_APPLY,
    PHASE_DETECTION,
    PHASE_MERGE,
    STATE_DONE,
    STATE_SCANNING,
)
from src.fixer_shared.models import ApplySummary, DetectionResult, MergeResult
from src.fixer_shared.protocols import RemediationBackend, RuleDetector

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Called after every phase with (phase name, iteration, phase result).
PhaseCallback = Callable[[str, int, Any], None]

_OUTCOMES = {
    TRIGGER_CONVERGE: OUTCOME_CONVERGED,
    TRIGGER_EXHAUST: OUTCOME_BUDGET_EXHAUSTED,
    TRIGGER_INTERRUPT: OUTCOME_INTERRUPTED,
}


# ---------------------------------------------------------------------------
# IterationModel -- state machine model with guard methods
# ---------------------------------------------------------------------------


class IterationModel:
    """Model object for the ``transitions`` async state machine.

    Wraps a :class:`RunState` and exposes the guard methods required by
    :data:`~src.fix_orchestrator.state_machine.TRANSITIONS`.  The
    ``state`` attribute is managed by the ``AsyncMachine``.
    """

    def __init__(self, run_state: RunState) -> None:
        self._rs = run_state
        self.state: str = run_state.current_state
        self.merged_count = 0

    # ---- Guard methods ---------------------------------------------------

    def no_merged_files(self, *args, **kwargs) -> bool:
        """True when the last merge produced nothing to remediate."""
        return self.merged_count == 0

    def has_merged_files(self, *args, **kwargs) -> bool:
        return self.merged_count > 0

    def iterations_remaining(self, *args, **kwargs) -> bool:
        """True while the iteration counter is below the budget."""
        return self._rs.iteration < self._rs.max_iterations


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _with_timeout(
    awaitable: Awaitable[T], phase: str, config: FixerConfig
) -> T:
    """Await *awaitable*, bounded by the phase timeout when one is set."""
    timeout = config.phase_timeouts.get(phase)
    if not timeout:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise PhaseTimeoutError(phase, timeout) from exc


def _notify(on_phase: PhaseCallback | None, phase: str, iteration: int, result: Any) -> None:
    if on_phase is not None:
        on_phase(phase, iteration, result)


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


async def _scan(
    target: Path,
    rules: list[RuleDetector],
    queue: ChangeQueue,
    config: FixerConfig,
    state: RunState,
    shutdown: GracefulShutdown,
    on_phase: PhaseCallback | None,
) -> MergeResult:
    """Detection followed by merge for the current iteration."""
    record = state.current_record()

    queue.assert_empty()
    state.current_phase = PHASE_DETECTION
    state.save()
    detection: DetectionResult = await _with_timeout(
        run_detection(target, rules, queue, config.detection, shutdown),
        PHASE_DETECTION,
        config,
    )
    record.rules_run = detection.rules_total
    record.rules_failed = detection.rules_failed
    record.violations_found = detection.violations_found
    record.descriptors_written = detection.descriptors_written
    _notify(on_phase, PHASE_DETECTION, state.iteration, detection)

    state.current_phase = PHASE_MERGE
    merge = run_merge(queue)
    record.descriptors_skipped = merge.descriptors_skipped
    record.files_merged = len(merge.merged_paths)
    record.conflicts = dict(merge.conflicts)
    state.save()
    _notify(on_phase, PHASE_MERGE, state.iteration, merge)
    return merge


async def _remediate(
    merged_paths: list[str],
    queue: ChangeQueue,
    backend: RemediationBackend,
    config: FixerConfig,
    state: RunState,
    cost_tracker: PipelineCostTracker,
    shutdown: GracefulShutdown,
    on_phase: PhaseCallback | None,
) -> ApplySummary:
    """Apply phase for the current iteration, with cost accounting."""
    record = state.current_record()
    state.current_phase = PHASE_APPLY
    state.save()

    summary = ApplySummary()
    spent = 0.0
    try:
        summary = await _with_timeout(
            run_apply(
                queue,
                merged_paths,
                backend,
                max_concurrent=config.apply.max_concurrent,
                shutdown=shutdown,
            ),
            PHASE_APPLY,
            config,
        )
    finally:
        spent = cost_tracker.record(f"{PHASE_APPLY}#{state.iteration}", summary.results)
        state.total_cost = cost_tracker.total_cost
        state.phase_costs = dict(cost_tracker.phase_costs)

    record.files_fixed = summary.succeeded
    record.files_failed = summary.failed
    record.cost = spent
    state.save()
    _notify(on_phase, PHASE_APPLY, state.iteration, summary)

    within_budget, msg = cost_tracker.check_budget()
    if not within_budget:
        logger.error(msg)
        raise BudgetExceededError(cost_tracker.total_cost, config.budget_limit or 0.0)
    return summary


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


async def run_pipeline(
    target: Path | str,
    config: FixerConfig,
    rules: list[RuleDetector],
    backend: RemediationBackend,
    shutdown: GracefulShutdown | None = None,
    state: RunState | None = None,
    on_phase: PhaseCallback | None = None,
) -> RunState:
    """Run scan/remediate cycles until convergence or the iteration budget.

    At most ``config.max_iterations`` scanning->remediating cycles run.
    The returned state is terminal; its ``outcome`` is ``converged``,
    ``budget_exhausted`` or ``interrupted``.

    Raises:
        ConfigurationError: Missing target or non-positive iteration budget.
        QueueStateError: The raw queue was not empty at an iteration start.
        PhaseTimeoutError: A phase overran its configured timeout.
        BudgetExceededError: Remediation cost went over ``budget_limit``.
    """
    target = Path(target)
    if not target.exists():
        raise ConfigurationError(f"Target path does not exist: {target}")
    if config.max_iterations < 1:
        raise ConfigurationError(
            f"max_iterations must be a positive integer, got {config.max_iterations}"
        )

    queue = ChangeQueue(config.queue_dir)
    shutdown = shutdown or GracefulShutdown()
    if state is None:
        state = RunState(
            target=str(target),
            max_iterations=config.max_iterations,
            state_dir=config.state_dir,
        )
    cost_tracker = PipelineCostTracker(budget_limit=config.budget_limit)

    model = IterationModel(state)
    create_iteration_machine(model, initial_state=STATE_SCANNING)

    queue.reset()
    state.current_state = model.state
    state.save()
    logger.info(
        "Run %s: %d rule(s) over %s, up to %d iteration(s)",
        state.run_id,
        len(rules),
        target,
        state.max_iterations,
    )

    merge = MergeResult()
    while model.state != STATE_DONE:
        if model.state == STATE_SCANNING:
            merge = await _scan(target, rules, queue, config, state, shutdown, on_phase)
            model.merged_count = len(merge.merged_paths)
        else:
            await _remediate(
                merge.merged_paths,
                queue,
                backend,
                config,
                state,
                cost_tracker,
                shutdown,
                on_phase,
            )

        trigger = next_trigger(
            model.state,
            state.iteration,
            state.max_iterations,
            merged_count=model.merged_count,
            stop_requested=shutdown.should_stop,
        )
        if not await model.trigger(trigger):
            raise PipelineError(f"Transition '{trigger}' rejected in state '{model.state}'")
        logger.debug("Trigger '%s' -> state '%s'", trigger, model.state)

        if trigger == TRIGGER_RESCAN:
            state.iteration += 1
        if trigger in _OUTCOMES:
            state.outcome = _OUTCOMES[trigger]
        state.current_state = model.state
        state.save()

    if state.outcome == OUTCOME_CONVERGED:
        logger.info("Converged after %d iteration(s)", state.iteration)
    elif state.outcome == OUTCOME_BUDGET_EXHAUSTED:
        logger.warning(
            "Iteration budget of %d exhausted; violations may remain",
            state.max_iterations,
        )
    else:
        state.interrupted = True
        state.interrupt_reason = (
            state.interrupt_reason or shutdown.reason or "Shutdown requested"
        )
        state.save()
        logger.warning("Run interrupted during iteration %d", state.iteration)
    return state


async def execute_pipeline(
    target: Path | str,
    rules: list[RuleDetector],
    backend: RemediationBackend,
    config: FixerConfig | None = None,
    config_path: Path | str | None = None,
    on_phase: PhaseCallback | None = None,
) -> RunState:
    """Top-level entry point: installs signal handling around :func:`run_pipeline`.

    Parameters
    ----------
    target:
        File or directory to remediate.
    rules:
        Rules to run on every detection pass.
    backend:
        Remediation backend for the apply phase.
    config:
        Configuration; loaded from *config_path* when omitted.
    config_path:
        Optional path to config YAML.
    on_phase:
        Optional progress callback.

    Returns
    -------
    RunState
        Final run state.
    """
    config = config or load_fixer_config(config_path)
    state = RunState(
        target=str(target),
        max_iterations=config.max_iterations,
        state_dir=config.state_dir,
    )
    shutdown = GracefulShutdown()
    shutdown.install()
    shutdown.set_state(state)

    try:
        return await run_pipeline(
            target,
            config,
            rules,
            backend,
            shutdown=shutdown,
            state=state,
            on_phase=on_phase,
        )
    except BudgetExceededError:
        logger.error("Budget exceeded -- saving state and exiting")
        state.interrupted = True
        state.interrupt_reason = "Budget exceeded"
        state.save()
        raise
    except PipelineError:
        logger.error("Pipeline error -- saving state")
        state.save()
        raise
    except Exception as exc:
        logger.exception("Unexpected error in pipeline")
        state.save()
        raise PipelineError(f"Unexpected error: {exc}") from exc
    finally:
        shutdown.uninstall()
