"""Iteration controller state machine using the ``transitions`` library.

Three states and five guarded transitions::

    scanning --converge-->  done          (merge produced no files)
    scanning --remediate--> remediating   (merge produced files)
    remediating --rescan--> scanning      (iterations remain)
    remediating --exhaust-> done          (iteration budget used up)
    scanning|remediating --interrupt--> done

Which trigger to fire is decided by :func:`next_trigger`, a pure
function of the phase outcome, so the pipeline keeps all I/O at the
edges and the decision logic is testable on its own.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions.extensions.asyncio import AsyncMachine

from src.fixer_shared.constants import STATE_DONE, STATE_REMEDIATING, STATE_SCANNING

logger = logging.getLogger(__name__)

STATES: list[str] = [STATE_SCANNING, STATE_REMEDIATING, STATE_DONE]

TRIGGER_CONVERGE = "converge"
TRIGGER_REMEDIATE = "remediate"
TRIGGER_RESCAN = "rescan"
TRIGGER_EXHAUST = "exhaust"
TRIGGER_INTERRUPT = "interrupt"

TRANSITIONS: list[dict[str, Any]] = [
    {
        "trigger": TRIGGER_CONVERGE,
        "source": STATE_SCANNING,
        "dest": STATE_DONE,
        "conditions": ["no_merged_files"],
    },
    {
        "trigger": TRIGGER_REMEDIATE,
        "source": STATE_SCANNING,
        "dest": STATE_REMEDIATING,
        "conditions": ["has_merged_files"],
    },
    {
        "trigger": TRIGGER_RESCAN,
        "source": STATE_REMEDIATING,
        "dest": STATE_SCANNING,
        "conditions": ["iterations_remaining"],
    },
    {
        "trigger": TRIGGER_EXHAUST,
        "source": STATE_REMEDIATING,
        "dest": STATE_DONE,
        "unless": ["iterations_remaining"],
    },
    {
        "trigger": TRIGGER_INTERRUPT,
        "source": [STATE_SCANNING, STATE_REMEDIATING],
        "dest": STATE_DONE,
    },
]


def next_trigger(
    state: str,
    iteration: int,
    max_iterations: int,
    merged_count: int = 0,
    stop_requested: bool = False,
) -> str:
    """Decide which trigger ends the phase that just ran in *state*.

    Args:
        state: The controller state whose phase just completed.
        iteration: Current iteration (1-based).
        max_iterations: Iteration budget.
        merged_count: Number of merged descriptors the scan produced.
        stop_requested: Whether a graceful shutdown was requested.

    Returns:
        Name of the trigger to fire.

    Raises:
        ValueError: If *state* is terminal or unknown.
    """
    if state not in (STATE_SCANNING, STATE_REMEDIATING):
        raise ValueError(f"No transition out of state '{state}'")
    # A scan cut short by shutdown proves nothing about convergence.
    if stop_requested:
        return TRIGGER_INTERRUPT
    if state == STATE_SCANNING:
        return TRIGGER_CONVERGE if merged_count == 0 else TRIGGER_REMEDIATE
    if iteration >= max_iterations:
        return TRIGGER_EXHAUST
    return TRIGGER_RESCAN


def create_iteration_machine(
    model: Any, initial_state: str = STATE_SCANNING
) -> AsyncMachine:
    """Create and return an ``AsyncMachine`` bound to *model*.

    The model must implement the guard methods referenced in
    ``TRANSITIONS`` (``no_merged_files``, ``has_merged_files``,
    ``iterations_remaining``).

    Args:
        model: The object whose state the machine manages.
        initial_state: The initial state for the machine.

    Returns:
        Configured ``AsyncMachine`` instance.
    """
    machine = AsyncMachine(
        model=model,
        states=STATES,
        transitions=TRANSITIONS,
        initial=initial_state,
        auto_transitions=False,
        send_event=True,
        queued=True,
        ignore_invalid_triggers=True,
    )
    return machine
