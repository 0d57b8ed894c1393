"""Stop requests from SIGINT / SIGTERM.

A stop request never cancels in-flight tasks: running detection and
remediation tasks finish, queued ones are skipped, and the iteration
controller moves to its terminal state.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.fix_orchestrator.state import RunState

logger = logging.getLogger(__name__)

SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """Turns the first SIGINT / SIGTERM into a ``should_stop`` flag.

    Schedulers poll ``should_stop`` before starting each task.  When a run
    state is attached it is marked interrupted and saved at once, so a
    second signal that kills the process still leaves a resumable record.
    """

    def __init__(self) -> None:
        self.should_stop = False
        self.reason = ""
        self._state: RunState | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous: dict[signal.Signals, Any] = {}

    def set_state(self, state: RunState) -> None:
        self._state = state

    def install(self) -> None:
        """Route SIGINT and SIGTERM to :meth:`request_stop`.

        Must be called from a coroutine.  Loops without signal support
        (Windows) get plain ``signal.signal`` handlers instead.
        """
        loop = asyncio.get_running_loop()
        for sig in SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_stop, f"Received {sig.name}")
            except NotImplementedError:
                self._previous[sig] = signal.signal(
                    sig, lambda signum, frame: self.request_stop(f"Received signal {signum}")
                )
            else:
                self._loop = loop

    def uninstall(self) -> None:
        """Restore whatever handled the signals before :meth:`install`."""
        if self._loop is not None:
            for sig in SIGNALS:
                self._loop.remove_signal_handler(sig)
            self._loop = None
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def request_stop(self, reason: str = "Shutdown requested") -> None:
        """Ask the pipeline to wind down; repeated requests are ignored."""
        if self.should_stop:
            return
        self.should_stop = True
        self.reason = reason
        logger.warning("%s -- finishing in-flight tasks", reason)
        if self._state is None:
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = reason
            self._state.save()
        except Exception:
            logger.exception("Failed to save state after stop request")
