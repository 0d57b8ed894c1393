"""Custom exceptions for the style-fixer pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    pass


class ConfigurationError(PipelineError):
    """Raised for configuration issues (missing credential, bad target, bad config)."""

    pass


class PhaseTimeoutError(PipelineError):
    """Raised when a pipeline phase exceeds its timeout."""

    def __init__(self, phase_name: str, timeout: int) -> None:
        self.phase_name = phase_name
        self.timeout = timeout
        super().__init__(f"Phase '{phase_name}' timed out after {timeout}s")


class BudgetExceededError(PipelineError):
    """Raised when remediation cost exceeds the budget limit."""

    def __init__(self, total_cost: float, budget_limit: float) -> None:
        self.total_cost = total_cost
        self.budget_limit = budget_limit
        super().__init__(
            f"Budget exceeded: ${total_cost:.2f} spent, limit is ${budget_limit:.2f}"
        )


class QueueStateError(PipelineError):
    """Raised when the change queue is not in the state a phase expects."""

    def __init__(self, queue_dir: str = "", leftover: int = 0, message: str = "") -> None:
        self.queue_dir = queue_dir
        self.leftover = leftover
        super().__init__(
            message
            or f"Change queue '{queue_dir}' still holds {leftover} descriptor(s) "
            "at the start of a detection pass"
        )


class DescriptorParseError(PipelineError):
    """Raised when a queue entry cannot be parsed as a descriptor."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Malformed descriptor '{path}': {reason}" if reason else f"Malformed descriptor '{path}'")


class RemediationError(PipelineError):
    """Raised by a backend that cannot apply a change set."""

    def __init__(self, target_file: str = "", message: str = "") -> None:
        self.target_file = target_file
        super().__init__(message or f"Remediation failed for '{target_file}'")
