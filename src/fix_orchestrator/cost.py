"""Remediation spend, accumulated per apply pass."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from src.fixer_shared.models import ApplyResult

logger = logging.getLogger(__name__)


@dataclass
class PipelineCostTracker:
    """Sums the cost each remediation task reports, keyed by apply pass."""

    budget_limit: float | None = None
    phase_costs: dict[str, float] = field(default_factory=dict)

    def record(self, phase: str, results: Iterable[ApplyResult]) -> float:
        """Add the costs of *results* to *phase* and return what they added.

        Tasks whose backend reported no cost contribute nothing.
        """
        spent = sum(r.cost for r in results if r.cost is not None)
        self.phase_costs[phase] = self.phase_costs.get(phase, 0.0) + spent
        logger.debug("%s cost $%.4f (total $%.4f)", phase, spent, self.total_cost)
        return spent

    @property
    def total_cost(self) -> float:
        return sum(self.phase_costs.values())

    def check_budget(self) -> tuple[bool, str]:
        """Return ``(within_budget, message)``; always within without a limit."""
        if self.budget_limit is None or self.total_cost <= self.budget_limit:
            return (True, "")
        return (
            False,
            f"Budget exceeded: ${self.total_cost:.2f} spent, "
            f"limit is ${self.budget_limit:.2f}",
        )
