"""Apply coordinator -- one remediation task per merged file."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from src.fix_orchestrator.change_queue import ChangeQueue
from src.fix_orchestrator.exceptions import ConfigurationError, DescriptorParseError
from src.fixer_shared.constants import DEFAULT_MAX_CONCURRENT_FILES
from src.fixer_shared.logging import task_label_var
from src.fixer_shared.models import ApplyResult, ApplySummary
from src.fixer_shared.protocols import RemediationBackend

if TYPE_CHECKING:
    from src.fix_orchestrator.shutdown import GracefulShutdown

logger = logging.getLogger(__name__)


async def run_apply(
    queue: ChangeQueue,
    merged_paths: list[str],
    backend: RemediationBackend,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT_FILES,
    shutdown: "GracefulShutdown | None" = None,
) -> ApplySummary:
    """Hand every merged descriptor to *backend*.

    The concurrency is gated by a semaphore created inside this function.
    A task's failure is isolated to its own :class:`ApplyResult`; only a
    :class:`ConfigurationError` (the backend cannot run at all) propagates.
    Results are for reporting: the next detection pass is what decides
    whether a fix took.
    """
    if not merged_paths:
        logger.info("Apply: no files to update")
        return ApplySummary()

    logger.info(
        "Starting apply: %d file(s) with backend '%s'",
        len(merged_paths),
        backend.name,
    )
    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def _apply_one(merged_path: str) -> ApplyResult:
        async with semaphore:
            task_label_var.set(f"file:{Path(merged_path).name}")
            if shutdown is not None and shutdown.should_stop:
                return ApplyResult(
                    merged_path=merged_path,
                    success=False,
                    error="Shutdown requested",
                )
            try:
                merged = queue.read_merged(merged_path)
            except DescriptorParseError as exc:
                logger.warning("Cannot load %s", exc)
                return ApplyResult(merged_path=merged_path, error=str(exc))
            try:
                result = await backend.apply_changes(merged, Path(merged_path))
            except ConfigurationError:
                raise
            except Exception as exc:
                logger.error(
                    "Remediation of %s raised: %s",
                    merged.target_file,
                    exc,
                    exc_info=True,
                )
                return ApplyResult(
                    target_file=merged.target_file,
                    merged_path=merged_path,
                    error=str(exc) or type(exc).__name__,
                )
            if result.success:
                cost = f"${result.cost:.4f}" if result.cost is not None else "$?"
                logger.info("Fixed %s (%s)", merged.target_file, cost)
            else:
                logger.warning("Failed to fix %s: %s", merged.target_file, result.error)
            return result

    results: list[ApplyResult] = await asyncio.gather(
        *(_apply_one(path) for path in merged_paths)
    )
    summary = ApplySummary(results=list(results))
    logger.info(
        "Apply complete: %d/%d files ($%.4f)",
        summary.succeeded,
        summary.total,
        summary.total_cost,
    )
    return summary
