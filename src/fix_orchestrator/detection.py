"""Detection coordinator -- fans out one scan task per rule.

Each task runs ``rule.detect(target)``, groups the violations by file
and writes one :class:`ChangeDescriptor` per (rule, file) pair to the
change queue.  Tasks share no mutable state: every descriptor name is
unique to its rule and file, so concurrent writers never collide.  A
failing rule is logged and contributes nothing; its siblings carry on.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from src.fix_orchestrator.change_queue import ChangeQueue
from src.fix_orchestrator.config import DetectionConfig
from src.fix_orchestrator.exceptions import ConfigurationError
from src.fixer_shared.logging import task_label_var
from src.fixer_shared.models import (
    SEVERITY_LEVEL,
    Certainty,
    Change,
    ChangeDescriptor,
    DetectionResult,
    RuleRunResult,
    Severity,
    Violation,
)
from src.fixer_shared.protocols import RuleDetector

if TYPE_CHECKING:
    from src.fix_orchestrator.shutdown import GracefulShutdown

logger = logging.getLogger(__name__)


def violation_to_change(violation: Violation, violation_type: str = "") -> Change:
    """Convert a detector finding into a line-anchored change."""
    mechanical = violation.fix is not None
    return Change(
        line_number=max(violation.line, 1),
        violation_type=violation_type or violation.rule_id,
        current_code=violation.snippet,
        proposed_fix=violation.fix if mechanical else (violation.suggestion or ""),
        explanation=violation.message,
        mechanical=mechanical,
    )


def keep_violation(violation: Violation, config: DetectionConfig) -> bool:
    """Apply the configured severity and certainty filters."""
    try:
        minimum = Severity(config.min_severity)
    except ValueError:
        minimum = Severity.INFO
    if SEVERITY_LEVEL[Severity(violation.severity)] < SEVERITY_LEVEL[minimum]:
        return False
    if not config.include_potential and violation.certainty == Certainty.POTENTIAL:
        return False
    return True


def build_descriptors(
    rule: RuleDetector, violations: list[Violation]
) -> list[ChangeDescriptor]:
    """Group *violations* by file into one descriptor per file.

    File paths are resolved so that every rule names a file the same way.
    Files appear in order of their first violation.
    """
    by_file: dict[str, list[Change]] = {}
    violation_type = getattr(rule, "description", "") or rule.rule_id
    for violation in violations:
        target = str(Path(violation.file_path).resolve())
        by_file.setdefault(target, []).append(
            violation_to_change(violation, violation_type)
        )
    return [
        ChangeDescriptor(
            category=rule.category,
            rule=rule.rule_id,
            target_file=target,
            changes=changes,
        )
        for target, changes in by_file.items()
    ]


async def _invoke_detect(rule: RuleDetector, target: Path) -> list[Violation]:
    """Run a sync detector in a worker thread, or await an async one."""
    if inspect.iscoroutinefunction(rule.detect):
        result: Any = await rule.detect(target)
    else:
        result = await asyncio.to_thread(rule.detect, target)
        if inspect.isawaitable(result):
            result = await result
    return list(result or [])


async def run_detection(
    target: Path | str,
    rules: list[RuleDetector],
    queue: ChangeQueue,
    config: DetectionConfig | None = None,
    shutdown: "GracefulShutdown | None" = None,
) -> DetectionResult:
    """Run every rule against *target* and populate *queue*.

    Concurrency is gated by a semaphore created inside this function.

    Args:
        target: File or directory to scan.
        rules: Rules to fan out over (one task each).
        queue: Change queue receiving the descriptors.
        config: Detection settings (concurrency and filters).
        shutdown: Optional shutdown flag; tasks not yet started are skipped.

    Returns:
        Aggregate counts for the phase.

    Raises:
        ConfigurationError: If *target* does not exist.
    """
    config = config or DetectionConfig()
    target = Path(target)
    if not target.exists():
        raise ConfigurationError(f"Target path does not exist: {target}")

    logger.info("Starting detection: %d rules over %s", len(rules), target)
    semaphore = asyncio.Semaphore(max(1, config.max_concurrent))

    async def _detect_one(rule: RuleDetector) -> RuleRunResult:
        key = f"{rule.category}/{rule.rule_id}"
        async with semaphore:
            task_label_var.set(f"rule:{key}")
            if shutdown is not None and shutdown.should_stop:
                return RuleRunResult(rule_key=key, error="Shutdown requested")
            try:
                violations = await _invoke_detect(rule, target)
            except Exception as exc:
                logger.warning("Rule %s failed: %s", key, exc, exc_info=True)
                return RuleRunResult(rule_key=key, error=str(exc) or type(exc).__name__)

            kept = [v for v in violations if keep_violation(v, config)]
            result = RuleRunResult(rule_key=key, success=True, violations=len(kept))
            try:
                for descriptor in build_descriptors(rule, kept):
                    path = queue.write_descriptor(descriptor)
                    result.descriptors.append(str(path))
            except Exception as exc:
                logger.warning("Rule %s could not queue its findings: %s", key, exc)
                result.success = False
                result.error = str(exc)
                return result

            if kept:
                logger.info(
                    "Rule %s: %d violation(s) in %d file(s)",
                    key,
                    len(kept),
                    len(result.descriptors),
                )
            else:
                logger.debug("Rule %s: no violations", key)
            return result

    rule_results: list[RuleRunResult] = await asyncio.gather(
        *(_detect_one(rule) for rule in rules)
    )

    detection = DetectionResult(
        rules_total=len(rules),
        rules_failed=sum(1 for r in rule_results if not r.success),
        violations_found=sum(r.violations for r in rule_results if r.success),
        descriptors_written=sum(len(r.descriptors) for r in rule_results),
        rule_results=list(rule_results),
    )
    logger.info(
        "Detection complete -- %d/%d rules succeeded, %d violation(s), %d descriptor(s)",
        detection.rules_total - detection.rules_failed,
        detection.rules_total,
        detection.violations_found,
        detection.descriptors_written,
    )
    return detection
