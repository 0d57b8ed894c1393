"""Merge coordinator -- folds per-rule descriptors into one per file.

The merge is a pure function (:func:`merge_descriptors`) wrapped by
:func:`run_merge`, which does the queue I/O: it consumes every raw
descriptor (malformed ones included, so the next detection pass starts
from an empty queue) and writes the merged set.
"""

from __future__ import annotations

import logging

from src.fix_orchestrator.change_queue import ChangeQueue
from src.fix_orchestrator.exceptions import DescriptorParseError, QueueStateError
from src.fixer_shared.models import (
    Change,
    ChangeDescriptor,
    MergedDescriptor,
    MergeResult,
)

logger = logging.getLogger(__name__)


def _find_conflicts(owners: dict[int, set[str]]) -> list[int]:
    return sorted(line for line, rules in owners.items() if len(rules) > 1)


def merge_descriptors(descriptors: list[ChangeDescriptor]) -> list[MergedDescriptor]:
    """Group *descriptors* by target file.

    Changes are concatenated in discovery order.  Categories and rules are
    de-duplicated keeping first-seen order; rules are listed by their
    ``category/rule`` key.  A line touched by more than
    one rule is listed in ``conflicts``; every change is still kept.

    Returns:
        One merged descriptor per distinct target file, in order of first
        appearance.
    """
    changes: dict[str, list[Change]] = {}
    categories: dict[str, list[str]] = {}
    rules: dict[str, list[str]] = {}
    owners: dict[str, dict[int, set[str]]] = {}

    for descriptor in descriptors:
        target = descriptor.target_file
        changes.setdefault(target, []).extend(descriptor.changes)
        cats = categories.setdefault(target, [])
        if descriptor.category not in cats:
            cats.append(descriptor.category)
        rule_key = f"{descriptor.category}/{descriptor.rule}"
        file_rules = rules.setdefault(target, [])
        if rule_key not in file_rules:
            file_rules.append(rule_key)
        line_owners = owners.setdefault(target, {})
        for change in descriptor.changes:
            line_owners.setdefault(change.line_number, set()).add(rule_key)

    return [
        MergedDescriptor(
            target_file=target,
            changes=file_changes,
            categories=categories[target],
            rules=rules[target],
            conflicts=_find_conflicts(owners[target]),
        )
        for target, file_changes in changes.items()
    ]


def run_merge(queue: ChangeQueue) -> MergeResult:
    """Consume the raw queue and write the merged descriptors.

    Malformed descriptors are logged, counted and deleted.  The previous
    iteration's merged directory is cleared first, so the returned paths
    are exactly this iteration's files.

    Returns:
        The merge outcome; no merged paths means convergence.
    """
    queue.clear_merged()
    result = MergeResult()

    descriptors: list[ChangeDescriptor] = []
    consumed = queue.list_descriptors()
    for path in consumed:
        try:
            descriptors.append(queue.read_descriptor(path))
        except DescriptorParseError as exc:
            logger.warning("Skipping %s", exc)
            result.descriptors_skipped += 1
    result.descriptors_read = len(descriptors)

    merged = [m for m in merge_descriptors(descriptors) if m.changes]
    for item in merged:
        # The directory was just cleared, so an existing file means two
        # targets share a merged name.
        if queue.merged_path(item.target_file).exists():
            raise QueueStateError(
                str(queue.merged_dir),
                message=(
                    f"Merged descriptor for {item.target_file} would overwrite "
                    f"{queue.merged_path(item.target_file)}"
                ),
            )
        path = queue.write_merged(item)
        result.merged_paths.append(str(path))
        result.total_changes += len(item.changes)
        if item.conflicts:
            result.conflicts[item.target_file] = list(item.conflicts)
            logger.warning(
                "Overlapping edits from several rules in %s at line(s) %s",
                item.target_file,
                ", ".join(str(line) for line in item.conflicts),
            )

    for path in consumed:
        queue.remove(path)

    logger.info(
        "Merge complete -- %d descriptor(s) into %d file(s), %d change(s), %d skipped",
        result.descriptors_read,
        len(result.merged_paths),
        result.total_changes,
        result.descriptors_skipped,
    )
    return result
