"""Directory-backed change queue shared by the pipeline phases.

Layout::

    <queue_dir>/<category>-<rule>-<sanitized target>-<digest>.json   ChangeDescriptor
    <queue_dir>/merged/<sanitized target>-<digest>.json              MergedDescriptor

The sanitized parts keep names readable; the digest of the unflattened
identity keeps them unique, since flattening maps ``a_b.py`` and
``a/b.py`` to the same text.

Every write is atomic (temp file + rename) and temp files never carry
the ``.json`` suffix, so a reader only ever sees complete descriptors.
Detection tasks write disjoint names, the merge coordinator is the only
reader/deleter of raw descriptors and the only writer of merged ones.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from pathlib import Path

from pydantic import ValidationError

from src.fix_orchestrator.exceptions import DescriptorParseError, QueueStateError
from src.fixer_shared.constants import (
    DESCRIPTOR_SUFFIX,
    MERGED_SUBDIR,
    QUEUE_DIR,
    TEMP_SUFFIX,
)
from src.fixer_shared.models import ChangeDescriptor, MergedDescriptor
from src.fixer_shared.utils import atomic_write_json, ensure_dir, sanitize_filename

logger = logging.getLogger(__name__)


DIGEST_LENGTH = 12


def _digest(*parts: str) -> str:
    return hashlib.sha1("\0".join(parts).encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def descriptor_name(category: str, rule: str, target_file: str) -> str:
    """Queue filename for one (rule, file) pair."""
    return (
        f"{sanitize_filename(category)}-{sanitize_filename(rule)}-"
        f"{sanitize_filename(target_file)}-{_digest(category, rule, target_file)}"
        f"{DESCRIPTOR_SUFFIX}"
    )


def merged_name(target_file: str) -> str:
    """Merged-queue filename for one target file."""
    return f"{sanitize_filename(target_file)}-{_digest(target_file)}{DESCRIPTOR_SUFFIX}"


class ChangeQueue:
    """The durable mailbox between detection, merge and apply."""

    def __init__(self, root: Path | str = QUEUE_DIR) -> None:
        self.root = Path(root)
        self.merged_dir = self.root / MERGED_SUBDIR

    # ------------------------------------------------------------------
    # Raw descriptors
    # ------------------------------------------------------------------

    def write_descriptor(self, descriptor: ChangeDescriptor) -> Path:
        path = self.root / descriptor_name(
            descriptor.category, descriptor.rule, descriptor.target_file
        )
        atomic_write_json(path, descriptor.to_json())
        return path

    def list_descriptors(self) -> list[Path]:
        """Raw descriptor files in discovery (sorted name) order."""
        if not self.root.is_dir():
            return []
        return sorted(
            p for p in self.root.iterdir()
            if p.is_file() and p.suffix == DESCRIPTOR_SUFFIX
        )

    def read_descriptor(self, path: Path | str) -> ChangeDescriptor:
        """Parse one raw descriptor.

        Raises:
            DescriptorParseError: If the file is unreadable, not JSON, or
                does not match the descriptor schema.
        """
        return self._read(Path(path), ChangeDescriptor)

    def remove(self, path: Path | str) -> None:
        Path(path).unlink(missing_ok=True)

    def is_empty(self) -> bool:
        """True when no raw descriptor is waiting to be merged."""
        return not self.list_descriptors()

    def assert_empty(self) -> None:
        """Raise :class:`QueueStateError` unless the raw queue is empty."""
        leftover = self.list_descriptors()
        if leftover:
            raise QueueStateError(str(self.root), len(leftover))

    # ------------------------------------------------------------------
    # Merged descriptors
    # ------------------------------------------------------------------

    def merged_path(self, target_file: str) -> Path:
        return self.merged_dir / merged_name(target_file)

    def write_merged(self, merged: MergedDescriptor) -> Path:
        path = self.merged_path(merged.target_file)
        atomic_write_json(path, merged.to_json())
        return path

    def list_merged(self) -> list[Path]:
        if not self.merged_dir.is_dir():
            return []
        return sorted(
            p for p in self.merged_dir.iterdir()
            if p.is_file() and p.suffix == DESCRIPTOR_SUFFIX
        )

    def read_merged(self, path: Path | str) -> MergedDescriptor:
        """Parse one merged descriptor.

        Raises:
            DescriptorParseError: On unreadable or malformed content.
        """
        return self._read(Path(path), MergedDescriptor)

    def clear_merged(self) -> None:
        """Drop the previous iteration's merged descriptors."""
        if self.merged_dir.exists():
            shutil.rmtree(self.merged_dir)
        ensure_dir(self.merged_dir)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Empty the whole queue, including temp files left by a crash."""
        if self.root.exists():
            stale = [
                p for p in self.root.iterdir()
                if p.is_file() and p.suffix in (DESCRIPTOR_SUFFIX, TEMP_SUFFIX)
            ]
            if stale:
                logger.info("Removing %d stale queue entries from %s", len(stale), self.root)
            for path in stale:
                path.unlink(missing_ok=True)
        self.clear_merged()

    @staticmethod
    def _read(path: Path, model: type) -> ChangeDescriptor | MergedDescriptor:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise DescriptorParseError(str(path), str(exc)) from exc
        try:
            return model.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            raise DescriptorParseError(str(path), str(exc)) from exc
