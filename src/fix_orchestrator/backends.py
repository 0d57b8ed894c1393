"""Remediation backends -- the capability that edits one target file.

Two implementations of :class:`~src.fixer_shared.protocols.RemediationBackend`:

* :class:`ClaudeCodeBackend` runs the ``claude`` CLI non-interactively,
  pointing it at the merged descriptor and limiting it to the Read and
  Edit tools.
* :class:`TextPatchBackend` applies mechanical changes in-process.  It is
  deterministic, needs no credential and is what the test-suite uses.

Use :func:`create_backend` to pick one by name.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from src.fix_orchestrator.config import ApplyConfig
from src.fix_orchestrator.exceptions import ConfigurationError, RemediationError
from src.fixer_shared.constants import (
    ALL_BACKENDS,
    BACKEND_CLAUDE,
    BACKEND_PATCH,
    MARKER_APPLIED,
    MARKER_FAILED,
)
from src.fixer_shared.models import ApplyResult, MergedDescriptor

logger = logging.getLogger(__name__)

# Keys stripped from the editor subprocess environment.  ANTHROPIC_API_KEY
# stays: the CLI authenticates with it.
_FILTERED_ENV_KEYS = {"OPENAI_API_KEY", "AWS_SECRET_ACCESS_KEY"}

SYSTEM_PROMPT = f"""You are a code editor. Your job is to apply the changes described in a change descriptor file.

## Instructions

1. Read the change descriptor JSON file provided in the prompt
2. Read the target source file named by its "targetFile" field
3. Apply ALL changes described in the descriptor using the Edit tool
4. Verify the changes keep the file syntactically valid

## Rules

- Apply changes in reverse line order (bottom to top) to preserve line numbers
- Each change is anchored at "lineNumber"; "currentCode" is the code found there
- When "mechanical" is true, replace "currentCode" with "proposedFix" verbatim
- Otherwise "proposedFix" describes the fix; implement it
- Use the Edit tool for each change
- If a change cannot be applied exactly, make your best approximation
- Report completion with "{MARKER_APPLIED}" or "{MARKER_FAILED}" if errors occurred"""


def build_prompt(merged_path: Path | str) -> str:
    """User prompt for one merged descriptor."""
    return (
        f'Apply the changes described in "{merged_path}".\n\n'
        "Steps:\n"
        f'1. Read the change descriptor file at "{merged_path}"\n'
        "2. Read the target source file specified in the descriptor\n"
        "3. Apply each change using the Edit tool\n"
        f'4. Report "{MARKER_APPLIED}" when done'
    )


def _filtered_env() -> dict[str, str]:
    """Return a copy of ``os.environ`` with unrelated secret keys removed."""
    return {k: v for k, v in os.environ.items() if k not in _FILTERED_ENV_KEYS}


def parse_claude_output(stdout: str, returncode: int | None = 0) -> tuple[bool, float | None, str]:
    """Interpret the ``--output-format json`` result of one CLI run.

    Returns:
        ``(success, cost, error)``.  The run succeeded when the result
        subtype is ``success``, ``is_error`` is false and the reply does
        not report ``CHANGES_FAILED``.
    """
    text = stdout.strip()
    if not text:
        return (False, None, f"No result received (exit code {returncode})")

    data: Any = None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Some CLI versions stream several JSON lines; the result is last.
        for line in reversed(text.splitlines()):
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            break
    if isinstance(data, list):
        results = [m for m in data if isinstance(m, dict) and m.get("type") == "result"]
        data = results[-1] if results else None
    if not isinstance(data, dict):
        return (False, None, "Unparseable CLI output")

    cost_raw = data.get("total_cost_usd", data.get("cost_usd"))
    try:
        cost = float(cost_raw) if cost_raw is not None else None
    except (TypeError, ValueError):
        cost = None

    subtype = str(data.get("subtype", ""))
    if subtype != "success" or data.get("is_error"):
        return (False, cost, f"Editor finished with '{subtype or 'error'}'")
    result_text = str(data.get("result", ""))
    if MARKER_FAILED in result_text:
        return (False, cost, f"Editor reported {MARKER_FAILED}")
    if returncode not in (0, None):
        return (False, cost, f"Exit code {returncode}")
    return (True, cost, "")


class ClaudeCodeBackend:
    """Drive the ``claude`` CLI in print mode, one process per file."""

    name = BACKEND_CLAUDE

    def __init__(self, config: ApplyConfig | None = None, cwd: Path | str | None = None) -> None:
        self.config = config or ApplyConfig()
        self.cwd = Path(cwd) if cwd else Path.cwd()

    def build_command(self, merged_path: Path | str) -> list[str]:
        cmd = [
            self.config.claude_binary,
            "-p",
            build_prompt(merged_path),
            "--output-format",
            "json",
            "--max-turns",
            str(self.config.max_turns),
            "--allowedTools",
            "Read,Edit",
            "--permission-mode",
            "acceptEdits",
            "--append-system-prompt",
            SYSTEM_PROMPT,
        ]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return cmd

    async def apply_changes(
        self, merged: MergedDescriptor, merged_path: Path
    ) -> ApplyResult:
        start = time.monotonic()
        result = ApplyResult(target_file=merged.target_file, merged_path=str(merged_path))
        if not Path(merged.target_file).is_file():
            result.error = f"Target file not found: {merged.target_file}"
            return result

        proc = None
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(merged_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd),
                env=_filtered_env(),
            )
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Editor for %s timed out after %ds",
                merged.target_file,
                self.config.timeout,
            )
            result.error = f"Timed out after {self.config.timeout}s"
            return result
        except FileNotFoundError as exc:
            raise ConfigurationError(
                f"Claude CLI not found ('{self.config.claude_binary}'). "
                "Install it or select the 'patch' backend."
            ) from exc
        except OSError as exc:
            logger.error("Editor for %s failed to start: %s", merged.target_file, exc)
            result.error = str(exc)
            return result
        finally:
            if proc is not None and proc.returncode is None:
                proc.kill()
                await proc.wait()
            result.duration_s = round(time.monotonic() - start, 3)

        success, cost, error = parse_claude_output(
            stdout.decode(errors="replace"), proc.returncode
        )
        if not success and stderr:
            logger.debug("Editor stderr for %s: %s", merged.target_file, stderr.decode(errors="replace"))
        result.success = success
        result.cost = cost
        result.error = error
        return result


class TextPatchBackend:
    """Apply mechanical changes directly, bottom-to-top.

    Each change replaces the first occurrence of ``current_code`` on its
    anchored line with ``proposed_fix``.  The file is written only when
    every change applied, so a failed descriptor leaves it untouched.
    """

    name = BACKEND_PATCH

    def __init__(self, config: ApplyConfig | None = None) -> None:
        self.config = config or ApplyConfig()

    def patch_lines(self, merged: MergedDescriptor, lines: list[str]) -> list[str]:
        """Return *lines* with every change of *merged* applied.

        Raises:
            RemediationError: On a non-mechanical change or a stale anchor.
        """
        patched = list(lines)
        for change in merged.ordered_changes():
            if not change.mechanical:
                raise RemediationError(
                    merged.target_file,
                    f"Line {change.line_number}: change '{change.violation_type}' "
                    "needs an editor (no literal fix)",
                )
            index = change.line_number - 1
            if index >= len(patched) or change.current_code not in patched[index]:
                raise RemediationError(
                    merged.target_file,
                    f"Line {change.line_number}: expected code not found "
                    f"({change.current_code!r})",
                )
            patched[index] = patched[index].replace(
                change.current_code, change.proposed_fix, 1
            )
        return patched

    async def apply_changes(
        self, merged: MergedDescriptor, merged_path: Path
    ) -> ApplyResult:
        start = time.monotonic()
        result = ApplyResult(target_file=merged.target_file, merged_path=str(merged_path))
        target = Path(merged.target_file)
        try:
            text = target.read_text(encoding="utf-8")
            lines = self.patch_lines(merged, text.splitlines(keepends=True))
            target.write_text("".join(lines), encoding="utf-8")
        except (OSError, UnicodeDecodeError, RemediationError) as exc:
            result.error = str(exc)
        else:
            result.success = True
            result.cost = 0.0
        result.duration_s = round(time.monotonic() - start, 3)
        return result


def create_backend(
    name: str, config: ApplyConfig | None = None, cwd: Path | str | None = None
) -> ClaudeCodeBackend | TextPatchBackend:
    """Create the remediation backend called *name*.

    Raises:
        ConfigurationError: If *name* is not a known backend.
    """
    if name == BACKEND_CLAUDE:
        return ClaudeCodeBackend(config=config, cwd=cwd)
    if name == BACKEND_PATCH:
        return TextPatchBackend(config=config)
    raise ConfigurationError(
        f"Unknown backend '{name}'. Choose one of: {', '.join(ALL_BACKENDS)}"
    )
