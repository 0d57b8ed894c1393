"""Configuration dataclasses and loader for style-fixer."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.fixer_shared.constants import (
    BACKEND_CLAUDE,
    DEFAULT_APPLY_TIMEOUT,
    DEFAULT_MAX_CONCURRENT_FILES,
    DEFAULT_MAX_CONCURRENT_RULES,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_TURNS,
    QUEUE_DIR,
    STATE_DIR,
)


@dataclass
class DetectionConfig:
    """Configuration for the detection phase."""

    max_concurrent: int = DEFAULT_MAX_CONCURRENT_RULES
    min_severity: str = "info"
    include_potential: bool = True
    categories: list[str] = field(default_factory=list)
    rule_dirs: list[str] = field(default_factory=list)
    builtin_rules: bool = True


@dataclass
class ApplyConfig:
    """Configuration for the apply phase and its remediation backend."""

    max_concurrent: int = DEFAULT_MAX_CONCURRENT_FILES
    max_turns: int = DEFAULT_MAX_TURNS
    timeout: int = DEFAULT_APPLY_TIMEOUT
    backend: str = BACKEND_CLAUDE
    claude_binary: str = "claude"
    model: str = ""


@dataclass
class FixerConfig:
    """Top-level configuration composing all sub-configs."""

    detection: DetectionConfig = field(default_factory=DetectionConfig)
    apply: ApplyConfig = field(default_factory=ApplyConfig)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    queue_dir: str = QUEUE_DIR
    state_dir: str = STATE_DIR
    budget_limit: float | None = None
    phase_timeouts: dict[str, int] = field(default_factory=dict)
    log_level: str = "WARNING"
    json_logs: bool = False


def load_fixer_config(path: Path | str | None = None) -> FixerConfig:
    """Load configuration from a YAML file.

    Missing top-level sections fall back to defaults.  Unknown keys are
    silently ignored so that forward-compatible config files work.

    Args:
        path: Path to config YAML.  If ``None`` or the file does not
              exist, returns full defaults.

    Returns:
        Populated configuration dataclass.
    """
    if path is None:
        return FixerConfig()

    path = Path(path)
    if not path.exists():
        return FixerConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    def _pick(data: dict[str, Any], cls: type) -> dict[str, Any]:
        """Filter *data* to only keys accepted by *cls*."""
        valid = {f.name for f in cls.__dataclass_fields__.values()}
        return {k: v for k, v in data.items() if k in valid}

    detection_raw = raw.get("detection") or {}
    apply_raw = raw.get("apply") or {}

    top_level = _pick(raw, FixerConfig)
    # Remove sub-config keys that need special handling
    for key in ("detection", "apply"):
        top_level.pop(key, None)

    return FixerConfig(
        detection=DetectionConfig(**_pick(detection_raw, DetectionConfig)),
        apply=ApplyConfig(**_pick(apply_raw, ApplyConfig)),
        **top_level,
    )
