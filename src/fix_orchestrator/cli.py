"""Command-line entry point for style-fixer.

Usage::

    style-fixer TARGET [MAX_ITERATIONS] [--dry-run] [--config FILE]
                       [--backend claude|patch] [--max-concurrent N]

Exit codes: 0 when the run converged, exhausted its iteration budget or
was a dry run; 1 on configuration or pipeline errors; 2 on usage errors;
130 when interrupted by a signal.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from functools import partial
from pathlib import Path
from typing import Optional

import typer
import yaml

from src.fix_orchestrator.backends import create_backend
from src.fix_orchestrator.config import FixerConfig, load_fixer_config
from src.fix_orchestrator.display import (
    print_dry_run,
    print_error_panel,
    print_final_summary,
    print_phase_result,
    print_run_header,
)
from src.fix_orchestrator.exceptions import ConfigurationError, PipelineError
from src.fix_orchestrator.pipeline import execute_pipeline
from src.fixer_shared import __version__
from src.fixer_shared.constants import (
    BACKEND_CLAUDE,
    CREDENTIAL_ENV_VAR,
    OUTCOME_INTERRUPTED,
)
from src.fixer_shared.logging import setup_logging
from src.style_rules.base import iter_source_files
from src.style_rules.registry import RuleRegistry, default_registry

EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="style-fixer",
    help="Scan a code tree with style rules and drive fixes until it converges.",
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"style-fixer {__version__}")
        raise typer.Exit()


def _load_config(
    config_path: Optional[Path],
    max_iterations: Optional[int],
    backend: Optional[str],
    max_concurrent: Optional[int],
) -> FixerConfig:
    """Load the YAML config and apply command-line overrides.

    Raises:
        ConfigurationError: If an explicit config file is missing or invalid.
    """
    if config_path is not None and not config_path.is_file():
        raise ConfigurationError(f"Config file not found: {config_path}")
    try:
        config = load_fixer_config(config_path)
    except (yaml.YAMLError, TypeError, AttributeError) as exc:
        raise ConfigurationError(f"Invalid config file {config_path}: {exc}") from exc

    if max_iterations is not None:
        config.max_iterations = max_iterations
    if backend is not None:
        config.apply.backend = backend
    if max_concurrent is not None:
        config.apply.max_concurrent = max_concurrent
    return config


def _check_backend_available(config: FixerConfig) -> None:
    """Fail fast when the claude backend cannot run.

    Raises:
        ConfigurationError: Missing credential or CLI binary.
    """
    if config.apply.backend != BACKEND_CLAUDE:
        return
    if not os.environ.get(CREDENTIAL_ENV_VAR):
        raise ConfigurationError(
            f"{CREDENTIAL_ENV_VAR} environment variable is required "
            "for the claude backend"
        )
    if shutil.which(config.apply.claude_binary) is None:
        raise ConfigurationError(
            f"Claude CLI '{config.apply.claude_binary}' is not on PATH. "
            "Install it or use --backend patch."
        )


def _dry_run(target: Path, registry: RuleRegistry, config: FixerConfig) -> None:
    categories: dict[str, list[str]] = {}
    extensions: set[str] = set()
    for rule in registry:
        categories.setdefault(rule.category, []).append(rule.rule_id)
        extensions.update(getattr(rule, "extensions", (".py",)))
    files = [str(p) for p in iter_source_files(target, extensions or (".py",))]
    print_dry_run(
        target,
        categories,
        files,
        max_iterations=config.max_iterations,
        max_concurrent_rules=config.detection.max_concurrent,
        max_concurrent_files=config.apply.max_concurrent,
    )


@app.command()
def run(
    target: Path = typer.Argument(..., help="File or directory to remediate."),
    max_iterations: Optional[int] = typer.Argument(
        None, min=1, help="Maximum scan/remediate cycles (default 10)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Show the plan without scanning or editing."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file."
    ),
    backend: Optional[str] = typer.Option(
        None, "--backend", "-b", help="Remediation backend: claude or patch."
    ),
    max_concurrent: Optional[int] = typer.Option(
        None, "--max-concurrent", min=1, help="Concurrent remediation tasks."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Scan TARGET, fix what the rules find, and repeat until clean."""
    try:
        config = _load_config(config_path, max_iterations, backend, max_concurrent)
    except ConfigurationError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    setup_logging(
        level="DEBUG" if verbose else config.log_level,
        json_format=config.json_logs,
    )

    if not target.exists():
        print_error_panel(f"Target path does not exist: {target}")
        raise typer.Exit(code=1)

    registry = default_registry(config.detection)
    if dry_run:
        _dry_run(target, registry, config)
        return

    try:
        _check_backend_available(config)
        remediation = create_backend(config.apply.backend, config.apply)
    except ConfigurationError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    print_run_header(target, config.max_iterations, len(registry), remediation.name)
    try:
        state = asyncio.run(
            execute_pipeline(
                target,
                registry.rules,
                remediation,
                config=config,
                on_phase=partial(print_phase_result, max_iterations=config.max_iterations),
            )
        )
    except PipelineError as exc:
        print_error_panel(exc)
        raise typer.Exit(code=1)

    print_final_summary(state)
    if state.outcome == OUTCOME_INTERRUPTED:
        raise typer.Exit(code=EXIT_INTERRUPTED)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
