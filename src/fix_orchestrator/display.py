"""Rich-based terminal display layer for run progress.

Provides the run header, per-phase summaries, the dry-run plan, error
panels and the final summary.  Uses a module-level
:class:`~rich.console.Console` singleton for consistent output.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.fixer_shared import __version__
from src.fixer_shared.constants import (
    OUTCOME_BUDGET_EXHAUSTED,
    OUTCOME_CONVERGED,
    PHASE_APPLY,
    PHASE_DETECTION,
    PHASE_MERGE,
)

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_run_header(
    target: str | Path,
    max_iterations: int,
    rule_count: int,
    backend: str,
) -> None:
    """Print a Rich panel identifying the run."""
    header = Text()
    header.append("Style Fixer", style="bold white")
    header.append(f" v{__version__}\n", style="dim")
    header.append("Target: ", style="bold")
    header.append(f"{target}\n", style="green")
    header.append("Rules: ", style="bold")
    header.append(f"{rule_count}\n", style="cyan")
    header.append("Max iterations: ", style="bold")
    header.append(f"{max_iterations}\n", style="cyan")
    header.append("Backend: ", style="bold")
    header.append(backend, style="cyan")

    _console.print(
        Panel(
            header,
            title="[bold]Run Overview[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_iteration_header(iteration: int, max_iterations: int = 0) -> None:
    label = f"{iteration}/{max_iterations}" if max_iterations else str(iteration)
    _console.rule(f"[bold]Iteration {label}[/bold]")


def print_detection_summary(result: Any) -> None:
    """Print a one-line detection summary plus any failed rules."""
    ok = result.rules_total - result.rules_failed
    _console.print(
        f"[bold]Detection:[/bold] {ok}/{result.rules_total} rules, "
        f"[cyan]{result.violations_found}[/cyan] violation(s), "
        f"{result.descriptors_written} descriptor(s)"
    )
    for rule_result in result.rule_results:
        if not rule_result.success:
            _console.print(f"  [red]FAILED[/red] {rule_result.rule_key}: {rule_result.error}")


def print_merge_summary(result: Any) -> None:
    """Print merged file count, skipped entries and conflicting lines."""
    _console.print(
        f"[bold]Merge:[/bold] {len(result.merged_paths)} file(s), "
        f"{result.total_changes} change(s)"
    )
    if result.descriptors_skipped:
        _console.print(
            f"  [yellow]Skipped {result.descriptors_skipped} malformed descriptor(s)[/yellow]"
        )
    for target, lines in result.conflicts.items():
        joined = ", ".join(str(line) for line in lines)
        _console.print(f"  [yellow]Overlapping edits[/yellow] {target}: line(s) {joined}")


def print_apply_table(summary: Any) -> None:
    """Print a Rich table with one row per remediated file."""
    if not summary.results:
        _console.print("[dim]No files to update.[/dim]")
        return

    table = Table(title="Apply Results", show_header=True, header_style="bold magenta")
    table.add_column("File", style="cyan", min_width=30)
    table.add_column("Status", justify="center", min_width=10)
    table.add_column("Cost ($)", justify="right", min_width=10)
    table.add_column("Duration", justify="right", min_width=10)
    table.add_column("Error", style="dim")

    for result in summary.results:
        status = "[green]FIXED[/green]" if result.success else "[red]FAILED[/red]"
        cost_str = f"${result.cost:.4f}" if result.cost else "—"
        duration_str = f"{result.duration_s:.1f}s" if result.duration_s else "—"
        table.add_row(
            result.target_file or result.merged_path,
            status,
            cost_str,
            duration_str,
            result.error,
        )

    _console.print(table)
    _console.print(
        f"[bold]Apply:[/bold] {summary.succeeded}/{summary.total} files "
        f"(${summary.total_cost:.4f})"
    )


def print_phase_result(
    phase: str, iteration: int, result: Any, max_iterations: int = 0
) -> None:
    """Dispatch a pipeline progress callback to the matching printer."""
    if phase == PHASE_DETECTION:
        print_iteration_header(iteration, max_iterations)
        print_detection_summary(result)
    elif phase == PHASE_MERGE:
        print_merge_summary(result)
    elif phase == PHASE_APPLY:
        print_apply_table(result)


def print_dry_run(
    target: str | Path,
    categories: dict[str, list[str]],
    files: list[str],
    max_iterations: int,
    max_concurrent_rules: int,
    max_concurrent_files: int,
) -> None:
    """Print what a run would do without touching the queue.

    Parameters
    ----------
    categories:
        Category id mapped to the rule ids it contains.
    files:
        Candidate source files under *target*.
    """
    table = Table(title="Rules", show_header=True, header_style="bold magenta")
    table.add_column("Category", style="cyan", min_width=15)
    table.add_column("Rules", justify="right")
    table.add_column("Ids", style="dim")
    rule_count = 0
    for category, rule_ids in categories.items():
        rule_count += len(rule_ids)
        table.add_row(category, str(len(rule_ids)), ", ".join(rule_ids))
    _console.print(table)

    content = Text()
    content.append("Target: ", style="bold")
    content.append(f"{target}\n", style="green")
    content.append(f"Candidate files: {len(files)}\n")
    for path in files[:20]:
        content.append(f"  {path}\n", style="dim")
    if len(files) > 20:
        content.append(f"  ... and {len(files) - 20} more\n", style="dim")
    content.append(
        f"\nDetection: {rule_count} task(s), {max_concurrent_rules} at a time\n"
    )
    content.append(
        f"Apply: up to {len(files)} task(s) per iteration, "
        f"{max_concurrent_files} at a time\n"
    )
    content.append(f"Iterations: at most {max_iterations}")

    _console.print(
        Panel(
            content,
            title="[bold]Dry Run[/bold]",
            border_style="yellow",
            expand=False,
        )
    )


def print_error_panel(error: str | Exception) -> None:
    """Print an error message in a red Rich panel."""
    _console.print(
        Panel(
            Text(str(error), style="bold white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_final_summary(state: Any) -> None:
    """Print the final run summary with outcome, iterations and cost.

    Parameters
    ----------
    state:
        A ``RunState`` instance (or duck-typed dict/object).
    """
    outcome = _get_attr(state, "outcome", "")
    if outcome == OUTCOME_CONVERGED:
        style, title = "green", "Converged"
    elif outcome == OUTCOME_BUDGET_EXHAUSTED:
        style, title = "yellow", "Iteration Budget Exhausted"
    else:
        style, title = "red", "Interrupted"

    content = Text()
    content.append("Run ID: ", style="bold")
    content.append(f"{_get_attr(state, 'run_id', 'unknown')}\n", style="cyan")
    content.append("Outcome: ", style="bold")
    content.append(f"{outcome or 'unknown'}\n", style=style)
    content.append(
        f"Iterations: {_get_attr(state, 'iteration', 0)}"
        f"/{_get_attr(state, 'max_iterations', 0)}\n"
    )

    records = _get_attr(state, "iterations", []) or []
    if records:
        content.append("\nPer iteration:\n", style="bold")
        for record in records:
            content.append(
                f"  #{_get_attr(record, 'iteration', 0)}: "
                f"{_get_attr(record, 'violations_found', 0)} violation(s), "
                f"{_get_attr(record, 'files_merged', 0)} file(s), "
                f"{_get_attr(record, 'files_fixed', 0)} fixed\n"
            )

    total_cost = _get_attr(state, "total_cost", 0.0) or 0.0
    content.append("\nTotal Cost: ", style="bold")
    content.append(f"${total_cost:.4f}\n", style="cyan")

    if outcome == OUTCOME_BUDGET_EXHAUSTED:
        content.append("\nViolations may remain; run again to continue.\n", style="yellow")
    if _get_attr(state, "interrupted", False):
        reason = _get_attr(state, "interrupt_reason", "")
        content.append(f"\nInterrupted: {reason}\n", style="yellow")

    _console.print(
        Panel(
            content,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            expand=False,
        )
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
