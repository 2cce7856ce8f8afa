"""Rich-based terminal display layer for pipeline output.

Uses a module-level :class:`~rich.console.Console` singleton so that
formatting is consistent across the session.  Stage transcripts are
printed verbatim (markup disabled) because they contain raw tool output.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.ci_pipeline import __version__

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()


# ---------------------------------------------------------------------------
# Display functions
# ---------------------------------------------------------------------------


def print_pipeline_header(command: str, source: str, run_id: str = "") -> None:
    """Print a panel identifying the command, source tree, and run."""
    header = Text()
    header.append("CI Pipeline", style="bold white")
    header.append(f" v{__version__}\n", style="dim")
    header.append("Command: ", style="bold")
    header.append(f"{command}\n", style="cyan")
    header.append("Source: ", style="bold")
    header.append(f"{source}", style="green")
    if run_id:
        header.append("\nRun: ", style="bold")
        header.append(run_id, style="dim")

    _console.print(
        Panel(
            header,
            title="[bold]Pipeline[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_stage_output(output: str) -> None:
    """Print a stage transcript verbatim."""
    _console.print(output, markup=False, highlight=False)


def print_stage_table(result: Any) -> None:
    """Print a table with one row per completed stage.

    Parameters
    ----------
    result:
        A ``PipelineResult`` (or duck-typed object with ``results``).
    """
    table = Table(title="Stage Status", show_header=True, header_style="bold magenta")
    table.add_column("Phase", justify="right", min_width=5)
    table.add_column("Stage", style="cyan", min_width=15)
    table.add_column("Status", justify="center", min_width=10)

    for phase, stage_result in enumerate(_get_attr(result, "results", []), start=1):
        ok = _get_attr(stage_result, "success", False)
        status = "[green]PASSED[/green]" if ok else "[red]FAILED[/red]"
        table.add_row(str(phase), _get_attr(stage_result, "stage", "?"), status)

    _console.print(table)


def print_lint_summary(report: Any) -> None:
    """Print a panel with the module lint counters.

    Parameters
    ----------
    report:
        A ``ModuleLintReport`` instance or dict with ``errors`` and
        ``warnings``.
    """
    errors = _get_attr(report, "errors", 0)
    warnings = _get_attr(report, "warnings", 0)
    if errors:
        style, verdict = "red", "FAILED"
    elif warnings:
        style, verdict = "yellow", "PASSED WITH WARNINGS"
    else:
        style, verdict = "green", "PASSED"

    content = Text()
    content.append(f"Verdict: {verdict}\n", style=f"bold {style}")
    content.append(f"Errors: {errors}\n")
    content.append(f"Warnings: {warnings}")

    _console.print(
        Panel(
            content,
            title="[bold]Module Lint Summary[/bold]",
            border_style=style,
            expand=False,
        )
    )


def print_error_panel(error: str | Exception) -> None:
    """Print an error message in a red Rich panel.

    Parameters
    ----------
    error:
        Error message string or Exception instance.
    """
    error_text = str(error)
    _console.print(
        Panel(
            Text(error_text, style="bold white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            expand=False,
        )
    )


def print_success(message: str) -> None:
    """Print a one-line success message."""
    _console.print(Text(message, style="bold green"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Get attribute from object or dict, with fallback to default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
