"""Command-line entry point: parse a GC log and render the event stream summary."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from gcstream import __version__
from gcstream.models import JvmRun
from gcstream.parser import parse_canonical_lines
from gcstream.preprocess import preprocess
from gcstream.summary import RunSummary, SummaryThresholds, summarize

# ============================================================
# RICH OUTPUT RENDERING
# ============================================================

GCSTREAM_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
    }
)

console = Console(theme=GCSTREAM_THEME)


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich; debug detail only when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def render_warning_banner(warnings: list[str]) -> Panel:
    """Render warnings in a prominent banner."""
    if not warnings:
        return Panel(Text("No warnings", style="success"), title="Status", border_style="green")

    critical = any("CRITICAL" in warning for warning in warnings)
    if critical:
        title_text = "[critical]Critical Warnings[/critical]"
    else:
        title_text = "[warning]Warnings[/warning]"

    warning_text = Text()
    for index, warning in enumerate(warnings):
        line_ending = "\n" if index < len(warnings) - 1 else ""
        style = "critical" if "CRITICAL" in warning else "warning"
        warning_text.append(warning + line_ending, style=style)

    return Panel(
        warning_text, title=title_text, border_style="red" if critical else "yellow", expand=True
    )


def format_millis(millis: float) -> str:
    if millis >= 1000:
        return f"{millis / 1000:.3f} s"
    return f"{millis:.0f} ms"


def format_kb(kilobytes: int | None) -> str:
    if kilobytes is None:
        return "n/a"
    if kilobytes >= 1024 * 1024:
        return f"{kilobytes / (1024 * 1024):.2f} GB"
    if kilobytes >= 1024:
        return f"{kilobytes / 1024:.1f} MB"
    return f"{kilobytes} KB"


def build_overview_rows(summary: RunSummary) -> list[tuple[str, str]]:
    ratio = summary.gc_stopped_ratio_percentage
    return [
        ("Events", str(summary.event_count)),
        ("Unidentified lines", str(summary.unidentified_count)),
        ("First timestamp", format_millis(summary.first_timestamp_ms)),
        ("Last timestamp", format_millis(summary.last_timestamp_ms)),
        ("Run duration", format_millis(summary.run_duration_ms)),
        ("GC throughput", f"{summary.gc_throughput_percentage:.2f}%"),
        ("Stopped-time throughput", f"{summary.stopped_time_throughput_percentage:.2f}%"),
        ("GC / stopped time", f"{ratio:.2f}%" if ratio is not None else "n/a"),
    ]


def build_pause_rows(summary: RunSummary) -> list[tuple[str, str]]:
    return [
        ("Blocking collections", str(summary.blocking_event_count)),
        ("Total pause", format_millis(summary.total_pause_ms)),
        ("Max pause", format_millis(summary.max_pause_ms)),
        ("P50 pause", format_millis(summary.p50_pause_ms)),
        ("P95 pause", format_millis(summary.p95_pause_ms)),
        ("P99 pause", format_millis(summary.p99_pause_ms)),
        ("Promotion failures", str(summary.promotion_failure_count)),
        ("Stopped-time events", str(summary.stopped_time_event_count)),
        ("Total stopped time", format_millis(summary.total_stopped_time_ms)),
        ("Max stopped time", format_millis(summary.max_stopped_time_ms)),
    ]


def build_memory_rows(summary: RunSummary) -> list[tuple[str, str]]:
    return [
        ("Max heap space", format_kb(summary.max_heap_space_kb)),
        ("Max heap occupancy", format_kb(summary.max_heap_occupancy_kb)),
        ("Max perm/metaspace space", format_kb(summary.max_perm_space_kb)),
        ("Max perm/metaspace occupancy", format_kb(summary.max_perm_occupancy_kb)),
    ]


def create_counts_table(title: str, column: str, counts: dict[str, int]) -> Table:
    """Create a table of counts, largest first."""
    table = Table(title=title, header_style="header")
    table.add_column(column, style="info")
    table.add_column("Count", justify="right", style="metric")
    for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0])):
        table.add_row(name, str(count))
    return table


def create_unidentified_table(run: JvmRun, limit: int) -> Table:
    """List the first unidentified lines so new log shapes can be spotted."""
    table = Table(
        title=f"Unidentified Lines (first {min(limit, len(run.unidentified))} of "
        f"{len(run.unidentified)})",
        header_style="header",
    )
    table.add_column("Line", justify="right", style="label")
    table.add_column("Text", style="warning", overflow="fold")
    for unidentified in run.unidentified[:limit]:
        table.add_row(str(unidentified.line_number), Text(unidentified.text))
    return table


def render_rich_output(run: JvmRun, summary: RunSummary, show_unidentified: int) -> None:
    """Print the full report to the console."""
    console.print()
    console.print(render_warning_banner(summary.warnings))
    console.print(create_key_value_table("Run Overview", build_overview_rows(summary)))
    console.print(create_key_value_table("Pauses", build_pause_rows(summary)))
    console.print(create_key_value_table("Memory", build_memory_rows(summary)))
    console.print(create_counts_table("Event Types", "Event type", summary.event_type_counts))
    if summary.trigger_counts:
        console.print(create_counts_table("Triggers", "Trigger", summary.trigger_counts))
    if run.vm_options:
        console.print(Panel(Text(run.vm_options), title="VM Options", border_style="cyan"))
    if run.unidentified and show_unidentified > 0:
        console.print(create_unidentified_table(run, show_unidentified))


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="gcstream",
    help="Parse JVM garbage collection logs into a typed event stream",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.command()
def analyze(
    log_file: Annotated[
        Path,
        typer.Argument(
            help="Path to GC log file to parse",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    reference_date: Annotated[
        datetime | None,
        typer.Option(
            "--reference-date",
            "-r",
            help="JVM start time for logs that print only date stamps "
            "(default: first date stamp in the log)",
            formats=["%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"],
        ),
    ] = None,
    jvm_options: Annotated[
        str | None,
        typer.Option(
            "--jvm-options",
            "-j",
            help="JVM options string, used when the log has no CommandLine flags header",
        ),
    ] = None,
    preprocessed: Annotated[
        Path | None,
        typer.Option(
            "--preprocessed",
            "-p",
            help="Write the preprocessed (canonical) lines to this file",
            file_okay=True,
            dir_okay=False,
        ),
    ] = None,
    show_unidentified: Annotated[
        int,
        typer.Option(
            "--show-unidentified",
            help="Number of unidentified lines to list (default: 20)",
            min=0,
        ),
    ] = 20,
    throughput_warning: Annotated[
        float,
        typer.Option(
            "--throughput-warning",
            help="GC throughput percentage below which to warn (default: 90.0)",
            min=0.0,
            max=100.0,
        ),
    ] = 90.0,
    pause_warning: Annotated[
        int,
        typer.Option(
            "--pause-warning",
            help="Pause length in milliseconds that triggers a warning (default: 5000)",
            min=0,
        ),
    ] = 5000,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output with detailed parsing information",
        ),
    ] = False,
) -> None:
    """Parse a JVM GC log file and summarize its events.

    Exit codes: 0 = clean, 1 = warnings or error, 2 = critical warnings.
    """
    configure_logging(verbose)

    try:
        lines = log_file.read_text(encoding="utf-8", errors="replace").splitlines()

        if verbose:
            console.print(f"[info]Read {len(lines)} lines from {log_file}[/info]")

        with Progress(
            SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console
        ) as progress:
            parse_task = progress.add_task("[cyan]Parsing GC events...", total=None)
            canonical = list(preprocess(lines, reference_date))
            run = parse_canonical_lines(canonical, vm_options=jvm_options)
            progress.update(parse_task, completed=100)

        if preprocessed:
            preprocessed.write_text(
                "".join(f"{line.text}\n" for line in canonical), encoding="utf-8"
            )
            console.print(f"[success]Preprocessed log written to {preprocessed}[/success]")

        if not run.events:
            console.print("[critical]ERROR: No GC events found in log file[/critical]")
            sys.exit(1)

        thresholds = SummaryThresholds(
            throughput_warning_percentage=throughput_warning,
            throughput_critical_percentage=min(
                throughput_warning, SummaryThresholds().throughput_critical_percentage
            ),
            pause_warning_ms=pause_warning,
            pause_critical_ms=max(pause_warning, SummaryThresholds().pause_critical_ms),
        )
        summary = summarize(run, thresholds)
        render_rich_output(run, summary, show_unidentified)

        if any("CRITICAL" in warning for warning in summary.warnings):
            sys.exit(2)
        elif summary.warnings:
            sys.exit(1)

    except ValueError as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[critical]ERROR: {e}[/critical]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"gcstream {__version__}")


if __name__ == "__main__":
    app()
