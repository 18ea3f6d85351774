# Copyright (c) Syntropy Systems
"""labcoat report and observations commands."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.table import Table

from labcoat.config import get_db_path, require_labcoat_dir
from labcoat.db import get_connection, get_experiment_stats, get_observations, summarize
from labcoat.publishers import read_observations

if TYPE_CHECKING:
    from labcoat.models.observation import ExperimentStats, Observation

console = Console()


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds for display."""
    if seconds is None:
        return "-"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.1f}ms"
    return f"{seconds:.2f}s"


def _open_db() -> Path:
    try:
        labcoat_dir = require_labcoat_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    db_path = get_db_path(labcoat_dir)
    if not db_path.exists():
        console.print(f"[red]Error:[/red] Database not found: {db_path}")
        raise typer.Exit(1)
    return db_path


def _read_file(file: Path) -> list[Observation]:
    if not file.exists():
        console.print(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)
    return read_observations(file)


def report(
    experiment: Optional[str] = typer.Option(
        None,
        "--experiment", "-e",
        help="Only report this experiment",
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file", "-f",
        help="Read observations from a JSONL file instead of the database",
    ),
) -> None:
    """Summarize match rates and timings per experiment."""
    stats: list[ExperimentStats]
    if file is not None:
        records = _read_file(file)
        if experiment:
            records = [o for o in records if o.name == experiment]
        stats = summarize(records)
    else:
        conn = get_connection(_open_db())
        try:
            stats = get_experiment_stats(conn, name=experiment)
        finally:
            conn.close()

    if not stats:
        console.print("[dim]No observations found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Experiment", no_wrap=True)
    table.add_column("Runs", justify="right")
    table.add_column("Matched", justify="right")
    table.add_column("Mismatched", justify="right")
    table.add_column("Match rate", justify="right", no_wrap=True)
    table.add_column("Control", justify="right")
    table.add_column("Candidate", justify="right")
    table.add_column("Candidate errors", justify="right")

    for row in stats:
        rate_style = "green" if row.mismatched == 0 else "yellow"
        if row.match_rate < 0.5:  # noqa: PLR2004
            rate_style = "red"

        table.add_row(
            row.name,
            str(row.runs),
            str(row.matched),
            str(row.mismatched),
            f"[{rate_style}]{row.match_rate:.1%}[/{rate_style}]",
            format_duration(row.mean_control_duration),
            format_duration(row.mean_candidate_duration),
            str(row.candidate_errors),
        )

    console.print(table)


def observations(
    experiment: Optional[str] = typer.Option(
        None,
        "--experiment", "-e",
        help="Filter by experiment name",
    ),
    mismatched: bool = typer.Option(
        False,
        "--mismatched", "-m",
        help="Only show mismatches",
    ),
    last: int = typer.Option(
        20,
        "--last", "-n",
        help="Number of observations to show",
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file", "-f",
        help="Read observations from a JSONL file instead of the database",
    ),
) -> None:
    """List recent observations, newest first."""
    records: list[Observation]
    if file is not None:
        records = _read_file(file)
        if experiment:
            records = [o for o in records if o.name == experiment]
        if mismatched:
            records = [o for o in records if not o.matched]
        records = list(reversed(records))[:last]
    else:
        conn = get_connection(_open_db())
        try:
            rows = get_observations(
                conn,
                name=experiment,
                matched=False if mismatched else None,
                limit=last,
            )
        finally:
            conn.close()
        records = [row.to_observation() for row in rows]

    if not records:
        console.print("[dim]No observations found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time", style="dim")
    table.add_column("Experiment", no_wrap=True)
    table.add_column("Result", no_wrap=True)
    table.add_column("Control", justify="right")
    table.add_column("Candidate", justify="right")
    table.add_column("Errors", overflow="fold")

    for record in records:
        result = "[green]matched[/green]" if record.matched else "[red]mismatched[/red]"

        errors: list[str] = []
        if record.control_error:
            errors.append(f"control: {record.control_error}")
        if record.candidate_error:
            errors.append(f"candidate: {record.candidate_error}")

        table.add_row(
            record.timestamp,
            record.name,
            result,
            format_duration(record.control_duration),
            format_duration(record.candidate_duration),
            "; ".join(errors) or "-",
        )

    console.print(table)
