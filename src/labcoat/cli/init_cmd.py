# Copyright (c) Syntropy Systems
"""labcoat init command."""

from dataclasses import asdict
from pathlib import Path

import typer
import yaml
from rich.console import Console

from labcoat.config import STORES, LabcoatConfig
from labcoat.db import init_db

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
    store: str = typer.Option(
        "sqlite",
        "--store",
        help="Default observation store (memory, jsonl, sqlite, log)",
    ),
) -> None:
    """Initialize a new labcoat project.

    Creates a .labcoat directory with configuration and database.
    """
    target = path.resolve()
    labcoat_dir = target / ".labcoat"

    if labcoat_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {labcoat_dir}")
        return

    if store not in STORES:
        console.print(f"[red]Unknown store:[/red] {store}")
        raise typer.Exit(1)

    config = LabcoatConfig(store=store)

    labcoat_dir.mkdir(parents=True)

    config_path = labcoat_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.dump(asdict(config), f, default_flow_style=False)

    # Initialize database
    db_path = labcoat_dir / "labcoat.db"
    init_db(db_path)

    console.print(f"[green]Initialized labcoat project:[/green] {labcoat_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]database:[/dim] {db_path}")
