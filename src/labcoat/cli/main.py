# Copyright (c) Syntropy Systems
"""Main CLI entry point for labcoat."""

import typer

from labcoat.cli.init_cmd import init
from labcoat.cli.report import observations, report

app = typer.Typer(
    name="labcoat",
    help=(
        "Science experiments for live code paths. Inspect what your "
        "candidates did while the control kept serving."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(report)
_ = app.command()(observations)


if __name__ == "__main__":
    app()
