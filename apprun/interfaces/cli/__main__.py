"""Entry point for running the apprun CLI.

This module defines a top-level Click group that aggregates the subcommands
defined in the ``apprun.interfaces.cli`` package.
"""

import click

from .config import show_config
from .run import run


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
def cli() -> None:
    """Run asyncio applications with layered config, logging and signals."""


cli.add_command(run)
cli.add_command(show_config)


if __name__ == "__main__":
    cli()
