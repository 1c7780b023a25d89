"""CLI entry point for OpenWorld."""

from __future__ import annotations

import logging

import click

from openworld import __version__
from openworld.engine_spine.cli import register_cli_commands


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    default="warning",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    help="Logging verbosity",
)
def cli(log_level: str):
    """OpenWorld - local AI engine manager."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


register_cli_commands(cli)


if __name__ == "__main__":
    cli()
