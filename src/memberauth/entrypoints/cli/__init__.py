"""ABOUTME: Main CLI entry point using Click for member authentication administration
ABOUTME: Provides subcommands for database setup and member account recovery"""

import click

from memberauth.adapters.database import start_mappers
from memberauth.logging import logging_setup

VERSION = "0.1.0"


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Member authentication administration CLI."""
    ctx.ensure_object(dict)
    logging_setup()
    start_mappers()


@cli.command()
def version() -> None:
    """Show memberauth version."""
    click.echo(f"memberauth {VERSION}")


# Import subcommands to register them
from .database import database  # noqa: E402
from .members import members  # noqa: E402

cli.add_command(database)
cli.add_command(members)


if __name__ == "__main__":
    cli()
