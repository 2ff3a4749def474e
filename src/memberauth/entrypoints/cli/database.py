"""ABOUTME: CLI commands for database management operations
ABOUTME: Provides commands to create and reset the credential store tables"""

import os

import click

from memberauth.adapters.orm import metadata
from memberauth.service_layer.unit_of_work import SqlAlchemyUnitOfWork


def get_uow(ctx: click.Context) -> SqlAlchemyUnitOfWork:
    """Build a unit of work, using a session factory from the context object if one was given."""
    session_factory = (ctx.obj or {}).get("session_factory")
    return SqlAlchemyUnitOfWork(session_factory)


@click.group()
def database() -> None:
    """Database management commands."""
    pass


@database.command("init")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create any missing tables."""
    try:
        with get_uow(ctx) as uow:
            metadata.create_all(uow.session.get_bind())
        click.echo(click.style("✓ Database tables created.", "green"))
    except Exception as e:
        click.echo(click.style(f"✗ Error creating tables: {e}", "red"))
        raise click.Abort() from e


@database.command("reset")
@click.pass_context
def reset_db(ctx: click.Context) -> None:
    """Reset the database (drop all tables and recreate)."""
    if os.environ.get("ALLOW_RESET_DB", "") != "DANGEROUS":
        click.echo("Resetting the database is a dangerous operation. In order to enable it set the")
        click.echo("environment variable ALLOW_RESET_DB to DANGEROUS.")
        return

    click.echo(click.style("⚠️  WARNING: This will destroy ALL members and the audit trail!", "red"))
    delete_confirm = click.prompt("Type 'delete everything' if you want to continue.")
    if delete_confirm != "delete everything":
        click.echo("Operation cancelled.")
        return

    try:
        with get_uow(ctx) as uow:
            bind = uow.session.get_bind()
            metadata.drop_all(bind)
            metadata.create_all(bind)
        click.echo(click.style("✓ Database reset successfully.", "green"))
    except Exception as e:
        click.echo(click.style(f"✗ Error resetting database: {e}", "red"))
        raise click.Abort() from e
