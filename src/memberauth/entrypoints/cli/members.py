"""ABOUTME: CLI commands for member account administration
ABOUTME: Provides commands to register members, lift lockouts, recover two-factor and read the audit trail"""

import click

from memberauth.domain.value_objects import RequestInfo
from memberauth.service_layer import login_service, two_factor_service
from memberauth.service_layer.audit_service import recent_audit_events
from memberauth.service_layer.exceptions import (
    MemberAlreadyExists,
    MemberNotFoundError,
    PolicyViolation,
    TwoFactorSetupError,
)
from memberauth.service_layer.member_service import get_member_by_email, register_member

from .database import get_uow

CLI_REQUEST = RequestInfo(ip_address="127.0.0.1", user_agent="memberauth-cli")


@click.group()
def members() -> None:
    """Member account commands."""
    pass


@members.command("add")
@click.option("--email", required=True, help="Member email address")
@click.option("--first-name", default="", help="Member first name")
@click.option("--last-name", default="", help="Member last name")
@click.option("--password", help="Password (will prompt if not provided)")
@click.pass_context
def add_member(ctx: click.Context, email: str, first_name: str, last_name: str, password: str | None) -> None:
    """Register a new member."""
    if not password:
        password = click.prompt("Password", hide_input=True, confirmation_prompt=True)

    try:
        member = register_member(
            get_uow(ctx),
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            request=CLI_REQUEST,
        )
    except MemberAlreadyExists as e:
        click.echo(click.style(f"✗ Error: {e}", "red"))
        raise click.Abort() from e
    except PolicyViolation as e:
        click.echo(click.style("✗ Error: password does not meet the requirements:", "red"))
        for rule in e.rules:
            click.echo(f"  - {rule}")
        raise click.Abort() from e
    except ValueError as e:
        click.echo(click.style(f"✗ Error: {e}", "red"))
        raise click.Abort() from e

    click.echo(click.style("✓ Member created successfully:", "green"))
    click.echo(f"  ID: {member.id}")
    click.echo(f"  Email: {member.email}")
    click.echo(f"  Name: {member.display_name}")


@members.command("unlock")
@click.option("--email", required=True, help="Member email address")
@click.pass_context
def unlock(ctx: click.Context, email: str) -> None:
    """Lift a login lockout and clear the failure counter."""
    try:
        member = get_member_by_email(get_uow(ctx), email)
        login_service.unlock_member(get_uow(ctx), member.id, request=CLI_REQUEST)
    except MemberNotFoundError as e:
        click.echo(click.style(f"✗ {e}", "red"))
        raise click.Abort() from e

    click.echo(click.style(f"✓ Member '{member.email}' unlocked.", "green"))


@members.command("reset-2fa")
@click.option("--email", required=True, help="Member email address")
@click.option("--disable", is_flag=True, help="Also turn two-factor verification off")
@click.pass_context
def reset_two_factor(ctx: click.Context, email: str, disable: bool) -> None:
    """Clear two-factor failures, for example after TOTP lockout."""
    try:
        member = get_member_by_email(get_uow(ctx), email)
        two_factor_service.reset_two_factor_attempts(get_uow(ctx), member.id, request=CLI_REQUEST)
        if disable:
            two_factor_service.disable_two_factor(
                get_uow(ctx), member.id, request=CLI_REQUEST, details="Disabled by administrator"
            )
    except (MemberNotFoundError, TwoFactorSetupError) as e:
        click.echo(click.style(f"✗ {e}", "red"))
        raise click.Abort() from e

    click.echo(click.style(f"✓ Two-factor attempts reset for '{member.email}'.", "green"))
    if disable:
        click.echo(click.style(f"✓ Two-factor authentication disabled for '{member.email}'.", "green"))


@members.command("audit")
@click.option("--email", required=True, help="Member email address")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1), help="Number of events")
@click.pass_context
def audit(ctx: click.Context, email: str, limit: int) -> None:
    """Show a member's most recent security events."""
    try:
        member = get_member_by_email(get_uow(ctx), email)
    except MemberNotFoundError as e:
        click.echo(click.style(f"✗ {e}", "red"))
        raise click.Abort() from e

    events = recent_audit_events(get_uow(ctx), member.id, limit=limit)
    if not events:
        click.echo("No audit events found.")
        return

    click.echo(f"Last {len(events)} event(s) for {member.email}:")
    for event in events:
        line = f"  {event.timestamp.isoformat()}  {event.action.value:<28} {event.ip_address or '-'}"
        if event.details:
            line = f"{line}  {event.details}"
        click.echo(line)
