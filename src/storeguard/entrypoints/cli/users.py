"""ABOUTME: CLI commands for user management operations
ABOUTME: Provides a command to add users, which is how the first admin gets created"""

import click

from storeguard.domain.value_objects import GlobalRole
from storeguard.service_layer.exceptions import UserAlreadyExists
from storeguard.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from storeguard.service_layer.user_service import create_user

from .database import get_session_factory


@click.group()
def users() -> None:
    """User management commands."""
    pass


@users.command("add")
@click.option("--email", required=True, help="User email address")
@click.option("--first-name", help="User first name")
@click.option("--last-name", help="User last name")
@click.option(
    "--role",
    type=click.Choice([r.value for r in GlobalRole], case_sensitive=False),
    default=GlobalRole.CUSTOMER.value,
    help="Global role for the user",
)
@click.option("--password", help="Password (will prompt if not provided)")
@click.pass_context
def add_user(
    ctx: click.Context, email: str, first_name: str | None, last_name: str | None, role: str, password: str | None
) -> None:
    """Add a new user to the system."""
    try:
        if not password:
            password = click.prompt("Password", hide_input=True, confirmation_prompt=True)
        assert isinstance(password, str)

        user = create_user(
            SqlAlchemyUnitOfWork(get_session_factory(ctx)),
            email=email,
            password=password,
            global_role=GlobalRole(role.lower()),
            first_name=first_name or "",
            last_name=last_name or "",
        )

        click.echo(click.style("✓ User created successfully:", "green"))
        click.echo(f"  ID: {user.id}")
        click.echo(f"  Email: {user.email}")
        click.echo(f"  Name: {user.display_name}")
        click.echo(f"  Role: {user.global_role.value}")

    except (UserAlreadyExists, ValueError) as e:
        click.echo(click.style(f"✗ Error: {e}", "red"))
        raise click.Abort() from e
