"""ABOUTME: Main CLI entry point using Click for StoreGuard administration
ABOUTME: Provides subcommands for database setup, users and IP, rate limit and audit operations"""

import click

from storeguard import __version__
from storeguard.adapters.database import start_mappers
from storeguard.config import get_config


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """StoreGuard security administration CLI."""
    # Ensure context object exists
    ctx.ensure_object(dict)

    # Initialize configuration and database mappers
    config = get_config()
    ctx.obj["config"] = config
    start_mappers()


@cli.command()
def version() -> None:
    """Show StoreGuard version."""
    click.echo(f"StoreGuard {__version__}")


# Import subcommands to register them
from .database import init_db  # noqa: E402
from .security import security  # noqa: E402
from .users import users  # noqa: E402

cli.add_command(init_db)
cli.add_command(security)
cli.add_command(users)


if __name__ == "__main__":
    cli()
