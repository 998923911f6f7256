"""ABOUTME: CLI command for database setup
ABOUTME: Creates the StoreGuard tables and indexes that do not exist yet"""

import click
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from storeguard.adapters.database import create_session_factory, create_tables


def get_session_factory(ctx: click.Context) -> sessionmaker:
    """The session factory put in the context by the caller, or one for the configured database."""
    if ctx.obj.get("session_factory") is None:
        ctx.obj["session_factory"] = create_session_factory(ctx.obj["config"].SQLALCHEMY_DATABASE_URI)
    session_factory = ctx.obj["session_factory"]
    return session_factory  # type: ignore[no-any-return]


@click.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create any missing tables."""
    try:
        create_tables(get_session_factory(ctx).kw["bind"])
        click.echo(click.style("✓ Database tables created.", "green"))
    except SQLAlchemyError as e:
        click.echo(click.style(f"✗ Error creating tables: {e}", "red"))
        raise click.Abort() from e
