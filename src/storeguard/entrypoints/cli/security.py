"""ABOUTME: CLI commands for IP reputation, rate limit and audit administration
ABOUTME: Block and whitelist addresses, reset rate limits, print the security summary and sweep expired state"""

from datetime import UTC, datetime, timedelta
from typing import NoReturn

import click
from sqlalchemy.exc import SQLAlchemyError

from storeguard.adapters.counter_store import create_counter_store
from storeguard.bootstrap import bootstrap_security_core
from storeguard.service_layer.exceptions import StoreGuardError
from storeguard.service_layer.security_core import SecurityCore

from .database import get_session_factory


def get_security_core(ctx: click.Context) -> SecurityCore:
    if "security_core" not in ctx.obj:
        config = ctx.obj["config"]
        ctx.obj["security_core"] = bootstrap_security_core(
            start_orm=False,
            session_factory=get_session_factory(ctx),
            store=create_counter_store(config.COUNTER_STORE),
            policy=config.SECURITY_POLICY,
        )
    core = ctx.obj["security_core"]
    return core  # type: ignore[no-any-return]


def _fail(message: str, error: Exception) -> NoReturn:
    click.echo(click.style(f"✗ {message}: {error}", "red"))
    raise click.Abort() from error


@click.group()
def security() -> None:
    """IP, rate limit and audit commands."""
    pass


@security.command("block-ip")
@click.argument("ip_address")
@click.option("--reason", required=True, help="Why the address is blocked")
@click.option("--hours", type=click.IntRange(min=1), help="Block duration in hours (permanent if omitted)")
@click.pass_context
def block_ip(ctx: click.Context, ip_address: str, reason: str, hours: int | None) -> None:
    """Block an IP address."""
    try:
        entry = get_security_core(ctx).block_ip(ip_address, reason, duration_hours=hours)
    except (StoreGuardError, SQLAlchemyError, ValueError) as e:
        _fail("Error blocking IP", e)

    expiry = entry.expires_at.strftime("%Y-%m-%d %H:%M UTC") if entry.expires_at else "never"
    click.echo(click.style(f"✓ Blocked {entry.ip_address} (expires: {expiry})", "green"))


@security.command("unblock-ip")
@click.argument("ip_address")
@click.pass_context
def unblock_ip(ctx: click.Context, ip_address: str) -> None:
    """Remove the block on an IP address."""
    try:
        unblocked = get_security_core(ctx).unblock_ip(ip_address)
    except (StoreGuardError, SQLAlchemyError) as e:
        _fail("Error unblocking IP", e)

    if unblocked:
        click.echo(click.style(f"✓ Unblocked {ip_address}", "green"))
    else:
        click.echo(click.style(f"{ip_address} is not blocked.", "yellow"))


@security.command("whitelist-ip")
@click.argument("ip_address")
@click.option("--description", help="Who or what the address belongs to")
@click.pass_context
def whitelist_ip(ctx: click.Context, ip_address: str, description: str | None) -> None:
    """Exempt an IP address from rate limiting."""
    try:
        entry = get_security_core(ctx).whitelist_ip(ip_address, description=description)
    except (StoreGuardError, SQLAlchemyError) as e:
        _fail("Error whitelisting IP", e)

    click.echo(click.style(f"✓ Whitelisted {entry.ip_address}", "green"))


@security.command("unwhitelist-ip")
@click.argument("ip_address")
@click.pass_context
def unwhitelist_ip(ctx: click.Context, ip_address: str) -> None:
    """Remove an IP address from the whitelist."""
    try:
        removed = get_security_core(ctx).remove_from_whitelist(ip_address)
    except (StoreGuardError, SQLAlchemyError) as e:
        _fail("Error removing IP from whitelist", e)

    if removed:
        click.echo(click.style(f"✓ Removed {ip_address} from the whitelist", "green"))
    else:
        click.echo(click.style(f"{ip_address} is not whitelisted.", "yellow"))


@security.command("list-blocked")
@click.pass_context
def list_blocked(ctx: click.Context) -> None:
    """List the IP addresses that are blocked right now."""
    try:
        entries = get_security_core(ctx).list_blocked_ips()
    except SQLAlchemyError as e:
        _fail("Error listing blocked IPs", e)

    if not entries:
        click.echo("No blocked IP addresses.")
        return

    click.echo(f"{'IP address':<40} {'Expires':<20} {'Auto':<5} {'Reason'}")
    click.echo("-" * 100)
    for entry in entries:
        expiry = entry.expires_at.strftime("%Y-%m-%d %H:%M") if entry.expires_at else "never"
        auto = "Yes" if entry.is_automatic else "No"
        click.echo(f"{entry.ip_address:<40} {expiry:<20} {auto:<5} {entry.reason}")


@security.command("list-whitelisted")
@click.pass_context
def list_whitelisted(ctx: click.Context) -> None:
    """List whitelisted IP addresses."""
    try:
        entries = get_security_core(ctx).list_whitelisted_ips()
    except SQLAlchemyError as e:
        _fail("Error listing whitelisted IPs", e)

    if not entries:
        click.echo("No whitelisted IP addresses.")
        return

    for entry in entries:
        click.echo(f"{entry.ip_address:<40} {entry.description or ''}")


@security.command("reset-rate-limit")
@click.argument("ip_address")
@click.option("--endpoint", help="Only reset this endpoint (all endpoints if omitted)")
@click.pass_context
def reset_rate_limit(ctx: click.Context, ip_address: str, endpoint: str | None) -> None:
    """Forget the rate limit windows of an IP address."""
    try:
        get_security_core(ctx).reset_rate_limit(ip_address, endpoint)
    except StoreGuardError as e:
        _fail("Error resetting rate limit", e)

    target = endpoint or "all endpoints"
    click.echo(click.style(f"✓ Rate limit reset for {ip_address} on {target}", "green"))


@security.command("summary")
@click.option("--days", type=click.IntRange(min=1), default=30, show_default=True, help="Length of the period")
@click.pass_context
def summary(ctx: click.Context, days: int) -> None:
    """Print the security summary for the last few days."""
    end_date = datetime.now(UTC)
    try:
        result = get_security_core(ctx).security_summary(end_date - timedelta(days=days), end_date)
    except SQLAlchemyError as e:
        _fail("Error building security summary", e)

    click.echo(f"Security summary for the last {days} days:")
    click.echo(f"  Login attempts:          {result.total_login_attempts}")
    click.echo(f"  Failed logins:           {result.failed_login_attempts}")
    click.echo(f"  Blocked IPs (now):       {result.active_blocked_ips}")
    click.echo(f"  Rate limit rejections:   {result.rate_limit_exceeded_count}")
    click.echo(f"  High risk events:        {result.high_risk_event_count}")
    click.echo(f"  Users with 2FA (now):    {result.users_with_two_factor_enabled}")


@security.command("sweep")
@click.pass_context
def sweep(ctx: click.Context) -> None:
    """Deactivate expired blocks and evict expired counter store keys."""
    try:
        result = get_security_core(ctx).sweep_expired()
    except (StoreGuardError, SQLAlchemyError) as e:
        _fail("Error sweeping expired state", e)

    click.echo(click.style(f"✓ Deactivated {result['blocks']} expired blocks, evicted {result['keys']} keys", "green"))
