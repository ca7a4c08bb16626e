"""CLI entry point for Steeple."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from steeple import __version__
from steeple.auth.identity import ADMIN, CONTRIBUTOR
from steeple.config import Config, ConfigError, load_config
from steeple.state.database import Database

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_config_path(config_path: Path | None) -> Path | None:
    """Resolve the effective steeple.toml path used for config loading."""
    if config_path is not None:
        return config_path
    candidates = [
        Path.cwd() / "steeple.toml",
        Path.home() / ".steeple" / "steeple.toml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _config(ctx: click.Context) -> Config:
    return ctx.obj["config"]


def _database(config: Config) -> Database:
    return Database(str(config.database_path))


def _configure_logging(config: Config) -> None:
    level = getattr(logging, config.logging.level, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)


@click.group()
@click.version_option(version=__version__, prog_name="steeple")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to steeple.toml configuration file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Steeple: MCP directory interface and OAuth 2.1 authorization server."""
    ctx.ensure_object(dict)
    resolved_config_path = _resolve_config_path(config_path)
    try:
        ctx.obj["config"] = load_config(resolved_config_path)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    ctx.obj["config_path"] = resolved_config_path


@cli.command()
@click.option("--host", default=None, help="Override server host.")
@click.option("--port", default=None, type=int, help="Override server port.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the Steeple API server."""
    config = _config(ctx)
    actual_host = host if host is not None else config.server.host
    actual_port = port if port is not None else config.server.port
    _configure_logging(config)

    click.echo(f"Starting Steeple server on {actual_host}:{actual_port}")

    import uvicorn

    from steeple.api.server import create_app

    try:
        app = create_app(config)
        uvicorn.run(
            app, host=actual_host, port=actual_port, log_level=config.logging.level.lower(),
        )
    except Exception as e:
        click.echo(f"Server failed to start: {e}", err=True)
        sys.exit(1)


@cli.command(name="init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database and apply the schema."""
    database = _database(_config(ctx))
    asyncio.run(database.initialize())
    click.echo(f"Database ready at {database.path}")


@cli.command()
@click.option("--limit", default=20, type=click.IntRange(min=1), help="Number of events.")
@click.option("--type", "event_type", default=None, help="Only show this event type.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
@click.pass_context
def events(ctx: click.Context, limit: int, event_type: str | None, as_json: bool) -> None:
    """Show recent auth and write events, newest first."""
    database = _database(_config(ctx))

    async def _query() -> list[dict]:
        await database.initialize()
        return await database.query_events(event_type=event_type, limit=limit)

    rows = asyncio.run(_query())
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("No events recorded.")
        return
    for row in rows:
        subject = row.get("subject_id") or "-"
        click.echo(f"{row['timestamp']}  {row['event_type']:<24} {subject}  {row['data']}")


@cli.command(name="purge-expired")
@click.pass_context
def purge_expired(ctx: click.Context) -> None:
    """Delete expired authorization codes, tokens, and login states."""
    from steeple.auth.oauth import OAuthService

    config = _config(ctx)
    database = _database(config)

    async def _purge() -> dict[str, int]:
        await database.initialize()
        return await OAuthService(database, config.oauth).purge_expired()

    counts = asyncio.run(_purge())
    for table, count in counts.items():
        click.echo(f"  {table}: {count} removed")


@cli.command(name="revoke-token")
@click.argument("token")
@click.pass_context
def revoke_token(ctx: click.Context, token: str) -> None:
    """Revoke a bearer token so it no longer resolves."""
    from steeple.auth.oauth import OAuthService

    config = _config(ctx)
    database = _database(config)

    async def _revoke() -> bool:
        await database.initialize()
        return await OAuthService(database, config.oauth).revoke_access_token(token)

    if not asyncio.run(_revoke()):
        click.echo("Token not found or already revoked.", err=True)
        sys.exit(1)
    click.echo("Token revoked.")


@cli.command(name="add-user")
@click.argument("subject")
@click.option(
    "--role",
    type=click.Choice([ADMIN, CONTRIBUTOR, "user"]),
    default="user",
    show_default=True,
)
@click.option("--email", default=None)
@click.pass_context
def add_user(ctx: click.Context, subject: str, role: str, email: str | None) -> None:
    """Create or update a login identity (local development)."""
    database = _database(_config(ctx))

    async def _upsert() -> None:
        await database.initialize()
        await database.upsert_user(subject, role, email)

    asyncio.run(_upsert())
    click.echo(f"User {subject} saved with role {role}.")


if __name__ == "__main__":
    cli()
