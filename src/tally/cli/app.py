"""Main CLI application.

Click commands for tally: serve, chat, history, tools, user-create.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import click

from tally import __version__
from tally.config.loader import load_config
from tally.core.errors import ConfigError, TallyError

if TYPE_CHECKING:
    from tally.config.schema import TallyConfig
    from tally.services import Services


# ── Helpers ──────────────────────────────────────────────────────


def _error(msg: str) -> None:
    """Print an error message to stderr and exit."""
    click.echo(f"Error: {msg}", err=True)
    sys.exit(1)


def _load_config(config_path: str | None) -> TallyConfig:
    try:
        return load_config(path=config_path)
    except ConfigError as e:
        _error(str(e))
        raise  # unreachable, keeps mypy happy


async def _user_id_for(services: Services, email: str) -> str:
    from tally.ledger.repository import LedgerRepository

    async with services.db_factory() as session:
        user = await LedgerRepository(session).get_user_by_email(email)
    if user is None:
        msg = f"No user with email {email}"
        raise ConfigError(msg)
    return user.id


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="tally")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """tally - conversational personal-finance assistant."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ── chat ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("message")
@click.option("--email", required=True, help="Account to chat as.")
@click.pass_context
def chat(ctx: click.Context, message: str, email: str) -> None:
    """Send MESSAGE to the assistant and stream the answer."""
    from tally.core.logging import configure_logging

    config = _load_config(ctx.obj["config_path"])
    configure_logging(config.logging)
    try:
        ok = asyncio.run(_chat_async(config, message, email))
    except TallyError as e:
        _error(e.public_message)
        return
    if not ok:
        sys.exit(1)


async def _chat_async(config: TallyConfig, message: str, email: str) -> bool:
    """Stream one turn to the terminal. Returns False if it ended in an error."""
    from tally.assistant.events import ChunkEvent, CompleteEvent, ErrorEvent
    from tally.cli.display import ChatDisplay
    from tally.services import build_services

    display = ChatDisplay()
    services = await build_services(config)
    try:
        user_id = await _user_id_for(services, email)
        async for event in services.orchestrator.stream(message, user_id):
            if isinstance(event, ChunkEvent):
                display.chunk(event.content)
            elif isinstance(event, CompleteEvent):
                display.complete()
            elif isinstance(event, ErrorEvent):
                display.error(event.message)
                return False
    finally:
        await services.close()
    return True


# ── history ──────────────────────────────────────────────────────


@cli.command()
@click.option("--email", required=True, help="Account whose history to show.")
@click.option("--page", type=int, default=1, help="Page number, newest first.")
@click.option("--limit", type=int, default=10, help="Turns per page.")
@click.pass_context
def history(ctx: click.Context, email: str, page: int, limit: int) -> None:
    """Show past conversation turns."""
    config = _load_config(ctx.obj["config_path"])
    try:
        asyncio.run(_history_async(config, email, page, limit))
    except TallyError as e:
        _error(e.public_message)


async def _history_async(
    config: TallyConfig, email: str, page: int, limit: int
) -> None:
    from tally.cli.display import ChatDisplay
    from tally.ledger.db import create_db
    from tally.ledger.history import ChatHistoryRepository
    from tally.ledger.repository import LedgerRepository

    factory, engine = await create_db(config.database)
    try:
        async with factory() as session:
            user = await LedgerRepository(session).get_user_by_email(email)
            if user is None:
                msg = f"No user with email {email}"
                raise ConfigError(msg)
            result = await ChatHistoryRepository(session).list(user.id, page, limit)
        ChatDisplay().history(result)
    finally:
        await engine.dispose()


# ── tools ────────────────────────────────────────────────────────


@cli.command()
def tools() -> None:
    """List the ledger tools the assistant can call."""
    from tally.cli.display import ChatDisplay
    from tally.tools.catalog import list_tools

    ChatDisplay().tools(list_tools())


# ── serve ────────────────────────────────────────────────────────


@cli.command()
@click.option("--host", default=None, help="Host to bind to (overrides config).")
@click.option(
    "--port", type=int, default=None, help="Port to bind to (overrides config)."
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the REST API server."""
    import uvicorn

    from tally.api.app import create_app

    config = _load_config(ctx.obj["config_path"])
    if not config.auth.jwt_secret:
        _error("auth.jwt_secret is not set (or export TALLY_JWT_SECRET)")

    app = create_app(config)
    uvicorn.run(app, host=host or config.api.host, port=port or config.api.port)


# ── user-create ─────────────────────────────────────────────


@cli.command("user-create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", "display_name", required=True)
@click.pass_context
def user_create(
    ctx: click.Context, email: str, password: str, display_name: str
) -> None:
    """Create a user with the default categories."""
    config = _load_config(ctx.obj["config_path"])
    try:
        user_id = asyncio.run(
            _user_create_async(config, email, password, display_name)
        )
    except TallyError as e:
        _error(e.public_message)
        return
    click.echo(f"User created: {user_id} ({email})")


async def _user_create_async(
    config: TallyConfig, email: str, password: str, display_name: str
) -> str:
    from tally.api.auth import hash_password
    from tally.ledger.db import create_db
    from tally.ledger.repository import LedgerRepository

    factory, engine = await create_db(config.database)
    try:
        async with factory() as session, session.begin():
            user = await LedgerRepository(session).create_user(
                email, hash_password(password), display_name
            )
            return user.id
    finally:
        await engine.dispose()
