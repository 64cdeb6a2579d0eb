from __future__ import annotations

from pathlib import Path
from typing import Any

import anyio
import typer

from . import __version__
from .client import BotApiClient
from .errors import ConfigError, TransportError
from .logging import get_logger, setup_logging
from .responders import load_responder
from .settings import BotSettings, load_settings
from .supervisor import run_bot

logger = get_logger(__name__)

DEFAULT_CONFIG = Path("settings.json")
DEFAULT_RESPONDER = "telepoll.responders:echo"


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


def _load_or_exit(config: Path) -> BotSettings:
    try:
        return load_settings(config)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)


async def _fetch_bot_identity(settings: BotSettings) -> dict[str, Any] | None:
    """Validate the API key by calling getMe."""
    async with BotApiClient(settings) as client:
        return await client.get_me()


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Long-polling Telegram bot runner.",
)


@app.callback()
def app_main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """telepoll CLI."""


@app.command("run", help="Poll for messages and answer them until interrupted.")
def run_command(
    config: Path = typer.Option(
        DEFAULT_CONFIG,
        "--config",
        "-c",
        help="Settings file (JSON with BotName/ApiKey/Timeout, or TOML).",
    ),
    responder: str = typer.Option(
        DEFAULT_RESPONDER,
        "--responder",
        "-r",
        help="Responder to answer messages with, as module:function.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log every poll request and skipped update.",
    ),
) -> None:
    setup_logging(debug=debug)
    settings = _load_or_exit(config)

    try:
        answer = load_responder(responder)
    except ConfigError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)

    code = run_bot(settings, answer)
    if code != 0:
        raise typer.Exit(code=code)


@app.command("check", help="Verify the API key by asking Telegram who the bot is.")
def check_command(
    config: Path = typer.Option(
        DEFAULT_CONFIG,
        "--config",
        "-c",
        help="Settings file (JSON with BotName/ApiKey/Timeout, or TOML).",
    ),
) -> None:
    setup_logging()
    settings = _load_or_exit(config)
    if not settings.token:
        typer.echo("error: API Key not set. Please check your configuration", err=True)
        raise typer.Exit(code=1)

    try:
        me = anyio.run(_fetch_bot_identity, settings)
    except TransportError as e:
        typer.echo(f"error: could not reach Telegram: {e}", err=True)
        raise typer.Exit(code=1)

    if me is None:
        typer.echo("error: Telegram rejected the API key", err=True)
        raise typer.Exit(code=1)

    username = me.get("username", "")
    typer.echo(f"ok: @{username}")
    if settings.bot_name and settings.bot_name != username:
        typer.echo(
            f"warning: BotName is {settings.bot_name!r} but the bot is @{username}",
            err=True,
        )
