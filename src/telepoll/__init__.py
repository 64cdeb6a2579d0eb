"""Long-polling Telegram bot runner.

Load settings, hand over a responder, start:

    from telepoll import load_settings, start

    def responder(text: str) -> str:
        if text == "/ping":
            return "pong"
        raise ValueError("unknown command")

    start(load_settings("settings.json"), responder)
"""

from __future__ import annotations

__version__ = "0.1.0"

from .dispatcher import FALLBACK_REPLY, Responder
from .errors import ConfigError, FatalError, ResponderError
from .settings import BotSettings, load_settings
from .supervisor import run_bot, start

__all__ = [
    "BotSettings",
    "ConfigError",
    "FALLBACK_REPLY",
    "FatalError",
    "Responder",
    "ResponderError",
    "__version__",
    "load_settings",
    "run_bot",
    "start",
]
