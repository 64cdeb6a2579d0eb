"""Pydantic settings for the bot.

This module provides:
- Loading from a JSON settings file (BotName / ApiKey / Timeout) or TOML
- Environment variable fallback (TELEPOLL__BOT_NAME, TELEPOLL__API_KEY, ...)
- SecretStr for the API key to prevent accidental logging
- The effective long-poll timeout with the 60 second default
"""

from __future__ import annotations

import json
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .logging import get_logger

logger = get_logger(__name__)

_INTEGER_RE = re.compile(r"[+-]?\d+")

DEFAULT_API_BASE_URL = "https://api.telegram.org"
DEFAULT_POLL_TIMEOUT = 60

# Keys used by settings.json files, mapped to field names
_FILE_KEYS = {
    "BotName": "bot_name",
    "ApiKey": "api_key",
    "Timeout": "timeout",
}


class BotSettings(BaseSettings):
    """Bot configuration, immutable once loaded.

    Environment variables use the TELEPOLL__ prefix:
    - TELEPOLL__BOT_NAME -> bot_name
    - TELEPOLL__API_KEY -> api_key
    - TELEPOLL__TIMEOUT -> timeout
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEPOLL__",
        frozen=True,
        extra="ignore",
    )

    bot_name: str = ""
    api_key: SecretStr = SecretStr("")
    # Kept raw; poll_timeout applies the default
    timeout: str | int = ""

    api_base_url: str = DEFAULT_API_BASE_URL
    queue_size: int = 1
    server_error_delay: float = 30.0
    retry_backoff_initial: float = 0.5
    retry_backoff_max: float = 30.0

    @property
    def poll_timeout(self) -> int:
        """Long-poll timeout in seconds.

        Empty, zero, negative or non-numeric values fall back to 60.
        """
        raw = str(self.timeout)
        if not _INTEGER_RE.fullmatch(raw):
            return DEFAULT_POLL_TIMEOUT
        value = int(raw)
        if value <= 0:
            return DEFAULT_POLL_TIMEOUT
        return value

    @property
    def token(self) -> str:
        return self.api_key.get_secret_value()


def _read_file(path: Path) -> dict[str, Any]:
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("settings file must contain a JSON object")
    return data


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in data.items():
        normalized[_FILE_KEYS.get(key, key)] = value
    return normalized


def load_settings(path: Path | str) -> BotSettings:
    """Load bot settings from a JSON or TOML file.

    Values missing from the file are taken from the environment.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    path = Path(path)
    try:
        data = _read_file(path)
    except FileNotFoundError as e:
        logger.error("settings.not_found", path=str(path))
        raise ConfigError(f"Unable to find file {path}") from e
    except (OSError, ValueError, tomllib.TOMLDecodeError) as e:
        logger.error("settings.load_failed", path=str(path), error=str(e))
        raise ConfigError(
            f"Unable to read file {path}! Please copy from settings.json.sample"
        ) from e

    try:
        return BotSettings(**_normalize_keys(data))
    except ValidationError as e:
        logger.error("settings.validation_failed", path=str(path), error=str(e))
        raise ConfigError(f"Invalid settings in {path}: {e}") from e
