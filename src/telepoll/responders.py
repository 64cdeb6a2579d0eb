"""Built-in responders and loading responders by import path."""

from __future__ import annotations

import importlib

from .dispatcher import Responder
from .errors import ConfigError, ResponderError


def echo(text: str) -> str:
    """Reply with the received text."""
    if not text.strip():
        raise ResponderError("nothing to echo")
    return text


def load_responder(path: str) -> Responder:
    """Import a responder given as ``package.module:function``.

    Raises:
        ConfigError: If the path is malformed or does not resolve to a callable.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Responder must look like 'module:function', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import responder module {module_name!r}: {e}") from e

    target: object = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ConfigError(f"{module_name!r} has no attribute {attr!r}") from e
    if not callable(target):
        raise ConfigError(f"Responder {path!r} is not callable")
    return target
