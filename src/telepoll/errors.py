"""Exception types shared across telepoll."""

from __future__ import annotations


class TelepollError(Exception):
    """Base class for telepoll errors."""


class ConfigError(TelepollError):
    """Configuration error."""


class FatalError(TelepollError):
    """A condition the bot cannot recover from.

    Raised from inside a running stage and handed up to the supervisor,
    which is the only place that turns it into a process exit status.
    """

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class RequestBuildError(TelepollError):
    """An HTTP request could not be constructed (bad base URL, scheme, ...)."""


class TransportError(TelepollError):
    """The HTTP request failed on the network."""


class BodyReadError(TelepollError):
    """The response arrived but its body could not be read."""


class ResponderError(TelepollError):
    """Raised by a responder to signal it has no answer."""
