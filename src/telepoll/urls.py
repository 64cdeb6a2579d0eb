"""Bot API endpoints and the long-poll request descriptor."""

from __future__ import annotations

from dataclasses import dataclass

from .settings import BotSettings


@dataclass(frozen=True, slots=True)
class PollRequest:
    """One getUpdates call."""

    url: str
    offset: int
    timeout: int

    @property
    def params(self) -> dict[str, int]:
        return {"offset": self.offset, "timeout": self.timeout}


def method_url(settings: BotSettings, method: str) -> str:
    base = settings.api_base_url.rstrip("/")
    return f"{base}/bot{settings.token}/{method}"


def send_url(settings: BotSettings) -> str:
    return method_url(settings, "sendMessage")


def build_poll_request(settings: BotSettings, cursor: int) -> PollRequest:
    """Request for everything after ``cursor``."""
    return PollRequest(
        url=method_url(settings, "getUpdates"),
        offset=cursor + 1,
        timeout=settings.poll_timeout,
    )
