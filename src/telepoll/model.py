"""Bot API wire types for getUpdates.

Only the fields the bot uses are declared; everything else in the payload
is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

HTML_DOCTYPE = b"<!DOCTYPE html>"


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class User(_WireModel):
    """Sender of a message."""

    id: int = 0
    first_name: str = ""
    last_name: str = ""
    username: str = ""


class Chat(_WireModel):
    """Chat a message was posted in."""

    id: int = 0
    first_name: str = ""
    last_name: str = ""
    username: str = ""


class Message(_WireModel):
    text: str = ""
    message_id: int = 0
    sender: User = Field(default_factory=User, alias="from")
    chat: Chat = Field(default_factory=Chat)
    date: int = 0


class Update(_WireModel):
    """One inbound update. ``message`` is None for non-message updates."""

    update_id: int
    message: Message | None = None


class ResponseParameters(_WireModel):
    retry_after: int | None = None


class PollResponse(_WireModel):
    ok: bool
    result: list[Update] = Field(default_factory=list)
    error_code: int = 0
    description: str = ""
    parameters: ResponseParameters | None = None


def decode_poll_response(body: bytes) -> PollResponse:
    """Decode a getUpdates body.

    Raises:
        pydantic.ValidationError: On malformed JSON or an unexpected shape.
    """
    return PollResponse.model_validate_json(body)


def looks_like_html(body: bytes) -> bool:
    """The API answers some bad tokens with an HTML page instead of JSON."""
    return body.startswith(HTML_DOCTYPE)
