"""HTTP client for the Telegram Bot API.

Each stage owns its own BotApiClient; nothing here is shared between the
poller and the dispatcher.
"""

from __future__ import annotations

from types import TracebackType
from typing import Any

import httpx

from .errors import BodyReadError, RequestBuildError, TransportError
from .logging import _redact_text, get_logger
from .settings import BotSettings
from .urls import PollRequest, method_url, send_url

logger = get_logger(__name__)

# Extra time on top of the long-poll timeout before the client gives up
DEADLINE_MARGIN_S = 10.0
CONNECT_TIMEOUT_S = 10.0
SEND_TIMEOUT_S = 30.0


def _error_text(exc: BaseException) -> str:
    return _redact_text(str(exc) or exc.__class__.__name__)


class BotApiClient:
    """Thin async wrapper around httpx for getUpdates/sendMessage."""

    def __init__(
        self,
        settings: BotSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    async def __aenter__(self) -> "BotApiClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def poll_deadline(timeout_s: int) -> httpx.Timeout:
        """Hard client-side deadline slightly above the server-side timeout."""
        return httpx.Timeout(timeout_s + DEADLINE_MARGIN_S, connect=CONNECT_TIMEOUT_S)

    async def fetch(self, request: PollRequest) -> bytes:
        """Issue a long-poll GET and return the raw body.

        Raises:
            RequestBuildError: The request could not be built.
            TransportError: The request failed on the network.
            BodyReadError: The body could not be read.
        """
        try:
            http_request = self._client.build_request(
                "GET",
                request.url,
                params=request.params,
                timeout=self.poll_deadline(request.timeout),
            )
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise RequestBuildError(_error_text(exc)) from exc

        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.UnsupportedProtocol as exc:
            raise RequestBuildError(_error_text(exc)) from exc
        except httpx.HTTPError as exc:
            raise TransportError(_error_text(exc)) from exc

        try:
            return await response.aread()
        except httpx.HTTPError as exc:
            raise BodyReadError(_error_text(exc)) from exc
        finally:
            await response.aclose()

    async def send_message(self, chat_id: int, text: str) -> httpx.Response:
        """POST a reply as form fields ``chat_id`` and ``text``.

        Raises:
            TransportError: The request failed on the network
                or the reply could not be encoded.
        """
        try:
            return await self._client.post(
                send_url(self._settings),
                data={"chat_id": str(chat_id), "text": text},
                timeout=SEND_TIMEOUT_S,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as exc:
            raise TransportError(_error_text(exc)) from exc

    async def get_me(self) -> dict[str, Any] | None:
        """Return the bot's own user record, or None if the API refuses."""
        try:
            response = await self._client.get(
                method_url(self._settings, "getMe"), timeout=SEND_TIMEOUT_S
            )
        except httpx.HTTPError as exc:
            raise TransportError(_error_text(exc)) from exc
        try:
            payload = response.json()
        except ValueError:
            logger.warning("client.get_me.bad_body", status=response.status_code)
            return None
        if not isinstance(payload, dict) or not payload.get("ok"):
            logger.warning(
                "client.get_me.failed",
                status=response.status_code,
                description=payload.get("description") if isinstance(payload, dict) else None,
            )
            return None
        result = payload.get("result")
        return result if isinstance(result, dict) else None
