"""Long-poll stage: fetch updates, classify failures, feed the dispatcher.

The poller owns the cursor, the highest update_id already handed to the
channel. Every request asks for ``cursor + 1`` onwards, so a failed
attempt can be repeated without enqueuing anything twice.
"""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from typing import NoReturn

import anyio
from anyio.abc import ObjectSendStream
from pydantic import ValidationError

from .client import BotApiClient
from .errors import BodyReadError, FatalError, RequestBuildError, TransportError
from .logging import get_logger
from .model import PollResponse, Update, decode_poll_response, looks_like_html
from .settings import BotSettings
from .urls import build_poll_request

logger = get_logger(__name__)

WRONG_KEY_MESSAGE = "Wrong API Key, Ask @BotFather! Exiting..."
STALE_CLIENT_MESSAGE = (
    "Wrong interaction with Telegram. Please update the telepoll library"
)


class PollStatus(enum.Enum):
    """Outcome of a single poll iteration."""

    DELIVERED = "delivered"
    TRANSPORT_ERROR = "transport_error"
    BODY_ERROR = "body_error"
    DECODE_ERROR = "decode_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNHANDLED_ERROR = "unhandled_error"


class RetryBackoff:
    """Exponential delay for consecutive network failures.

    initial, 2*initial, 4*initial... capped at ``maximum``. A maximum of 0
    disables the delay entirely (immediate retry).
    """

    def __init__(self, initial: float = 0.5, maximum: float = 30.0) -> None:
        self.initial = max(0.0, initial)
        self.maximum = max(0.0, maximum)
        self.failures = 0

    def next_delay(self) -> float:
        self.failures += 1
        if self.maximum <= 0:
            return 0.0
        return min(self.maximum, self.initial * (2.0 ** (self.failures - 1)))

    def reset(self) -> None:
        self.failures = 0


class Poller:
    """Runs getUpdates forever and pushes new updates onto ``outbox``."""

    def __init__(
        self,
        settings: BotSettings,
        client: BotApiClient,
        outbox: ObjectSendStream[Update],
        *,
        cursor: int = 0,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        backoff: RetryBackoff | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._outbox = outbox
        self._cursor = cursor
        self._sleep = sleep
        self._backoff = backoff or RetryBackoff(
            settings.retry_backoff_initial, settings.retry_backoff_max
        )

    @property
    def cursor(self) -> int:
        return self._cursor

    async def run(self) -> NoReturn:
        logger.info("poll.started", timeout=self._settings.poll_timeout)
        async with self._outbox:
            while True:
                await self.poll_once()

    async def poll_once(self) -> PollStatus:
        """Perform one poll iteration.

        Raises:
            FatalError: On conditions that must stop the bot.
        """
        request = build_poll_request(self._settings, self._cursor)
        logger.debug("poll.request", offset=request.offset, timeout=request.timeout)

        try:
            body = await self._client.fetch(request)
        except RequestBuildError as e:
            logger.error("poll.request_invalid", error=str(e))
            raise FatalError(f"Could not create request: {e}") from e
        except TransportError as e:
            logger.error("poll.transport_failed", error=str(e), offset=request.offset)
            await self._retry_delay()
            return PollStatus.TRANSPORT_ERROR
        except BodyReadError as e:
            logger.warning("poll.malformed_body", error=str(e))
            await self._retry_delay()
            return PollStatus.BODY_ERROR

        try:
            response = decode_poll_response(body)
        except ValidationError as e:
            if looks_like_html(body):
                logger.error("poll.html_body")
                raise FatalError(WRONG_KEY_MESSAGE) from e
            logger.warning("poll.json_error", error=str(e))
            return PollStatus.DECODE_ERROR

        self._backoff.reset()
        logger.info("poll.received", count=len(response.result))

        if not response.ok:
            return await self._handle_remote_error(response)

        await self._deliver(response.result)
        return PollStatus.DELIVERED

    async def _deliver(self, updates: list[Update]) -> None:
        for update in updates:
            if update.update_id <= self._cursor:
                logger.debug(
                    "poll.duplicate", update_id=update.update_id, cursor=self._cursor
                )
                continue
            # Blocks while the dispatcher is busy
            await self._outbox.send(update)
            self._cursor = update.update_id

    async def _handle_remote_error(self, response: PollResponse) -> PollStatus:
        code = response.error_code
        if code in (401, 403):
            logger.error("poll.unauthorized", error_code=code)
            raise FatalError(WRONG_KEY_MESSAGE)
        if code in (400, 404):
            logger.error(
                "poll.bad_request", error_code=code, description=response.description
            )
            raise FatalError(STALE_CLIENT_MESSAGE)
        if code == 429 and response.parameters and response.parameters.retry_after:
            retry_after = response.parameters.retry_after
            logger.warning("poll.rate_limited", retry_after=retry_after)
            await self._sleep(retry_after)
            return PollStatus.RATE_LIMITED
        if code >= 500:
            logger.warning(
                "poll.server_error",
                error_code=code,
                delay=self._settings.server_error_delay,
            )
            await self._sleep(self._settings.server_error_delay)
            return PollStatus.SERVER_ERROR

        logger.warning(
            "poll.unhandled_error", error_code=code, description=response.description
        )
        return PollStatus.UNHANDLED_ERROR

    async def _retry_delay(self) -> None:
        delay = self._backoff.next_delay()
        if delay > 0:
            logger.debug("poll.retry_delay", delay=delay, failures=self._backoff.failures)
            await self._sleep(delay)
