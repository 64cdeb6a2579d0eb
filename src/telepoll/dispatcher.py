"""Dispatch stage: answer each queued update and post the reply."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TypeAlias

import anyio
import anyio.to_thread
from anyio.abc import ObjectReceiveStream

from .client import BotApiClient
from .errors import TransportError
from .logging import bind_context, clear_context, get_logger
from .model import Message, Update
from .settings import BotSettings

logger = get_logger(__name__)

FALLBACK_REPLY = "I'm not able to answer :("

# Raising (ResponderError or anything else) means "no answer"
Responder: TypeAlias = Callable[[str], str | Awaitable[str]]


def strip_mention(text: str, bot_name: str) -> str:
    """Remove the first ``@bot_name`` so /start@Bot and /start read the same."""
    if not bot_name:
        return text
    return text.replace(f"@{bot_name}", "", 1)


class Dispatcher:
    """Consumes updates from ``inbox`` one at a time, in order."""

    def __init__(
        self,
        settings: BotSettings,
        client: BotApiClient,
        inbox: ObjectReceiveStream[Update],
        responder: Responder,
    ) -> None:
        self._settings = settings
        self._client = client
        self._inbox = inbox
        self._responder = responder

    async def run(self) -> None:
        logger.info("dispatch.ready")
        async with self._inbox:
            async for update in self._inbox:
                await self.dispatch(update)

    async def respond(self, text: str) -> str:
        """Ask the responder for a reply; failures become FALLBACK_REPLY."""
        cleaned = strip_mention(text, self._settings.bot_name)
        try:
            if inspect.iscoroutinefunction(self._responder):
                answer = await self._responder(cleaned)
            else:
                # Abandoned on shutdown; process exit reclaims the thread
                answer = await anyio.to_thread.run_sync(
                    self._responder, cleaned, abandon_on_cancel=True
                )
                if inspect.isawaitable(answer):
                    answer = await answer
        except Exception as e:
            logger.warning("dispatch.responder_failed", text=cleaned, error=repr(e))
            return FALLBACK_REPLY
        if not isinstance(answer, str):
            logger.warning(
                "dispatch.responder_bad_type", type=type(answer).__name__
            )
            return FALLBACK_REPLY
        return answer

    async def dispatch(self, update: Update) -> bool:
        """Answer one update. Returns True if the reply was accepted."""
        message = update.message
        if message is None:
            logger.debug("dispatch.skipped", update_id=update.update_id)
            return False

        bind_context(update_id=update.update_id, chat_id=message.chat.id)
        try:
            return await self._answer(message)
        finally:
            clear_context()

    async def _answer(self, message: Message) -> bool:
        logger.info(
            "dispatch.received",
            text=message.text,
            sender=message.sender.username,
            chat=message.chat.username,
        )

        answer = await self.respond(message.text)

        try:
            response = await self._client.send_message(message.chat.id, answer)
        except TransportError as e:
            logger.warning("dispatch.send_failed", error=str(e))
            return False

        if response.is_error:
            logger.warning("dispatch.send_rejected", status=response.status_code)
            return False

        logger.info(
            "dispatch.replied",
            text=answer,
            recipient=message.sender.username,
        )
        return True
