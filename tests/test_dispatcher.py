"""Tests for the dispatch stage."""

from __future__ import annotations

from urllib.parse import parse_qs

import anyio
import httpx
import pytest
import structlog
from structlog.testing import LogCapture, capture_logs

from factories import make_settings, update_payload

from telepoll.client import BotApiClient
from telepoll.dispatcher import FALLBACK_REPLY, Dispatcher, Responder, strip_mention
from telepoll.errors import ResponderError
from telepoll.model import Update


class _SendLog:
    """Fake sendMessage endpoint that records the posted form fields."""

    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.sent: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        self.sent.append({key: values[0] for key, values in form.items()})
        return httpx.Response(
            self.status, json={"ok": self.status == 200, "result": {}}, request=request
        )


def _update(update_id: int = 1, text: str = "/ping", **kwargs) -> Update:
    return Update.model_validate(update_payload(update_id, text, **kwargs))


class _Harness:
    def __init__(self, responder: Responder, api=None) -> None:
        self.api = api or _SendLog()
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.api))
        settings = make_settings()
        self.outbox, self.inbox = anyio.create_memory_object_stream[Update](8)
        self.dispatcher = Dispatcher(
            settings,
            BotApiClient(settings, client=self.http_client),
            self.inbox,
            responder,
        )

    async def close(self) -> None:
        self.outbox.close()
        self.inbox.close()
        await self.http_client.aclose()


class TestStripMention:
    """Tests for strip_mention function."""

    def test_command_with_mention(self) -> None:
        assert strip_mention("/start@TestBot", "TestBot") == "/start"

    def test_only_first_occurrence(self) -> None:
        assert (
            strip_mention("@TestBot hi @TestBot", "TestBot") == " hi @TestBot"
        )

    def test_infix(self) -> None:
        assert strip_mention("/roll@TestBot 2d6", "TestBot") == "/roll 2d6"

    def test_no_mention(self) -> None:
        assert strip_mention("/start", "TestBot") == "/start"

    def test_other_bot_untouched(self) -> None:
        assert strip_mention("/start@OtherBot", "TestBot") == "/start@OtherBot"

    def test_empty_name(self) -> None:
        assert strip_mention("mail me @ home", "") == "mail me @ home"


@pytest.mark.anyio
async def test_sync_responder_gets_cleaned_text() -> None:
    received: list[str] = []

    def responder(text: str) -> str:
        received.append(text)
        return "pong"

    harness = _Harness(responder)
    try:
        assert await harness.dispatcher.respond("/ping@TestBot") == "pong"
        assert received == ["/ping"]
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_async_responder() -> None:
    async def responder(text: str) -> str:
        await anyio.sleep(0)
        return text.upper()

    harness = _Harness(responder)
    try:
        assert await harness.dispatcher.respond("hello") == "HELLO"
    finally:
        await harness.close()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error", [ResponderError("no idea"), ValueError("boom"), KeyError("x")]
)
async def test_responder_failure_becomes_fallback(error: Exception) -> None:
    def responder(text: str) -> str:
        raise error

    harness = _Harness(responder)
    try:
        with capture_logs() as logs:
            assert await harness.dispatcher.respond("/ping") == FALLBACK_REPLY
        assert any(log["event"] == "dispatch.responder_failed" for log in logs)
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_responder_non_string_becomes_fallback() -> None:
    harness = _Harness(lambda text: None)  # type: ignore[arg-type, return-value]
    try:
        assert await harness.dispatcher.respond("/ping") == FALLBACK_REPLY
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_responder_called_once_per_update() -> None:
    calls: list[str] = []

    def responder(text: str) -> str:
        calls.append(text)
        raise ResponderError("nope")

    harness = _Harness(responder)
    try:
        await harness.dispatcher.dispatch(_update())
        assert calls == ["/ping"]
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_dispatch_posts_reply_to_chat() -> None:
    harness = _Harness(lambda text: "pong")
    try:
        delivered = await harness.dispatcher.dispatch(_update(chat_id=-1001))
        assert delivered is True
        assert harness.api.sent == [{"chat_id": "-1001", "text": "pong"}]
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_failing_responder_posts_fallback_and_logs_exchange() -> None:
    def responder(text: str) -> str:
        raise ResponderError("")

    harness = _Harness(responder)
    try:
        with capture_logs() as logs:
            await harness.dispatcher.dispatch(_update(text="/ping", chat_id=5))
        assert harness.api.sent == [{"chat_id": "5", "text": FALLBACK_REPLY}]

        received = [log for log in logs if log["event"] == "dispatch.received"]
        replied = [log for log in logs if log["event"] == "dispatch.replied"]
        assert received[0]["text"] == "/ping"
        assert received[0]["sender"] == "alice"
        assert replied[0]["text"] == FALLBACK_REPLY
        assert replied[0]["recipient"] == "alice"
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_send_failure_is_dropped() -> None:
    def api(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    harness = _Harness(lambda text: "pong", api=api)
    try:
        with capture_logs() as logs:
            assert await harness.dispatcher.dispatch(_update()) is False
        assert [log["event"] for log in logs if log["log_level"] == "warning"] == [
            "dispatch.send_failed"
        ]
        assert not any(log["event"] == "dispatch.replied" for log in logs)
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_rejected_reply_is_reported() -> None:
    harness = _Harness(lambda text: "pong", api=_SendLog(status=400))
    try:
        with capture_logs() as logs:
            assert await harness.dispatcher.dispatch(_update()) is False
        assert any(log["event"] == "dispatch.send_rejected" for log in logs)
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_update_without_message_is_skipped() -> None:
    calls: list[str] = []

    def responder(text: str) -> str:
        calls.append(text)
        return "pong"

    harness = _Harness(responder)
    try:
        assert await harness.dispatcher.dispatch(Update(update_id=3)) is False
        assert calls == []
        assert harness.api.sent == []
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_run_answers_in_queue_order_and_survives_failures() -> None:
    def responder(text: str) -> str:
        if text == "/bad":
            raise ResponderError("bad")
        return f"re: {text}"

    harness = _Harness(responder)
    try:
        await harness.outbox.send(_update(1, "/one"))
        await harness.outbox.send(_update(2, "/bad"))
        await harness.outbox.send(_update(3, "/three@TestBot"))
        harness.outbox.close()

        with anyio.fail_after(5):
            await harness.dispatcher.run()

        assert [m["text"] for m in harness.api.sent] == [
            "re: /one",
            FALLBACK_REPLY,
            "re: /three",
        ]
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_unencodable_reply_is_dropped_and_loop_continues() -> None:
    def responder(text: str) -> str:
        if text == "/broken":
            return "hi \ud83d"
        return "pong"

    harness = _Harness(responder)
    try:
        await harness.outbox.send(_update(1, "/broken"))
        await harness.outbox.send(_update(2, "/ping"))
        harness.outbox.close()

        with capture_logs() as logs:
            with anyio.fail_after(5):
                await harness.dispatcher.run()

        assert harness.api.sent == [{"chat_id": "42", "text": "pong"}]
        assert [log["event"] for log in logs if log["log_level"] == "warning"] == [
            "dispatch.send_failed"
        ]
    finally:
        await harness.close()


@pytest.mark.anyio
async def test_update_context_is_bound_while_dispatching() -> None:
    capture = LogCapture()
    structlog.configure(processors=[structlog.contextvars.merge_contextvars, capture])

    harness = _Harness(lambda text: "pong")
    try:
        await harness.dispatcher.dispatch(_update(9, chat_id=-55))
    finally:
        await harness.close()

    replied = [e for e in capture.entries if e["event"] == "dispatch.replied"]
    assert replied[0]["update_id"] == 9
    assert replied[0]["chat_id"] == -55
    assert structlog.contextvars.get_contextvars() == {}
