"""Lifecycle: wire the poller and dispatcher together and wait for a signal."""

from __future__ import annotations

import signal
from collections.abc import Awaitable, Callable
from functools import partial

import anyio
from anyio.abc import TaskGroup

from .client import BotApiClient
from .dispatcher import Dispatcher, Responder
from .errors import ConfigError, FatalError
from .logging import get_logger
from .model import Update
from .poller import Poller
from .settings import BotSettings

logger = get_logger(__name__)

ClientFactory = Callable[[BotSettings], BotApiClient]

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def validate_settings(settings: BotSettings) -> None:
    """Both the API key and bot name are needed before anything starts.

    Raises:
        ConfigError: If either is empty.
    """
    if not settings.token:
        raise ConfigError("API Key not set. Please check your configuration")
    if not settings.bot_name:
        raise ConfigError("Bot Name not set. Please check your configuration")


async def wait_for_signal(signals: tuple[signal.Signals, ...] = SHUTDOWN_SIGNALS) -> int:
    """Block until one of ``signals`` is delivered; return its number."""
    with anyio.open_signal_receiver(*signals) as received:
        async for signum in received:
            return signum
    raise RuntimeError("signal receiver closed")


class Supervisor:
    """Starts both stages on one bounded channel and waits for shutdown.

    A stage that hits a fatal condition raises FatalError; the supervisor
    cancels the other stage and re-raises it from ``run``. Any other
    exception escaping a stage is wrapped in a FatalError the same way.
    """

    def __init__(
        self,
        settings: BotSettings,
        responder: Responder,
        *,
        client_factory: ClientFactory = BotApiClient,
        shutdown_trigger: Callable[[], Awaitable[object]] = wait_for_signal,
    ) -> None:
        self._settings = settings
        self._responder = responder
        self._client_factory = client_factory
        self._shutdown_trigger = shutdown_trigger
        self._fatal: FatalError | None = None

    async def run(self) -> None:
        """Run until shutdown.

        Raises:
            ConfigError: If the settings are unusable.
            FatalError: If a stage hit a fatal condition.
        """
        logger.info("supervisor.welcome")
        validate_settings(self._settings)
        logger.info("supervisor.settings_loaded", bot_name=self._settings.bot_name)

        outbox, inbox = anyio.create_memory_object_stream[Update](
            max(1, self._settings.queue_size)
        )
        poll_client = self._client_factory(self._settings)
        send_client = self._client_factory(self._settings)
        poller = Poller(self._settings, poll_client, outbox)
        dispatcher = Dispatcher(self._settings, send_client, inbox, self._responder)

        async with poll_client, send_client:
            async with anyio.create_task_group() as tg:
                tg.start_soon(partial(self._guard, "poller", poller.run, tg))
                tg.start_soon(partial(self._guard, "dispatcher", dispatcher.run, tg))
                tg.start_soon(self._wait_for_shutdown, tg)

        if self._fatal is not None:
            raise self._fatal

    async def _guard(
        self, stage: str, target: Callable[[], Awaitable[object]], tg: TaskGroup
    ) -> None:
        try:
            await target()
        except FatalError as e:
            logger.debug("supervisor.stage_failed", stage=stage, error=e.message)
            if self._fatal is None:
                self._fatal = e
            tg.cancel_scope.cancel()
        except Exception as e:
            logger.exception("supervisor.stage_crashed", stage=stage)
            if self._fatal is None:
                self._fatal = FatalError(f"{stage} stopped unexpectedly: {e!r}")
            tg.cancel_scope.cancel()

    async def _wait_for_shutdown(self, tg: TaskGroup) -> None:
        received = await self._shutdown_trigger()
        logger.info("supervisor.exiting", signal=received)
        tg.cancel_scope.cancel()


def run_bot(
    settings: BotSettings,
    responder: Responder,
    *,
    client_factory: ClientFactory = BotApiClient,
    shutdown_trigger: Callable[[], Awaitable[object]] = wait_for_signal,
) -> int:
    """Run the bot to completion and return the process exit status."""
    supervisor = Supervisor(
        settings,
        responder,
        client_factory=client_factory,
        shutdown_trigger=shutdown_trigger,
    )
    try:
        anyio.run(supervisor.run)
    except ConfigError as e:
        logger.critical("supervisor.config_error", error=str(e))
        return 1
    except FatalError as e:
        logger.critical("supervisor.fatal", error=e.message, exit_code=e.exit_code)
        return e.exit_code
    return 0


def start(settings: BotSettings, responder: Responder) -> None:
    """Run the bot; exit the process with a non-zero status on fatal errors."""
    code = run_bot(settings, responder)
    if code != 0:
        raise SystemExit(code)
