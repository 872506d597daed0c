"""Gateway transport built on python-telegram-bot.

The dispatch core only needs a handful of operations from the gateway
client; they are described by :class:`Transport`.  :class:`TelegramTransport`
implements them on top of :class:`telegram.ext.Application`, feeding every
update through a single ``TypeHandler`` so that routing decisions stay in
:class:`bot_dispatch.router.Router`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, ContextTypes, TypeHandler

from bot_dispatch.config import BotConfig, ReceiverOptions

LOGGER = logging.getLogger(__name__)

UpdateCallback = Callable[[Update], Awaitable[Any]]
TransportErrorCallback = Callable[[BaseException], Awaitable[None]]


class Transport(Protocol):
    client: Any

    async def start_receiving(
        self,
        on_update: UpdateCallback,
        on_error: TransportErrorCallback,
        options: ReceiverOptions,
        stopping: asyncio.Event,
    ) -> None: ...

    async def drop_pending_updates(self) -> None: ...

    async def stop_receiving(self) -> None: ...


class TelegramTransport:
    def __init__(self, config: BotConfig, application: Optional[Application] = None) -> None:
        self.config = config
        self.application = application or self._build_application(config)
        self._on_update: Optional[UpdateCallback] = None
        self._on_error: Optional[TransportErrorCallback] = None
        self._stopping: Optional[asyncio.Event] = None
        self._handlers_installed = False

    @staticmethod
    def _build_application(config: BotConfig) -> Application:
        return (
            ApplicationBuilder()
            .token(config.token)
            .concurrent_updates(config.receiver.concurrent_updates)
            .build()
        )

    @property
    def client(self) -> Any:
        return self.application.bot

    async def start_receiving(
        self,
        on_update: UpdateCallback,
        on_error: TransportErrorCallback,
        options: ReceiverOptions,
        stopping: asyncio.Event,
    ) -> None:
        self._on_update = on_update
        self._on_error = on_error
        self._stopping = stopping
        if not self._handlers_installed:
            self.application.add_handler(TypeHandler(Update, self._handle_update))
            self.application.add_error_handler(self._handle_error)
            self._handlers_installed = True

        await self.application.initialize()
        await self.application.start()
        if self.application.updater is None:
            LOGGER.info("Application has no updater, expecting updates to be fed by a webhook")
            return
        await self.application.updater.start_polling(
            poll_interval=options.poll_interval,
            timeout=options.timeout,
            allowed_updates=options.allowed_updates,
            drop_pending_updates=options.drop_pending_updates,
        )
        LOGGER.info("Polling for updates")

    async def drop_pending_updates(self) -> None:
        await self.application.bot.delete_webhook(drop_pending_updates=True)

    async def stop_receiving(self) -> None:
        updater = self.application.updater
        if updater is not None and updater.running:
            await updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()
        LOGGER.info("Stopped receiving updates")

    async def _handle_update(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        if self._on_update is None or not isinstance(update, Update):
            return
        if self._stopping is not None and self._stopping.is_set():
            return
        await self._on_update(update)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        if self._on_error is not None and context.error is not None:
            await self._on_error(context.error)


__all__ = ["TelegramTransport", "Transport", "TransportErrorCallback", "UpdateCallback"]
