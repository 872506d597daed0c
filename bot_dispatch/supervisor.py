from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Iterable, Optional

from telegram import Update

from bot_dispatch.config import BotConfig, ReceiverOptions
from bot_dispatch.discovery import Candidate, Construct, Discoverer, DiscoveryReport
from bot_dispatch.errors import SupervisorStateError
from bot_dispatch.kinds import UpdateKind
from bot_dispatch.registry import Registry
from bot_dispatch.router import ErrorHook, Router
from bot_dispatch.transport import TelegramTransport, Transport

LOGGER = logging.getLogger(__name__)


class SupervisorState(Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Supervisor:
    """Own the registry and router of one bot for the lifetime of the process.

    ``start()`` discovers handlers once and subscribes the router to the
    transport; a structurally invalid handler set makes it fail before any
    update is routed.  ``stop()`` closes the router, asks the transport to
    drop pending updates and stops receiving.
    """

    def __init__(
        self,
        transport: Transport,
        candidates: Iterable[Candidate],
        construct: Optional[Construct] = None,
        error_hook: Optional[ErrorHook] = None,
        options: Optional[ReceiverOptions] = None,
    ) -> None:
        self.transport = transport
        self.options = options or ReceiverOptions()
        self.registry = Registry()
        self.stopping = asyncio.Event()
        self.router = Router(self.registry, transport.client, self.stopping, error_hook)
        self.discoverer = Discoverer(self.registry, candidates, construct)
        self.report: Optional[DiscoveryReport] = None
        self._state = SupervisorState.CREATED

    @property
    def state(self) -> SupervisorState:
        return self._state

    def _transition(self, state: SupervisorState) -> None:
        LOGGER.debug("Supervisor %s -> %s", self._state.value, state.value)
        self._state = state

    async def start(self) -> DiscoveryReport:
        if self._state is not SupervisorState.CREATED:
            raise SupervisorStateError(f"Cannot start a supervisor in state {self._state.value}")

        self._transition(SupervisorState.STARTING)
        try:
            self.report = await self.discoverer.run()
        except BaseException:
            self.router.close()
            self._transition(SupervisorState.STOPPED)
            raise

        self.registry.freeze()
        try:
            await self.transport.start_receiving(
                self._on_update, self._on_transport_error, self.options, self.stopping
            )
        except BaseException:
            self.stopping.set()
            self.router.close()
            try:
                await self.transport.stop_receiving()
            except Exception as exc:
                LOGGER.warning("Unable to release the transport after a failed start: %s", exc)
            finally:
                self._transition(SupervisorState.STOPPED)
            raise

        self._transition(SupervisorState.RUNNING)
        LOGGER.info(
            "Dispatcher running with %s",
            ", ".join(f"{kind.name}={count}" for kind, count in self.registry.counts().items()),
        )
        return self.report

    async def stop(self) -> None:
        if self._state is SupervisorState.STOPPED:
            return
        if self._state is not SupervisorState.RUNNING:
            raise SupervisorStateError(f"Cannot stop a supervisor in state {self._state.value}")

        self._transition(SupervisorState.STOPPING)
        self.stopping.set()
        self.router.close()
        try:
            await self.transport.drop_pending_updates()
        except Exception as exc:
            LOGGER.warning("Unable to drop pending updates: %s", exc)
        try:
            await self.transport.stop_receiving()
        finally:
            self._transition(SupervisorState.STOPPED)

    async def _on_update(self, update: Update) -> Optional[UpdateKind]:
        return await self.router.route(update)

    async def _on_transport_error(self, error: BaseException) -> None:
        await self.router.report(error, None)


def build_supervisor(
    config: BotConfig,
    candidates: Iterable[Candidate],
    construct: Optional[Construct] = None,
) -> Supervisor:
    """Wire a :class:`Supervisor` to python-telegram-bot from configuration."""

    transport = TelegramTransport(config)
    return Supervisor(
        transport,
        candidates,
        construct=construct,
        error_hook=config.error_hook,
        options=config.receiver,
    )


__all__ = ["Supervisor", "SupervisorState", "build_supervisor"]
