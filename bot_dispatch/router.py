from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from telegram import Update

from bot_dispatch.kinds import CLASSIFICATION_ORDER, HandlerDescriptor, UpdateKind
from bot_dispatch.registry import Registry

LOGGER = logging.getLogger(__name__)

ErrorHook = Callable[[Any, BaseException, Optional[UpdateKind]], Awaitable[None]]


async def log_error(client: Any, error: BaseException, kind: Optional[UpdateKind]) -> None:
    """Error hook used when the host does not supply one."""
    source = kind.name if kind is not None else "transport"
    LOGGER.error("Unhandled %s error: %s", source, error, exc_info=error)


def classify(update: Update) -> tuple[UpdateKind, Any]:
    """Return the update kind and payload, reading slots in a fixed order."""
    for kind in CLASSIFICATION_ORDER:
        payload = getattr(update, kind.value, None)
        if payload is not None:
            return kind, payload
    return UpdateKind.UNMATCHED, update


def extract_key(kind: UpdateKind, payload: Any) -> Optional[str]:
    if kind is UpdateKind.MESSAGE:
        return payload.text
    if kind is UpdateKind.CALLBACK:
        return payload.data
    if kind is UpdateKind.INLINE:
        return payload.id
    return None


class Router:
    """Classify one update, resolve its handlers and run them.

    Handler failures are contained here: they are logged and passed to the
    error hook, so the transport's receive loop never sees them.
    """

    def __init__(
        self,
        registry: Registry,
        client: Any,
        stopping: asyncio.Event,
        error_hook: Optional[ErrorHook] = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.stopping = stopping
        self.error_hook = error_hook or log_error
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def route(self, update: Update) -> Optional[UpdateKind]:
        if self._closed:
            LOGGER.debug("Router closed, dropping update %s", getattr(update, "update_id", None))
            return None

        kind, payload = classify(update)
        if kind.is_keyed:
            key = extract_key(kind, payload)
            if not key:
                LOGGER.debug("%s update without a routing key, dropping", kind.name)
                return kind
            descriptor = self.registry.resolve_keyed(kind, key)
            if descriptor is None:
                LOGGER.debug("No %s handler matches %r", kind.name, key)
                return kind
            await self._invoke(descriptor, payload)
        elif kind.is_ordered:
            descriptors = self.registry.resolve_ordered(kind)
            if descriptors:
                await asyncio.gather(*(self._invoke(d, payload) for d in descriptors))
        else:
            descriptor = self.registry.resolve_single(kind)
            if descriptor is None:
                LOGGER.debug("No %s handler registered", kind.name)
                return kind
            await self._invoke(descriptor, payload)
        return kind

    async def _invoke(self, descriptor: HandlerDescriptor, payload: Any) -> None:
        try:
            await descriptor.invoke(self.client, payload, self.stopping)
        except Exception as exc:
            LOGGER.warning("%s handler %s failed: %s", descriptor.kind.name, descriptor.label, exc)
            await self.report(exc, descriptor.kind)

    async def report(self, error: BaseException, kind: Optional[UpdateKind]) -> None:
        try:
            await self.error_hook(self.client, error, kind)
        except Exception:
            LOGGER.exception("Error hook failed while reporting %r", error)


__all__ = ["ErrorHook", "Router", "classify", "extract_key", "log_error"]
