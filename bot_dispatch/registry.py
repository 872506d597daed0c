from __future__ import annotations

import logging
from typing import Optional

from bot_dispatch.errors import (
    AlreadyRegisteredError,
    DuplicateKeyError,
    RegistryFrozenError,
)
from bot_dispatch.kinds import HandlerDescriptor, UpdateKind

LOGGER = logging.getLogger(__name__)


class Registry:
    """Handler storage for one dispatcher instance.

    Keyed kinds keep an insertion-ordered ``key -> descriptor`` mapping,
    ordered kinds a list and the pre-checkout kind a single slot.  The
    registry is written once during startup and frozen afterwards, so the
    routing path only ever reads from it.
    """

    def __init__(self) -> None:
        self._keyed: dict[UpdateKind, dict[str, HandlerDescriptor]] = {
            kind: {} for kind in UpdateKind if kind.is_keyed
        }
        self._ordered: dict[UpdateKind, list[HandlerDescriptor]] = {
            kind: [] for kind in UpdateKind if kind.is_ordered
        }
        self._single: dict[UpdateKind, Optional[HandlerDescriptor]] = {
            kind: None for kind in UpdateKind if kind.is_single
        }
        self._frozen = False

    # Registration ---------------------------------------------------------
    def register(self, descriptor: HandlerDescriptor) -> None:
        kind = descriptor.kind
        if kind.is_keyed:
            if not descriptor.key:
                raise ValueError(f"{kind.name} handlers require a non-empty key")
            self.register_keyed(kind, descriptor.key, descriptor)
        elif kind.is_ordered:
            self.register_ordered(kind, descriptor)
        else:
            self.register_single(kind, descriptor)

    def register_keyed(self, kind: UpdateKind, key: str, descriptor: HandlerDescriptor) -> None:
        handlers = self._writable(self._keyed, kind, "keyed")
        if key in handlers:
            raise DuplicateKeyError(kind, key)
        handlers[key] = descriptor
        LOGGER.debug("Registered %s handler %s for %r", kind.name, descriptor.label, key)

    def register_ordered(self, kind: UpdateKind, descriptor: HandlerDescriptor) -> None:
        handlers = self._writable(self._ordered, kind, "ordered")
        handlers.append(descriptor)
        LOGGER.debug("Registered %s handler %s (#%s)", kind.name, descriptor.label, len(handlers))

    def register_single(self, kind: UpdateKind, descriptor: HandlerDescriptor) -> None:
        self._writable(self._single, kind, "single")
        if self._single[kind] is not None:
            raise AlreadyRegisteredError(kind)
        self._single[kind] = descriptor
        LOGGER.debug("Registered %s handler %s", kind.name, descriptor.label)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Resolution -----------------------------------------------------------
    def resolve_keyed(self, kind: UpdateKind, text: Optional[str]) -> Optional[HandlerDescriptor]:
        """Return the earliest registered handler whose key prefixes ``text``."""
        handlers = self._table(self._keyed, kind, "keyed")
        if not text:
            return None
        for key, descriptor in handlers.items():
            if text.startswith(key):
                return descriptor
        return None

    def resolve_ordered(self, kind: UpdateKind) -> tuple[HandlerDescriptor, ...]:
        return tuple(self._table(self._ordered, kind, "ordered"))

    def resolve_single(self, kind: UpdateKind) -> Optional[HandlerDescriptor]:
        self._table(self._single, kind, "single")
        return self._single[kind]

    # Introspection --------------------------------------------------------
    def keys(self, kind: UpdateKind) -> list[str]:
        return list(self._table(self._keyed, kind, "keyed"))

    def counts(self) -> dict[UpdateKind, int]:
        result: dict[UpdateKind, int] = {}
        for kind in UpdateKind:
            if kind.is_keyed:
                result[kind] = len(self._keyed[kind])
            elif kind.is_ordered:
                result[kind] = len(self._ordered[kind])
            else:
                result[kind] = int(self._single[kind] is not None)
        return result

    def __len__(self) -> int:
        return sum(self.counts().values())

    # Helpers --------------------------------------------------------------
    def _writable(self, tables: dict, kind: UpdateKind, family: str):
        table = self._table(tables, kind, family)
        if self._frozen:
            raise RegistryFrozenError(kind)
        return table

    @staticmethod
    def _table(tables: dict, kind: UpdateKind, family: str):
        if kind not in tables:
            raise ValueError(f"{kind.name} is not a {family} update kind")
        return tables[kind]


__all__ = ["Registry"]
