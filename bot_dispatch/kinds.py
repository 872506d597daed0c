from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from telegram import CallbackQuery, InlineQuery, Message, PreCheckoutQuery, Update

HandlerCallable = Callable[[Any, Any, Any], Awaitable[None]]


class UpdateKind(Enum):
    """Closed set of categories an incoming update is routed by."""

    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CALLBACK = "callback_query"
    INLINE = "inline_query"
    PRE_CHECKOUT = "pre_checkout_query"
    UNMATCHED = "unmatched"

    @property
    def is_keyed(self) -> bool:
        return self in _KEYED_KINDS

    @property
    def is_ordered(self) -> bool:
        return self in _ORDERED_KINDS

    @property
    def is_single(self) -> bool:
        return self is UpdateKind.PRE_CHECKOUT

    @property
    def payload_type(self) -> type:
        return PAYLOAD_TYPES[self]


_KEYED_KINDS = frozenset({UpdateKind.MESSAGE, UpdateKind.CALLBACK, UpdateKind.INLINE})
_ORDERED_KINDS = frozenset({UpdateKind.EDITED_MESSAGE, UpdateKind.UNMATCHED})

PAYLOAD_TYPES: dict[UpdateKind, type] = {
    UpdateKind.MESSAGE: Message,
    UpdateKind.EDITED_MESSAGE: Message,
    UpdateKind.CALLBACK: CallbackQuery,
    UpdateKind.INLINE: InlineQuery,
    UpdateKind.PRE_CHECKOUT: PreCheckoutQuery,
    UpdateKind.UNMATCHED: Update,
}

# Order in which the slots of an update are inspected.
CLASSIFICATION_ORDER: tuple[UpdateKind, ...] = (
    UpdateKind.MESSAGE,
    UpdateKind.EDITED_MESSAGE,
    UpdateKind.CALLBACK,
    UpdateKind.INLINE,
    UpdateKind.PRE_CHECKOUT,
)


@dataclass(frozen=True, slots=True)
class HandlerDescriptor:
    """Bound, invocable representation of one registered handler."""

    kind: UpdateKind
    invoke: HandlerCallable
    key: Optional[str] = None
    name: str = ""

    def __post_init__(self) -> None:
        if self.kind.is_keyed and not self.key:
            raise ValueError(f"{self.kind.name} handlers require a non-empty key")
        if not self.kind.is_keyed and self.key is not None:
            raise ValueError(f"{self.kind.name} handlers do not take a key")

    @property
    def label(self) -> str:
        return self.name or getattr(self.invoke, "__qualname__", repr(self.invoke))


__all__ = [
    "CLASSIFICATION_ORDER",
    "HandlerCallable",
    "HandlerDescriptor",
    "PAYLOAD_TYPES",
    "UpdateKind",
]
