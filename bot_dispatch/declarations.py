"""Ways of declaring handlers.

Methods of a handler class are marked with the decorators below and picked
up by :class:`bot_dispatch.discovery.Discoverer`::

    class Greetings:
        @command("/start")
        async def start(self, bot, message, stopping):
            await bot.send_message(message.chat_id, "Hello!")

        @edited_message
        async def edited(self, bot, message, stopping):
            ...

Plain functions can be registered without a class through :func:`declare`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from bot_dispatch.kinds import UpdateKind

F = TypeVar("F", bound=Callable[..., Any])

HANDLER_ATTRIBUTE = "__bot_dispatch_handlers__"


@dataclass(frozen=True, slots=True)
class HandlerMark:
    kind: UpdateKind
    key: Optional[str] = None


@dataclass(frozen=True, slots=True)
class HandlerDeclaration:
    """Explicit registration of a callable that is not a class member."""

    kind: UpdateKind
    func: Callable[..., Any]
    key: Optional[str] = None


def _check_key(kind: UpdateKind, key: Optional[str]) -> None:
    if kind.is_keyed:
        if not isinstance(key, str) or not key:
            raise ValueError(f"{kind.name} handlers need a non-empty string key, got {key!r}")
    elif key is not None:
        raise ValueError(f"{kind.name} handlers do not take a key")


def _mark(kind: UpdateKind, key: Optional[str] = None) -> Callable[[F], F]:
    _check_key(kind, key)

    def decorator(func: F) -> F:
        marks = getattr(func, HANDLER_ATTRIBUTE, ())
        # Decorators apply bottom-up; keep marks in source order.
        setattr(func, HANDLER_ATTRIBUTE, (HandlerMark(kind, key),) + tuple(marks))
        return func

    return decorator


def _bare_or_called(kind: UpdateKind, func: Optional[F]):
    decorator = _mark(kind)
    if func is None:
        return decorator
    return decorator(func)


def command(prefix: str) -> Callable[[F], F]:
    """Handle messages whose text starts with ``prefix`` (e.g. ``"/start"``)."""
    return _mark(UpdateKind.MESSAGE, prefix)


def callback(prefix: str) -> Callable[[F], F]:
    """Handle callback queries whose data starts with ``prefix``."""
    return _mark(UpdateKind.CALLBACK, prefix)


def inline(prefix: str) -> Callable[[F], F]:
    """Handle inline queries whose id starts with ``prefix``."""
    return _mark(UpdateKind.INLINE, prefix)


def edited_message(func: Optional[F] = None):
    return _bare_or_called(UpdateKind.EDITED_MESSAGE, func)


def pre_checkout(func: Optional[F] = None):
    return _bare_or_called(UpdateKind.PRE_CHECKOUT, func)


def unmatched(func: Optional[F] = None):
    """Handle updates that carry none of the routed slots."""
    return _bare_or_called(UpdateKind.UNMATCHED, func)


def declare(kind: UpdateKind, func: Callable[..., Any], key: Optional[str] = None) -> HandlerDeclaration:
    _check_key(kind, key)
    return HandlerDeclaration(kind=kind, func=func, key=key)


def marks_of(func: Any) -> tuple[HandlerMark, ...]:
    return tuple(getattr(func, HANDLER_ATTRIBUTE, ()))


__all__ = [
    "HANDLER_ATTRIBUTE",
    "HandlerDeclaration",
    "HandlerMark",
    "callback",
    "command",
    "declare",
    "edited_message",
    "inline",
    "marks_of",
    "pre_checkout",
    "unmatched",
]
