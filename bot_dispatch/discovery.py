from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union

from telegram import Bot

from bot_dispatch.declarations import HandlerDeclaration, HandlerMark, marks_of
from bot_dispatch.errors import DiscoveryError, HandlerSignatureError, RegistrationError
from bot_dispatch.kinds import HandlerDescriptor, UpdateKind
from bot_dispatch.registry import Registry

LOGGER = logging.getLogger(__name__)

Candidate = Union[type, HandlerDeclaration]
Construct = Callable[[type], Union[Any, Awaitable[Any]]]

_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)
_NONE_ANNOTATIONS = (None, type(None), "None")


@dataclass(slots=True)
class DiscoveryReport:
    registered: list[HandlerDescriptor] = field(default_factory=list)
    skipped: list[HandlerSignatureError] = field(default_factory=list)


def _annotation_matches(annotation: Any, expected: type, aliases: tuple[str, ...] = ()) -> bool:
    if annotation is Any:
        return True
    if isinstance(annotation, str):
        name = annotation.strip("'\"").rsplit(".", 1)[-1]
        return name in ("Any", expected.__name__) + aliases
    if isinstance(annotation, type):
        return issubclass(annotation, expected)
    return False


def validate_handler(func: Callable[..., Any], kind: UpdateKind) -> None:
    """Raise :class:`HandlerSignatureError` unless ``func`` can handle ``kind``.

    A handler is an ``async def`` callable taking exactly three positional
    arguments ``(client, payload, stopping)``.  Annotated parameters must name
    :class:`telegram.Bot`, the payload type of ``kind`` and
    :class:`asyncio.Event` respectively; an annotated return type must be
    ``None``.
    """

    if not inspect.iscoroutinefunction(func):
        raise HandlerSignatureError(func, "handler must be a coroutine function")
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError) as exc:
        raise HandlerSignatureError(func, f"signature cannot be inspected ({exc})") from exc

    parameters = list(signature.parameters.values())
    positional = [param for param in parameters if param.kind in _POSITIONAL]
    if len(positional) != 3 or any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in parameters):
        raise HandlerSignatureError(
            func, f"expected (client, payload, stopping), got {len(positional)} positional parameters"
        )
    if any(
        param.kind is inspect.Parameter.KEYWORD_ONLY and param.default is inspect.Parameter.empty
        for param in parameters
    ):
        raise HandlerSignatureError(func, "required keyword-only parameters are not supported")

    expectations = (
        (positional[0], Bot, ("ExtBot",)),
        (positional[1], kind.payload_type, ()),
        (positional[2], asyncio.Event, ()),
    )
    for param, expected, aliases in expectations:
        if param.annotation is inspect.Parameter.empty:
            continue
        if not _annotation_matches(param.annotation, expected, aliases):
            raise HandlerSignatureError(
                func,
                f"{kind.name} handlers receive {expected.__name__} as {param.name!r}, "
                f"which is annotated as {param.annotation!r}",
            )

    returns = signature.return_annotation
    if returns is not inspect.Signature.empty and returns not in _NONE_ANNOTATIONS:
        raise HandlerSignatureError(func, f"handlers must return None, not {returns!r}")


def declared_methods(cls: type) -> list[tuple[str, tuple[HandlerMark, ...]]]:
    """Return marked members of ``cls`` in class-body declaration order."""

    members: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        # Re-assigning an existing name keeps its original position.
        members.update(vars(klass))

    result = []
    for name, member in members.items():
        if isinstance(member, (staticmethod, classmethod)):
            member = member.__func__
        marks = marks_of(member)
        if marks:
            result.append((name, marks))
    return result


def _default_construct(cls: type) -> Any:
    return cls()


class Discoverer:
    """Turn declared handlers into registry entries, exactly once."""

    def __init__(
        self,
        registry: Registry,
        candidates: Iterable[Candidate],
        construct: Optional[Construct] = None,
    ) -> None:
        self.registry = registry
        self.candidates: Sequence[Candidate] = tuple(candidates)
        seen: set[type] = set()
        for candidate in self.candidates:
            if not isinstance(candidate, (type, HandlerDeclaration)):
                raise TypeError(
                    f"Handler candidates must be classes or HandlerDeclaration values, got {candidate!r}"
                )
            if isinstance(candidate, type):
                if candidate in seen:
                    raise TypeError(f"Handler type {candidate.__qualname__} is listed more than once")
                seen.add(candidate)
        self._construct = construct or _default_construct
        self._ran = False

    @property
    def ran(self) -> bool:
        return self._ran

    async def run(self) -> DiscoveryReport:
        if self._ran:
            raise DiscoveryError("Handler discovery has already run")
        self._ran = True

        report = DiscoveryReport()
        failures: list[Exception] = []
        for candidate in self.candidates:
            try:
                entries = await self._entries(candidate)
            except Exception as exc:
                LOGGER.error("Unable to construct handler type %r: %s", candidate, exc)
                failures.append(exc)
                continue

            for kind, key, func, label in entries:
                try:
                    validate_handler(func, kind)
                except HandlerSignatureError as exc:
                    LOGGER.warning("Skipping handler %s: %s", label, exc.reason)
                    report.skipped.append(exc)
                    continue

                descriptor = HandlerDescriptor(kind=kind, invoke=func, key=key, name=label)
                try:
                    self.registry.register(descriptor)
                except RegistrationError as exc:
                    LOGGER.error("Unable to register %s: %s", label, exc)
                    failures.append(exc)
                    continue
                report.registered.append(descriptor)

        if failures:
            raise DiscoveryError("Handler discovery failed", failures)

        LOGGER.info(
            "Discovered %s handlers (%s skipped)", len(report.registered), len(report.skipped)
        )
        return report

    async def _entries(self, candidate: Candidate) -> list[tuple[UpdateKind, Optional[str], Any, str]]:
        if isinstance(candidate, HandlerDeclaration):
            label = getattr(candidate.func, "__qualname__", repr(candidate.func))
            return [(candidate.kind, candidate.key, candidate.func, label)]

        methods = declared_methods(candidate)
        if not methods:
            LOGGER.debug("%s declares no handlers", candidate.__qualname__)
            return []

        instance = self._construct(candidate)
        if inspect.isawaitable(instance):
            instance = await instance
        return [
            (mark.kind, mark.key, getattr(instance, name), f"{candidate.__qualname__}.{name}")
            for name, marks in methods
            for mark in marks
        ]


__all__ = ["Discoverer", "DiscoveryReport", "declared_methods", "validate_handler"]
