from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Optional

if TYPE_CHECKING:
    from bot_dispatch.kinds import UpdateKind


class DispatchError(Exception):
    """Base class for every error raised by the dispatch core."""


class ConfigurationError(DispatchError):
    pass


class RegistrationError(DispatchError):
    def __init__(self, kind: "UpdateKind", message: str) -> None:
        super().__init__(message)
        self.kind = kind


class DuplicateKeyError(RegistrationError):
    def __init__(self, kind: "UpdateKind", key: str) -> None:
        super().__init__(kind, f"A {kind.name} handler for {key!r} is already registered")
        self.key = key


class AlreadyRegisteredError(RegistrationError):
    def __init__(self, kind: "UpdateKind") -> None:
        super().__init__(kind, f"A {kind.name} handler is already registered")


class RegistryFrozenError(RegistrationError):
    def __init__(self, kind: "UpdateKind") -> None:
        super().__init__(kind, f"Cannot register a {kind.name} handler after startup")


class HandlerSignatureError(DispatchError):
    """A declared handler does not have the shape its update kind requires."""

    def __init__(self, handler: Any, reason: str) -> None:
        name = getattr(handler, "__qualname__", repr(handler))
        super().__init__(f"{name}: {reason}")
        self.handler = handler
        self.reason = reason


class DiscoveryError(DispatchError):
    """Handler discovery could not produce a valid registry."""

    def __init__(self, message: str, errors: Optional[Iterable[Exception]] = None) -> None:
        self.errors = list(errors or ())
        if self.errors:
            details = "; ".join(str(error) for error in self.errors)
            message = f"{message}: {details}"
        super().__init__(message)


class SupervisorStateError(DispatchError):
    pass


__all__ = [
    "AlreadyRegisteredError",
    "ConfigurationError",
    "DiscoveryError",
    "DispatchError",
    "DuplicateKeyError",
    "HandlerSignatureError",
    "RegistrationError",
    "RegistryFrozenError",
    "SupervisorStateError",
]
