from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from bot_dispatch.errors import ConfigurationError
from bot_dispatch.router import ErrorHook

TOKEN_ENVIRONMENT_KEYS: tuple[str, ...] = ("BOT_TOKEN", "TELEGRAM_BOT_TOKEN")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split_list(raw: str) -> List[str]:
    return [value for chunk in raw.split(",") if (value := chunk.strip())]


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_number(name: str, default: float, cast: type = float):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return cast(default)
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class ReceiverOptions:
    """Options forwarded to the polling transport."""

    allowed_updates: Optional[List[str]] = None
    drop_pending_updates: bool = False
    poll_interval: float = 0.0
    timeout: int = 10
    concurrent_updates: bool = False


@dataclass(slots=True)
class BotConfig:
    """Configuration container for a dispatching bot process."""

    token: str
    receiver: ReceiverOptions = field(default_factory=ReceiverOptions)
    handler_paths: List[str] = field(default_factory=list)
    log_level: str = "INFO"
    error_hook: Optional[ErrorHook] = None

    @classmethod
    def load(cls, env_path: str | os.PathLike[str] | None = ".env") -> "BotConfig":
        """Load configuration from environment variables."""
        if env_path is not None:
            load_dotenv(env_path)

        token = next(
            (value.strip() for key in TOKEN_ENVIRONMENT_KEYS if (value := os.getenv(key, "")).strip()),
            None,
        )
        if not token:
            raise ConfigurationError(
                "BOT_TOKEN is not defined. Please add it to your .env file before running the bot."
            )

        allowed = _split_list(os.getenv("BOT_ALLOWED_UPDATES", ""))
        receiver = ReceiverOptions(
            allowed_updates=allowed or None,
            drop_pending_updates=_env_flag("BOT_DROP_PENDING_UPDATES"),
            poll_interval=_env_number("BOT_POLL_INTERVAL", 0.0),
            timeout=_env_number("BOT_POLL_TIMEOUT", 10, int),
            concurrent_updates=_env_flag("BOT_CONCURRENT_UPDATES"),
        )
        return cls(
            token=token,
            receiver=receiver,
            handler_paths=_split_list(os.getenv("BOT_HANDLERS", "")),
            log_level=os.getenv("BOT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


__all__ = ["BotConfig", "ReceiverOptions", "TOKEN_ENVIRONMENT_KEYS"]
