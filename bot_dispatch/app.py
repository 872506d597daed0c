"""Console entry point for running a dispatching bot.

Handler classes are named in ``BOT_HANDLERS`` as ``package.module:ClassName``
entries; each is instantiated once without arguments.
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys
from typing import Iterable

from telegram.error import InvalidToken as TelegramInvalidToken
from telegram.error import NetworkError as TelegramNetworkError

from bot_dispatch.config import BotConfig
from bot_dispatch.errors import ConfigurationError, DiscoveryError
from bot_dispatch.supervisor import build_supervisor

LOGGER = logging.getLogger(__name__)


def load_handler_types(paths: Iterable[str]) -> list[type]:
    """Import the handler classes referenced by ``module:Class`` paths."""

    types: list[type] = []
    for path in paths:
        module_name, sep, attribute = path.partition(":")
        if not sep or not module_name or not attribute:
            raise ConfigurationError(f"Handler path {path!r} must look like 'package.module:ClassName'")
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            raise ConfigurationError(f"Unable to import handler module {module_name!r}: {exc}") from exc
        target = getattr(module, attribute, None)
        if not isinstance(target, type):
            raise ConfigurationError(f"{path!r} does not name a class")
        types.append(target)
    return types


async def serve(config: BotConfig, handler_types: list[type]) -> None:
    supervisor = build_supervisor(config, handler_types)
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, shutdown.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    await supervisor.start()
    try:
        await shutdown.wait()
    finally:
        await supervisor.stop()


def main() -> None:  # pragma: no cover - thin wrapper
    if sys.platform.startswith("win"):
        # python-telegram-bot relies on selector event loops which are not the default
        # on Windows.
        try:
            asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
        except AttributeError:
            pass

    try:
        config = BotConfig.load()
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc

    logging.basicConfig(level=config.log_level)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram.ext").setLevel(logging.WARNING)

    try:
        handler_types = load_handler_types(config.handler_paths)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc
    if not handler_types:
        LOGGER.warning("BOT_HANDLERS is empty, every update will be dropped")

    try:
        asyncio.run(serve(config, handler_types))
    except DiscoveryError as exc:
        LOGGER.error("Refusing to start: %s", exc)
        raise SystemExit(1) from exc
    except TelegramInvalidToken as exc:
        LOGGER.error("Telegram rejected the configured token. Check BOT_TOKEN.")
        raise SystemExit(1) from exc
    except TelegramNetworkError as exc:
        LOGGER.error("Network failure while talking to Telegram: %s", exc)
        raise SystemExit(1) from exc


__all__ = ["load_handler_types", "main", "serve"]


if __name__ == "__main__":  # pragma: no cover - module executable guard
    main()
