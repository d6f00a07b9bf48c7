"""
Session factory selection.

The built-in "log" session follows the server log. Any other transport is
plugged in by import path ("package.module:callable"); the callable
receives SessionOptions and returns a GameSession.
"""

from __future__ import annotations

import importlib
from typing import Callable

from services.game.log_session import LogTailSession
from services.game.session import GameSession, SessionOptions
from shared.config.relay import RelayConfig
from shared.logging.logger import get_logger

log = get_logger("game.factory")

SessionFactory = Callable[[SessionOptions], GameSession]


def session_options(config: RelayConfig) -> SessionOptions:
    cubyz = config.cubyz
    return SessionOptions(
        host=cubyz.host,
        port=cubyz.port,
        bot_name=cubyz.bot_name,
        version=cubyz.version,
        log_path=cubyz.log_path or None,
        poll_interval=cubyz.poll_interval_ms / 1000.0,
    )


def load_factory(path: str) -> SessionFactory:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Invalid session factory path: {path}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"Session factory {path} is not callable")
    return factory


def build_session_factory(config: RelayConfig) -> SessionFactory:
    if config.cubyz.session == "factory":
        log.info(f"Using session factory {config.cubyz.session_factory}")
        return load_factory(config.cubyz.session_factory)

    log.info("Using log tail session")
    return LogTailSession


__all__ = [
    "SessionFactory",
    "build_session_factory",
    "load_factory",
    "session_options",
]
