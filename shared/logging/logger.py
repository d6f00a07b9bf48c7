import logging
import os
from datetime import datetime
from pathlib import Path

LOG_DIR = Path(os.getenv("RELAY_LOG_DIR", "logs"))

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.CRITICAL + 10,
}

_LOGGERS = {}
_LEVEL = logging.DEBUG


def _file_logging_enabled() -> bool:
    return os.getenv("RELAY_FILE_LOGGING", "1").strip().lower() not in {"0", "false", "no"}


def get_logger(
    name: str,
    *,
    runtime: str = "relay",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.connection, discord.client)
    - runtime: log file prefix (relay | discord | listsite)
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    if _file_logging_enabled():
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        logfile = LOG_DIR / f"{runtime}-{timestamp}.log"

        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger


def set_log_level(level: str) -> int:
    """
    Apply a configured level name to every relay logger, including the
    ones created later.
    """
    global _LEVEL

    resolved = LOG_LEVELS.get((level or "").strip().lower())
    if resolved is None:
        raise ValueError(f"Unsupported log level: {level}")

    _LEVEL = resolved
    for logger in _LOGGERS.values():
        logger.setLevel(resolved)

    return resolved
