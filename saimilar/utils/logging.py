"""Logging setup for the SAImilar application."""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

from saimilar.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request or statement at INFO/DEBUG
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger.

    Args:
        level: Explicit level name. Falls back to ``LOG_LEVEL``, then to INFO in
            production and DEBUG elsewhere.
    """
    settings = get_settings()
    level = level or settings.log_level or ("INFO" if settings.is_production else "DEBUG")

    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with ``[key=value]`` pairs.

    Used to tag comparison runs with the model under test:

        ctx = LogContext(logger, model="sonar")
        ctx.info("returned 7 titles")  # "[model=sonar] returned 7 titles"
    """

    def __init__(self, logger: logging.Logger, **context: str) -> None:
        super().__init__(logger, context)
        self.prefix = " ".join(f"[{key}={value}]" for key, value in context.items())

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"{self.prefix} {msg}", kwargs
