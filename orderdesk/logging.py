"""Logging setup and the ``key=value`` service logger used across Orderdesk."""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import Any, Dict


def setup_logging(level: str = "INFO") -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def render_value(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(render_value(item) for item in value)
    return str(value)


class ServiceLogger:
    """Logger for one Orderdesk component.

    Keyword arguments are appended to the message as ``key=value``
    pairs. ``bind`` returns a logger that repeats the given context on
    every line, e.g. the view id for everything a view logs.
    """

    def __init__(self, service_name: str, **bound: Any) -> None:
        self._service_name = service_name
        self._logger = get_logger(f"orderdesk.{service_name}")
        self._bound: Dict[str, Any] = dict(bound)

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: Any) -> "ServiceLogger":
        return ServiceLogger(self._service_name, **{**self._bound, **context})

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(logging.ERROR, message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, context)

    def _log(self, level: int, message: str, context: Dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self._bound, **context}
        if merged:
            pairs = " | ".join(f"{key}={render_value(value)}" for key, value in merged.items())
            message = f"{message} | {pairs}"
        self._logger.log(level, message)
