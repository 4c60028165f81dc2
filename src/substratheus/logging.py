"""Structured logging for the exporter.

Modules log through ``get_logger(__name__)`` and attach chain, validator and
endpoint context with ``build_log_extra``. The two formatters render that
context either as ``key=value`` pairs after the message or as JSON fields.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from time import monotonic
from typing import TYPE_CHECKING, Any, Dict, Iterator

if TYPE_CHECKING:
    from .config import ExporterConfig, ValidatorConfig

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RECORD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "color_message"}

_ANSI_RESET = "\033[0m"
_ANSI_TIMESTAMP = "\033[36m"
_ANSI_LEVELS = {
    "DEBUG": "\033[90m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def extract_log_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the attributes attached to ``record`` through ``extra``."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
    }


def build_log_extra(
    *,
    config: ExporterConfig | None = None,
    validator: ValidatorConfig | None = None,
    endpoint: str | None = None,
    era: int | None = None,
    elapsed: float | None = None,
    additional: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a log call.

    Only the arguments that were given end up in the result; ``additional``
    is merged last and wins on key collisions.
    """
    extra: Dict[str, Any] = {}

    if config is not None:
        extra.update(network=config.network.value, chain=config.chain)

    if validator is not None:
        extra.update(validator_name=validator.name, validator_address=validator.address)

    for key, value in (("endpoint", endpoint), ("era", era)):
        if value is not None:
            extra[key] = value

    if elapsed is not None:
        extra["elapsed_seconds"] = round(elapsed, 3)

    extra.update(additional or {})

    return extra


@contextmanager
def log_duration(
    logger: logging.Logger,
    message: str,
    *,
    level: int = logging.DEBUG,
    extra: Dict[str, Any] | None = None,
) -> Iterator[None]:
    """Log ``message`` with ``elapsed_seconds`` once the wrapped block exits."""

    started = monotonic()
    try:
        yield
    finally:
        logger.log(level, message, extra=build_log_extra(elapsed=monotonic() - started, additional=extra))


def resolve_color_message(record: logging.LogRecord, color_message: str | None) -> str | None:
    """Interpolate uvicorn's ``color_message`` with the record arguments.

    The colored template is returned unchanged when it does not accept them.
    """
    if not color_message or not record.args:
        return color_message

    try:
        return color_message % record.args
    except (TypeError, ValueError):
        return color_message


def _paint(text: str, color: str) -> str:
    return f"{color}{text}{_ANSI_RESET}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the structured context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        color_message = getattr(record, "color_message", None)
        if color_message is not None:
            payload["color_message"] = resolve_color_message(record, color_message)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        if record.stack_info:
            payload["stack_info"] = record.stack_info

        payload.update(extract_log_context(record))

        return json.dumps(payload, default=str)


class StructuredTextFormatter(logging.Formatter):
    """Plain text lines followed by `` | key=value`` context, optionally colored."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        *,
        color_enabled: bool = True,
    ) -> None:
        super().__init__(fmt, datefmt, style)
        self.color_enabled = color_enabled

    def _colorize(self, line: str, record: logging.LogRecord) -> str:
        color_message = resolve_color_message(record, getattr(record, "color_message", None))

        if color_message:
            message = record.getMessage()
            line = line.replace(message, color_message, 1) if message in line else f"{line} {color_message}"

        timestamp = self.formatTime(record, self.datefmt)
        line = line.replace(timestamp, _paint(timestamp, _ANSI_TIMESTAMP), 1)

        level_color = _ANSI_LEVELS.get(record.levelname)
        if level_color:
            line = line.replace(record.levelname, _paint(record.levelname, level_color), 1)

        return line

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        if self.color_enabled:
            line = self._colorize(line, record)

        context = extract_log_context(record)

        if not context:
            return line

        pairs = " ".join(f"{key}={context[key]}" for key in sorted(context))
        return f"{line} | {pairs}"


__all__ = [
    "JsonFormatter",
    "StructuredTextFormatter",
    "build_log_extra",
    "extract_log_context",
    "get_logger",
    "log_duration",
    "resolve_color_message",
]
