"""Polling cadence helpers."""

from __future__ import annotations

import re

from ..logging import get_logger
from ..settings import get_settings

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smh]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}

DEFAULT_SCRAPE_INTERVAL_SECONDS = 15
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 10
DEFAULT_RECONNECT_BACKOFF_SECONDS = 5

RPC_REQUEST_TIMEOUT_SECONDS = SETTINGS.poller.rpc_request_timeout_seconds


def parse_duration_to_seconds(value: str) -> int | None:
    """Convert ``"30"``, ``"30s"``, ``"2m"`` or ``"1h"`` into seconds.

    Anything else, including negative numbers, yields None.
    """
    match = _DURATION_PATTERN.match(value)

    if match is None:
        return None

    amount, unit = match.groups()

    return int(amount) * _UNIT_SECONDS[unit.lower()]


def _resolve_interval(raw_value: str, default_seconds: int, setting_name: str) -> int:
    seconds = parse_duration_to_seconds(raw_value)

    if seconds:
        return seconds

    LOGGER.warning(
        "Invalid %s '%s'; using %s seconds.",
        setting_name,
        raw_value,
        default_seconds,
    )

    return default_seconds


def determine_scrape_interval_seconds() -> int:
    """Return the cadence of the chain and validator workers."""
    return _resolve_interval(
        SETTINGS.poller.scrape_interval,
        DEFAULT_SCRAPE_INTERVAL_SECONDS,
        "SCRAPE_INTERVAL",
    )


def determine_health_check_interval_seconds() -> int:
    """Return the interval between liveness probes of the connected endpoint."""
    return _resolve_interval(
        SETTINGS.poller.health_check_interval,
        DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
        "HEALTH_CHECK_INTERVAL",
    )


def determine_reconnect_backoff_seconds() -> int:
    """Return the wait after a failed connection attempt."""
    return _resolve_interval(
        SETTINGS.poller.reconnect_backoff,
        DEFAULT_RECONNECT_BACKOFF_SECONDS,
        "RECONNECT_BACKOFF",
    )


__all__ = [
    "DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS",
    "DEFAULT_RECONNECT_BACKOFF_SECONDS",
    "DEFAULT_SCRAPE_INTERVAL_SECONDS",
    "RPC_REQUEST_TIMEOUT_SECONDS",
    "determine_health_check_interval_seconds",
    "determine_reconnect_backoff_seconds",
    "determine_scrape_interval_seconds",
    "parse_duration_to_seconds",
]
