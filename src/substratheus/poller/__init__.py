"""Polling package for staking metrics."""

from .collect import (
    ERA_LOOKBACK,
    collect_chain_metrics_sync,
    collect_validator_metrics_sync,
)
from .connection import (
    ConnectionHandle,
    ConnectionManager,
    ConnectionState,
    ShutdownSignal,
)
from .control import (
    collect_chain_metrics,
    collect_validator_metrics,
    run_chain_metrics_worker,
    run_validator_metrics_worker,
)
from .intervals import (
    DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    DEFAULT_RECONNECT_BACKOFF_SECONDS,
    DEFAULT_SCRAPE_INTERVAL_SECONDS,
)
from .manager import PollerManager, get_poller_manager, reset_poller_manager

__all__ = [
    "ERA_LOOKBACK",
    "collect_chain_metrics",
    "collect_chain_metrics_sync",
    "collect_validator_metrics",
    "collect_validator_metrics_sync",
    "run_chain_metrics_worker",
    "run_validator_metrics_worker",
    "ConnectionHandle",
    "ConnectionManager",
    "ConnectionState",
    "ShutdownSignal",
    "DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS",
    "DEFAULT_RECONNECT_BACKOFF_SECONDS",
    "DEFAULT_SCRAPE_INTERVAL_SECONDS",
    "PollerManager",
    "get_poller_manager",
    "reset_poller_manager",
]
