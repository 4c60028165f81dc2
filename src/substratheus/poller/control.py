"""Async control loops for the chain and validator workers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from ..config import ExporterConfig, ValidatorConfig
from ..logging import build_log_extra, get_logger, log_duration
from ..metrics import MetricsStoreProtocol, chain_labels, record_poll_duration
from .collect import collect_chain_metrics_sync, collect_validator_metrics_sync
from .connection import ConnectionHandle, ShutdownSignal

LOGGER = get_logger(__name__)


async def collect_chain_metrics(
    config: ExporterConfig,
    handle: ConnectionHandle,
    metrics: MetricsStoreProtocol | None = None,
) -> bool:
    """Execute one chain metrics cycle inside a worker thread."""

    return await asyncio.to_thread(collect_chain_metrics_sync, config, handle, metrics)


async def collect_validator_metrics(
    config: ExporterConfig,
    validator: ValidatorConfig,
    handle: ConnectionHandle,
    metrics: MetricsStoreProtocol | None = None,
) -> bool:
    """Execute one validator metrics cycle inside a worker thread."""

    return await asyncio.to_thread(collect_validator_metrics_sync, config, validator, handle, metrics)


async def _poll_loop(
    worker: str,
    cycle: Callable[[], Awaitable[bool]],
    *,
    config: ExporterConfig,
    shutdown: ShutdownSignal,
    interval_seconds: float,
    metrics: MetricsStoreProtocol | None,
    log_extra: dict[str, Any],
) -> None:
    labels = chain_labels(config)

    LOGGER.info(
        "Polling %s every %s seconds.",
        worker,
        interval_seconds,
        extra=log_extra,
    )

    while not shutdown.is_set:
        start_time = time.monotonic()

        try:
            with log_duration(
                LOGGER,
                "poller_iteration",
                level=logging.DEBUG,
                extra={**log_extra, "worker": worker},
            ):
                await cycle()
        except asyncio.CancelledError:
            LOGGER.debug("Polling task for %s cancelled.", worker, extra=log_extra)
            raise
        except Exception as exc:  # noqa: BLE001
            # Keep broad Exception catch for truly unexpected errors (programming errors, etc.)
            LOGGER.exception(
                "Unexpected error while polling %s.",
                worker,
                exc_info=exc,
                extra=log_extra,
            )

        elapsed = time.monotonic() - start_time

        record_poll_duration(labels, worker, elapsed, metrics=metrics)

        if await shutdown.wait(max(interval_seconds - elapsed, 0)):
            break

    LOGGER.info("%s worker shutting down.", worker, extra=log_extra)


async def run_chain_metrics_worker(
    config: ExporterConfig,
    handle: ConnectionHandle,
    shutdown: ShutdownSignal,
    *,
    interval_seconds: float,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    """Publish chain-wide staking figures every ``interval_seconds`` until shutdown."""

    await _poll_loop(
        "chain",
        lambda: collect_chain_metrics(config, handle, metrics),
        config=config,
        shutdown=shutdown,
        interval_seconds=interval_seconds,
        metrics=metrics,
        log_extra=build_log_extra(config=config),
    )


async def run_validator_metrics_worker(
    config: ExporterConfig,
    validator: ValidatorConfig,
    handle: ConnectionHandle,
    shutdown: ShutdownSignal,
    *,
    interval_seconds: float,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    """Publish one validator's figures every ``interval_seconds`` until shutdown."""

    await _poll_loop(
        f"validator:{validator.name}",
        lambda: collect_validator_metrics(config, validator, handle, metrics),
        config=config,
        shutdown=shutdown,
        interval_seconds=interval_seconds,
        metrics=metrics,
        log_extra=build_log_extra(config=config, validator=validator),
    )


__all__ = [
    "collect_chain_metrics",
    "collect_validator_metrics",
    "run_chain_metrics_worker",
    "run_validator_metrics_worker",
]
