"""Owns the background tasks shared by the health and metrics apps."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

from fastapi import FastAPI

from ..logging import build_log_extra, get_logger
from ..metrics import update_poller_task_count
from . import control as poller_control
from .connection import ConnectionManager
from .intervals import (
    determine_health_check_interval_seconds,
    determine_reconnect_backoff_seconds,
    determine_scrape_interval_seconds,
)

if TYPE_CHECKING:
    from ..context import ApplicationContext

LOGGER = get_logger(__name__)


class PollerManager:
    """Starts the connection manager and workers once per process.

    Both FastAPI apps run the same lifespan. The first app to call
    ``create_tasks`` becomes ``primary_app`` and is the only one allowed to
    stop the tasks again.
    """

    def __init__(self) -> None:
        self.tasks_created: bool = False
        self.polling_tasks: list[asyncio.Task] = []
        self.primary_app: FastAPI | None = None
        self.connection_manager: ConnectionManager | None = None
        self._context: ApplicationContext | None = None
        self._lock = threading.Lock()

    def create_tasks(self, context: ApplicationContext, app: FastAPI) -> list[asyncio.Task]:
        """Spawn the connection manager, the chain worker and a worker per validator.

        Later calls return a copy of the tasks started by the first one.
        """
        with self._lock:
            if self.tasks_created:
                LOGGER.debug(
                    "Workers already running; sharing %d task(s) with this app",
                    len(self.polling_tasks),
                    extra=build_log_extra(additional={"existing_task_count": len(self.polling_tasks)}),
                )
                return self.polling_tasks.copy()

            self.tasks_created = True
            self.primary_app = app
            self._context = context

            config = context.config
            scrape_interval = determine_scrape_interval_seconds()

            self.connection_manager = ConnectionManager(
                config,
                context.handle,
                context.shutdown,
                client_factory=context.create_client,
                health_check_interval=determine_health_check_interval_seconds(),
                reconnect_backoff=determine_reconnect_backoff_seconds(),
                metrics=context.metrics,
            )

            self.polling_tasks = [
                asyncio.create_task(self.connection_manager.run(), name="rpc-connection-manager"),
                asyncio.create_task(
                    poller_control.run_chain_metrics_worker(
                        config,
                        context.handle,
                        context.shutdown,
                        interval_seconds=scrape_interval,
                        metrics=context.metrics,
                    ),
                    name="chain-metrics-worker",
                ),
            ]

            for validator in config.validators:
                self.polling_tasks.append(
                    asyncio.create_task(
                        poller_control.run_validator_metrics_worker(
                            config,
                            validator,
                            context.handle,
                            context.shutdown,
                            interval_seconds=scrape_interval,
                            metrics=context.metrics,
                        ),
                        name=f"validator-metrics-worker:{validator.name}",
                    )
                )

            update_poller_task_count(len(self.polling_tasks), metrics=context.metrics)

            LOGGER.debug(
                "Created %d polling task(s) for %d validator(s)",
                len(self.polling_tasks),
                len(config.validators),
                extra=build_log_extra(
                    config=config,
                    additional={"task_count": len(self.polling_tasks)},
                ),
            )

            return self.polling_tasks.copy()

    def should_cleanup(self, app: FastAPI) -> bool:
        """True only for the app that started the tasks."""
        with self._lock:
            return self.tasks_created and self.primary_app is app

    async def shutdown_tasks(self, timeout_seconds: float = 30.0) -> None:
        """Signal shutdown and give the loops ``timeout_seconds`` to return.

        Loops are stopped by the shutdown signal rather than by cancellation so
        an in-flight cycle can finish; whatever is still running at the
        deadline is cancelled.
        """
        with self._lock:
            context = self._context
            tasks = [task for task in self.polling_tasks if not task.done()]
            self.polling_tasks = []

        if context is not None:
            context.shutdown.trigger()

        if not tasks:
            self._update_task_count(context, 0)
            return

        LOGGER.debug(
            "Waiting for %d worker task(s) to return",
            len(tasks),
            extra=build_log_extra(additional={"task_count": len(tasks)}),
        )

        _done, pending = await asyncio.wait(tasks, timeout=timeout_seconds)

        if pending:
            LOGGER.warning(
                "%d worker task(s) still running after %ss; cancelling",
                len(pending),
                timeout_seconds,
                extra=build_log_extra(additional={"timeout_seconds": timeout_seconds}),
            )

            for task in pending:
                task.cancel()

            await asyncio.gather(*pending, return_exceptions=True)

        self._update_task_count(context, 0)

        LOGGER.debug(
            "Workers stopped",
            extra=build_log_extra(additional={"stopped_count": len(tasks)}),
        )

    @staticmethod
    def _update_task_count(context: ApplicationContext | None, count: int) -> None:
        update_poller_task_count(count, metrics=context.metrics if context is not None else None)

    def get_active_task_count(self) -> int:
        with self._lock:
            return sum(1 for task in self.polling_tasks if not task.done())

    def reset(self) -> None:
        """Forget the tasks and the owning app without touching the tasks themselves."""
        with self._lock:
            self.tasks_created = False
            self.polling_tasks = []
            self.primary_app = None
            self.connection_manager = None
            self._context = None


_poller_manager: PollerManager | None = None
_manager_lock = threading.Lock()


def get_poller_manager() -> PollerManager:
    """Process-wide manager, created on first use."""
    global _poller_manager

    with _manager_lock:
        if _poller_manager is None:
            _poller_manager = PollerManager()

        return _poller_manager


def reset_poller_manager() -> None:
    """Reset the process-wide manager if one exists."""
    global _poller_manager

    with _manager_lock:
        if _poller_manager is not None:
            _poller_manager.reset()


__all__ = [
    "PollerManager",
    "get_poller_manager",
    "reset_poller_manager",
]
