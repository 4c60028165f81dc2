"""RPC availability management with primary/backup endpoint failover."""

from __future__ import annotations

import asyncio
import threading
from enum import Enum
from typing import Callable

from ..config import ExporterConfig
from ..exceptions import RpcError
from ..logging import build_log_extra, get_logger
from ..metrics import MetricsStoreProtocol, chain_labels, record_rpc_health
from ..rpc import ChainClientProtocol

LOGGER = get_logger(__name__)

ClientFactory = Callable[[str], ChainClientProtocol]


class ConnectionHandle:
    """Shared reference to the currently published chain client.

    The manager is the only writer; workers take a snapshot with `get()` and
    use it after the lock is released, so swapping or clearing the handle
    never affects a request already in flight.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._client: ChainClientProtocol | None = None

    def get(self) -> ChainClientProtocol | None:
        with self._lock:
            return self._client

    def publish(self, client: ChainClientProtocol) -> None:
        with self._lock:
            self._client = client

    def clear(self) -> ChainClientProtocol | None:
        """Empty the handle and return the client it held."""
        with self._lock:
            previous, self._client = self._client, None

        return previous

    @property
    def is_connected(self) -> bool:
        return self.get() is not None


class ShutdownSignal:
    """Process-wide, write-once shutdown flag with interruptible waits."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._triggered = False
        self._event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._triggered

    def trigger(self) -> None:
        """Set the flag and wake every pending `wait()`. Safe from any thread."""
        with self._lock:
            if self._triggered:
                return

            self._triggered = True
            event, loop = self._event, self._loop

        if event is None or loop is None:
            return

        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is loop:
            event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    def _get_event(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()

        with self._lock:
            if self._event is None or self._loop is not loop:
                self._event = asyncio.Event()
                self._loop = loop

                if self._triggered:
                    self._event.set()

            return self._event

    async def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``, returning early once shutdown is triggered.

        Returns:
            True if shutdown has been triggered.
        """
        if self.is_set:
            return True

        event = self._get_event()

        try:
            await asyncio.wait_for(event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            pass

        return self.is_set


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SHUTDOWN = "shutdown"


class ConnectionManager:
    """Keeps exactly one healthy client published while an endpoint is reachable.

    Starts on the primary endpoint and switches to the other endpoint after
    every failed connect or failed liveness probe. Every failure is followed
    by a reconnect backoff wait.
    """

    def __init__(
        self,
        config: ExporterConfig,
        handle: ConnectionHandle,
        shutdown: ShutdownSignal,
        *,
        client_factory: ClientFactory,
        health_check_interval: float,
        reconnect_backoff: float,
        metrics: MetricsStoreProtocol | None = None,
    ) -> None:
        self._config = config
        self._handle = handle
        self._shutdown = shutdown
        self._client_factory = client_factory
        self._health_check_interval = health_check_interval
        self._reconnect_backoff = reconnect_backoff
        self._metrics = metrics
        self._labels = chain_labels(config)
        self._use_backup = False
        self._retired: list[ChainClientProtocol] = []

        self.state = ConnectionState.DISCONNECTED
        self.connect_attempts = 0

    @property
    def active_endpoint(self) -> str:
        return self._config.backup_rpc_url if self._use_backup else self._config.rpc_url

    def _switch_endpoint(self) -> None:
        self._use_backup = not self._use_backup

    async def run(self) -> None:
        """Run the connect / monitor / failover loop until shutdown."""

        LOGGER.info(
            "Starting RPC connection manager (primary %s, backup %s).",
            self._config.rpc_url,
            self._config.backup_rpc_url,
            extra=build_log_extra(config=self._config),
        )

        try:
            while not self._shutdown.is_set:
                await self._close_retired()

                endpoint = self.active_endpoint
                client = await self._connect(endpoint)

                if client is None:
                    record_rpc_health(self._labels, endpoint, False, metrics=self._metrics)
                    self._switch_endpoint()
                    await self._shutdown.wait(self._reconnect_backoff)
                    continue

                self._handle.publish(client)
                self.state = ConnectionState.CONNECTED
                record_rpc_health(self._labels, endpoint, True, metrics=self._metrics)

                LOGGER.info(
                    "RPC connected: %s",
                    endpoint,
                    extra=build_log_extra(config=self._config, endpoint=endpoint),
                )

                probe_failed = await self._monitor(endpoint)

                self._retire(self._handle.clear())

                if not probe_failed:
                    break

                record_rpc_health(self._labels, endpoint, False, metrics=self._metrics)
                self.state = ConnectionState.DISCONNECTED
                self._switch_endpoint()
                await self._shutdown.wait(self._reconnect_backoff)
        finally:
            self._retire(self._handle.clear())
            await self._close_retired()
            self.state = ConnectionState.SHUTDOWN

            LOGGER.info(
                "RPC connection manager shutting down.",
                extra=build_log_extra(config=self._config),
            )

    async def _connect(self, endpoint: str) -> ChainClientProtocol | None:
        self.connect_attempts += 1

        LOGGER.info(
            "Connecting to RPC: %s",
            endpoint,
            extra=build_log_extra(
                config=self._config,
                endpoint=endpoint,
                additional={"attempt": self.connect_attempts},
            ),
        )

        try:
            return await asyncio.to_thread(self._client_factory, endpoint)
        except RpcError as exc:
            LOGGER.warning(
                "RPC connection failed (%s): %s, retrying...",
                endpoint,
                exc.message,
                extra=build_log_extra(config=self._config, endpoint=endpoint, additional=exc.context),
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Unexpected error while connecting to %s, retrying...",
                endpoint,
                exc_info=exc,
                extra=build_log_extra(config=self._config, endpoint=endpoint),
            )

        return None

    async def _monitor(self, endpoint: str) -> bool:
        """Probe the published client until it fails or shutdown is triggered.

        Returns:
            True if a probe failed, False if the loop ended because of shutdown.
        """
        while True:
            if await self._shutdown.wait(self._health_check_interval):
                return False

            healthy = await asyncio.to_thread(self._probe)

            if not healthy:
                LOGGER.warning(
                    "RPC unhealthy: %s",
                    endpoint,
                    extra=build_log_extra(config=self._config, endpoint=endpoint),
                )

                return True

    def _probe(self) -> bool:
        client = self._handle.get()

        if client is None:
            return False

        try:
            return client.fetch_current_era() is not None
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning(
                "Liveness probe raised for %s.",
                client.endpoint,
                exc_info=exc,
                extra=build_log_extra(config=self._config, endpoint=client.endpoint),
            )

            return False

    def _retire(self, client: ChainClientProtocol | None) -> None:
        # Retired clients stay open until the next connect attempt; workers
        # may still hold a snapshot of them.
        if client is not None:
            self._retired.append(client)

    async def _close_retired(self) -> None:
        while self._retired:
            client = self._retired.pop()
            await asyncio.to_thread(client.close)


__all__ = [
    "ClientFactory",
    "ConnectionHandle",
    "ConnectionManager",
    "ConnectionState",
    "ShutdownSignal",
]
