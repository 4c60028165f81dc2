"""Process-wide wiring of settings, metrics, the connection handle and the client factory.

Tests swap the whole bundle with ``set_application_context``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from .config import ExporterConfig
from .metrics import MetricsStoreProtocol, get_metrics
from .poller.connection import ConnectionHandle, ShutdownSignal
from .rpc import ChainClientProtocol, connect
from .runtime_settings import RuntimeSettings, get_runtime_settings
from .settings import AppSettings


@dataclass(slots=True)
class ApplicationContext:
    metrics: MetricsStoreProtocol
    runtime: RuntimeSettings
    client_factory: Callable[[ExporterConfig, str], ChainClientProtocol]
    handle: ConnectionHandle = field(default_factory=ConnectionHandle)
    shutdown: ShutdownSignal = field(default_factory=ShutdownSignal)

    def create_client(self, endpoint: str) -> ChainClientProtocol:
        return self.client_factory(self.config, endpoint)

    @property
    def settings(self) -> AppSettings:
        return self.runtime.app

    @property
    def config(self) -> ExporterConfig:
        return self.runtime.config


def default_client_factory(config: ExporterConfig, endpoint: str) -> ChainClientProtocol:
    """Open a `SubstrateClient` against ``endpoint``."""

    from .poller.intervals import RPC_REQUEST_TIMEOUT_SECONDS

    return connect(endpoint, config, timeout_seconds=RPC_REQUEST_TIMEOUT_SECONDS)


def create_default_context() -> ApplicationContext:
    """Load the TOML file and wire it to the global metrics bundle.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigError: If it cannot be parsed or fails validation.
    """

    return ApplicationContext(
        metrics=get_metrics(),
        runtime=get_runtime_settings(),
        client_factory=default_client_factory,
    )


_APPLICATION_CONTEXT: ApplicationContext | None = None


def get_application_context() -> ApplicationContext:
    """Return the cached context, building it on first access."""

    global _APPLICATION_CONTEXT

    if _APPLICATION_CONTEXT is None:
        _APPLICATION_CONTEXT = create_default_context()

    return _APPLICATION_CONTEXT


def peek_application_context() -> ApplicationContext | None:
    """Return the cached context or None; never loads configuration."""

    return _APPLICATION_CONTEXT


def set_application_context(context: ApplicationContext | None) -> None:
    global _APPLICATION_CONTEXT

    _APPLICATION_CONTEXT = context


def reset_application_context() -> None:
    """Drop the cached context; the next ``get_application_context`` rebuilds it."""

    set_application_context(None)


__all__ = [
    "ApplicationContext",
    "create_default_context",
    "default_client_factory",
    "get_application_context",
    "peek_application_context",
    "reset_application_context",
    "set_application_context",
]
