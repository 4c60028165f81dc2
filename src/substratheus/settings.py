"""Process settings read from environment variables.

These cover how the exporter runs (logging, intervals, listen ports, where
the TOML file lives); what it monitors comes from the TOML file itself.
Unparseable values fall back to their defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)

    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)

    try:
        return float(raw) if raw is not None else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    """Read a yes/no flag; values outside the known spellings keep ``default``."""
    raw = (os.getenv(name) or "").strip().lower()

    if raw in _TRUTHY:
        return True

    if raw in _FALSY:
        return False

    return default


@dataclass(slots=True)
class LoggingSettings:
    level: str
    format: str
    color_enabled: bool


@dataclass(slots=True)
class PollerSettings:
    """Cadences are kept as raw duration strings and parsed by ``poller.intervals``."""

    scrape_interval: str
    health_check_interval: str
    reconnect_backoff: str
    rpc_request_timeout_seconds: float
    shutdown_timeout_seconds: float


@dataclass(slots=True)
class ServerSettings:
    host: str
    health_port: int
    metrics_port: int


@dataclass(slots=True)
class ConfigSettings:
    config_path_env: str | None
    default_config_filename: str

    def resolve_config_path(self) -> Path:
        """Locate the TOML file.

        ``SUBSTRATHEUS_CONFIG_PATH`` may name the file or the directory that
        holds ``config.toml``; without it the working directory is used.
        """
        if not self.config_path_env:
            return (Path.cwd() / self.default_config_filename).resolve()

        location = Path(self.config_path_env).expanduser().resolve()

        return location / self.default_config_filename if location.is_dir() else location


@dataclass(slots=True)
class AppSettings:
    logging: LoggingSettings
    poller: PollerSettings
    server: ServerSettings
    config: ConfigSettings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings(
        logging=LoggingSettings(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "text").lower(),
            color_enabled=_env_bool("LOG_COLOR_ENABLED", True),
        ),
        poller=PollerSettings(
            scrape_interval=os.getenv("SCRAPE_INTERVAL", "15s"),
            health_check_interval=os.getenv("HEALTH_CHECK_INTERVAL", "10s"),
            reconnect_backoff=os.getenv("RECONNECT_BACKOFF", "5s"),
            rpc_request_timeout_seconds=_env_float("RPC_REQUEST_TIMEOUT_SECONDS", 10.0),
            shutdown_timeout_seconds=_env_float("SHUTDOWN_TIMEOUT_SECONDS", 5.0),
        ),
        server=ServerSettings(
            host=os.getenv("SERVER_HOST", "0.0.0.0"),
            health_port=_env_int("HEALTH_PORT", 8080),
            metrics_port=_env_int("METRICS_PORT", 9100),
        ),
        config=ConfigSettings(
            config_path_env=os.getenv("SUBSTRATHEUS_CONFIG_PATH"),
            default_config_filename="config.toml",
        ),
    )


__all__ = ["AppSettings", "get_settings"]
