"""Environment settings and the parsed TOML file, resolved together."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .config import ExporterConfig, load_exporter_config, resolve_config_path
from .settings import AppSettings, get_settings


@dataclass(slots=True)
class RuntimeSettings:
    app: AppSettings
    config: ExporterConfig
    config_path: Path


@lru_cache(maxsize=1)
def get_runtime_settings(*, config_path: Path | None = None) -> RuntimeSettings:
    """Resolve the config location from the environment unless ``config_path`` is given, then load it.

    The result is cached; configuration is read once per process.
    """

    app_settings = get_settings()
    path = config_path or resolve_config_path(app_settings)

    return RuntimeSettings(app=app_settings, config=load_exporter_config(path), config_path=path)


def reset_runtime_settings_cache() -> None:
    get_runtime_settings.cache_clear()


__all__ = [
    "RuntimeSettings",
    "get_runtime_settings",
    "reset_runtime_settings_cache",
]
