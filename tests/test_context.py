"""Tests for context helper functions."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

import substratheus.runtime_settings as runtime_settings_module
from substratheus.config import ExporterConfig
from substratheus.context import (
    ApplicationContext,
    create_default_context,
    default_client_factory,
    get_application_context,
    peek_application_context,
    reset_application_context,
    set_application_context,
)
from substratheus.metrics import get_metrics
from substratheus.poller.intervals import RPC_REQUEST_TIMEOUT_SECONDS
from substratheus.runtime_settings import RuntimeSettings, get_runtime_settings

from conftest import ALICE_POLKADOT


def _write_config(path: Path) -> Path:
    config_file = path.joinpath("config.toml")
    config_file.write_text(
        f"""
        network = "polkadot"
        chain = "polkadot"
        rpc_url = "wss://primary.example"
        backup_rpc_url = "wss://backup.example"

        [[validators]]
        name = "alice"
        address = "{ALICE_POLKADOT}"
        """,
        encoding="utf-8",
    )
    return config_file


def test_default_client_factory_uses_request_timeout(exporter_config: ExporterConfig) -> None:
    captured: dict[str, Any] = {}

    def _connect(endpoint: str, config: ExporterConfig, *, timeout_seconds: float) -> str:
        captured.update(endpoint=endpoint, config=config, timeout_seconds=timeout_seconds)
        return "client"

    with patch("substratheus.context.connect", _connect):
        client = default_client_factory(exporter_config, "wss://backup.example")

    assert client == "client"
    assert captured == {
        "endpoint": "wss://backup.example",
        "config": exporter_config,
        "timeout_seconds": RPC_REQUEST_TIMEOUT_SECONDS,
    }


def test_create_client_passes_config(exporter_config: ExporterConfig) -> None:
    calls: list[tuple[ExporterConfig, str]] = []

    context = ApplicationContext(
        metrics=get_metrics(),
        runtime=RuntimeSettings(app=runtime_settings_module.get_settings(), config=exporter_config, config_path=Path("config.toml")),
        client_factory=lambda config, endpoint: calls.append((config, endpoint)),
    )

    context.create_client("wss://primary.example")

    assert calls == [(exporter_config, "wss://primary.example")]
    assert context.config is exporter_config
    assert context.handle.get() is None
    assert context.shutdown.is_set is False


def test_get_runtime_settings_loads_config(tmp_path: Path) -> None:
    config_file = _write_config(tmp_path)

    runtime = get_runtime_settings(config_path=config_file)

    assert runtime.config_path == config_file
    assert runtime.config.validators[0].name == "alice"
    assert get_runtime_settings(config_path=config_file) is runtime


def test_create_default_context_uses_runtime_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = _write_config(tmp_path)

    monkeypatch.setattr(runtime_settings_module, "resolve_config_path", lambda _settings: config_file)

    context = create_default_context()

    assert context.config.chain == "polkadot"
    assert context.client_factory is default_client_factory
    assert context.metrics is get_metrics()


def test_get_application_context_caches_and_resets(exporter_config: ExporterConfig) -> None:
    assert peek_application_context() is None

    context = ApplicationContext(
        metrics=get_metrics(),
        runtime=RuntimeSettings(app=runtime_settings_module.get_settings(), config=exporter_config, config_path=Path("config.toml")),
        client_factory=default_client_factory,
    )

    set_application_context(context)

    assert get_application_context() is context
    assert peek_application_context() is context

    reset_application_context()

    assert peek_application_context() is None


def test_get_application_context_propagates_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        runtime_settings_module,
        "resolve_config_path",
        lambda _settings: tmp_path.joinpath("absent.toml"),
    )

    with pytest.raises(FileNotFoundError):
        get_application_context()

    assert peek_application_context() is None
