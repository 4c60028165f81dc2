from __future__ import annotations

import logging
import threading
import time
from types import SimpleNamespace
from typing import Any

import pytest
from substrateinterface.exceptions import SubstrateRequestException
from websocket import WebSocketConnectionClosedException, WebSocketTimeoutException

import substratheus.rpc as rpc_module
from substratheus.config import ExporterConfig
from substratheus.exceptions import (
    DecodeError,
    RpcConnectionError,
    RpcError,
    RpcProtocolError,
    RpcTimeoutError,
)
from substratheus.metrics import get_metrics
from substratheus.models import EraPointsMap, NominatorSummary
from substratheus.rpc import (
    SubstrateClient,
    _categorize_error,
    _wrap_rpc_exception,
    decode_active_era,
    decode_era_points,
    decode_nominator_summary,
)

from conftest import ALICE_ACCOUNT_ID, ALICE_POLKADOT, BOB_ACCOUNT_ID

ENDPOINT = "wss://primary.example"


class FakeSubstrate:
    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses or {}
        self.calls: list[tuple[str, str, list[Any]]] = []
        self.closed = False

    def query(self, module: str, storage_function: str, params: list[Any] | None = None) -> Any:
        self.calls.append((module, storage_function, list(params or [])))

        response = self.responses.get(storage_function)

        if isinstance(response, Exception):
            raise response

        if response is None:
            return SimpleNamespace(value=None, meta_info={"result_found": False})

        return SimpleNamespace(value=response, meta_info={"result_found": True})

    def close(self) -> None:
        self.closed = True


def _client(config: ExporterConfig, responses: dict[str, Any] | None = None) -> tuple[SubstrateClient, FakeSubstrate]:
    substrate = FakeSubstrate(responses)
    return SubstrateClient(substrate, endpoint=ENDPOINT, config=config), substrate


def _error_count(operation: str, error_type: str) -> float | None:
    return get_metrics().registry.get_sample_value(
        "substratheus_rpc_errors_total",
        {
            "network": "polkadot",
            "chain": "polkadot",
            "endpoint": ENDPOINT,
            "operation": operation,
            "error_type": error_type,
        },
    )


@pytest.mark.parametrize(
    ("exception", "expected"),
    [
        (DecodeError("bad", storage="Staking.ActiveEra"), "decode"),
        (RpcTimeoutError("slow", endpoint=ENDPOINT, operation="op"), "timeout"),
        (RpcConnectionError("down", endpoint=ENDPOINT, operation="op"), "connection_error"),
        (RpcProtocolError("proto", endpoint=ENDPOINT, operation="op"), "rpc_error"),
        (WebSocketTimeoutException("timed out"), "timeout"),
        (TimeoutError(), "timeout"),
        (WebSocketConnectionClosedException("closed"), "connection_error"),
        (ConnectionRefusedError(), "connection_error"),
        (SubstrateRequestException({"code": -32000, "message": "boom"}), "rpc_error"),
        (RuntimeError("request timed out"), "timeout"),
        (ValueError("something else"), "unknown"),
    ],
)
def test_categorize_error(exception: Exception, expected: str) -> None:
    assert _categorize_error(exception) == expected


def test_wrap_rpc_exception_maps_subclasses() -> None:
    assert isinstance(_wrap_rpc_exception(TimeoutError(), ENDPOINT, "op"), RpcTimeoutError)
    assert isinstance(_wrap_rpc_exception(ConnectionResetError(), ENDPOINT, "op"), RpcConnectionError)

    wrapped = _wrap_rpc_exception(
        SubstrateRequestException({"code": -32000, "message": "boom"}),
        ENDPOINT,
        "fetch_current_era",
    )

    assert isinstance(wrapped, RpcProtocolError)
    assert wrapped.rpc_error_code == -32000
    assert wrapped.rpc_error_message == "boom"
    assert wrapped.endpoint == ENDPOINT
    assert wrapped.operation == "fetch_current_era"


def test_wrap_rpc_exception_keeps_rpc_errors() -> None:
    original = RpcError("already wrapped", endpoint=ENDPOINT, operation="op")

    assert _wrap_rpc_exception(original, ENDPOINT, "op") is original


def test_decode_active_era() -> None:
    assert decode_active_era({"index": 1234, "start": 1_700_000_000_000}) == 1234

    with pytest.raises(DecodeError):
        decode_active_era(1234)

    with pytest.raises(DecodeError):
        decode_active_era({"index": "1234"})


def test_decode_era_points_accepts_ss58_and_hex_accounts() -> None:
    value = {
        "total": 120,
        "individual": [
            (ALICE_POLKADOT, 80),
            ("0x" + BOB_ACCOUNT_ID.hex(), 40),
        ],
    }

    era_points = decode_era_points(value)

    assert era_points.total == 120
    assert era_points.points_for(ALICE_ACCOUNT_ID) == 80
    assert era_points.points_for(BOB_ACCOUNT_ID) == 40


def test_decode_era_points_accepts_mapping() -> None:
    era_points = decode_era_points({"total": 5, "individual": {ALICE_ACCOUNT_ID: 5}})

    assert era_points.points_for(ALICE_ACCOUNT_ID) == 5


@pytest.mark.parametrize(
    "value",
    [
        {"total": 1},
        {"total": 1, "individual": [("not-an-address", 1)]},
        {"total": 1, "individual": [(ALICE_POLKADOT,)]},
        {"total": 1, "individual": 7},
    ],
)
def test_decode_era_points_rejects_malformed(value: Any) -> None:
    with pytest.raises(DecodeError):
        decode_era_points(value)


def test_decode_nominator_summary() -> None:
    summary = decode_nominator_summary({"total": 10**12, "own": 0, "nominator_count": 3, "page_count": 1})

    assert summary == NominatorSummary(total=10**12, nominator_count=3)

    with pytest.raises(DecodeError):
        decode_nominator_summary({"total": 1})


def test_fetch_current_era_returns_index(exporter_config: ExporterConfig) -> None:
    client, substrate = _client(exporter_config, {"ActiveEra": {"index": 1500, "start": None}})

    assert client.fetch_current_era() == 1500
    assert substrate.calls == [("Staking", "ActiveEra", [])]


def test_absent_storage_returns_none_without_error(exporter_config: ExporterConfig) -> None:
    client, _ = _client(exporter_config)

    assert client.fetch_era_points(10) is None
    assert client.fetch_minimum_active_stake() is None
    assert _error_count("fetch_era_points", "decode") is None


def test_decode_failure_returns_none_and_counts_error(
    exporter_config: ExporterConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)

    client, _ = _client(exporter_config, {"ActiveEra": {"unexpected": True}})

    assert client.fetch_current_era() is None
    assert _error_count("fetch_current_era", "decode") == 1

    decode_records = [record for record in caplog.records if getattr(record, "error_type", None) == "decode"]

    assert decode_records
    assert decode_records[0].levelno == logging.WARNING


def test_transport_failure_returns_none_and_counts_error(exporter_config: ExporterConfig) -> None:
    client, _ = _client(exporter_config, {"ErasTotalStake": WebSocketConnectionClosedException("closed")})

    assert client.fetch_total_stake(99) is None
    assert _error_count("fetch_total_stake", "connection_error") == 1


def test_requests_are_counted(exporter_config: ExporterConfig) -> None:
    client, _ = _client(exporter_config, {"MinimumActiveStake": 5 * 10**10})

    assert client.fetch_minimum_active_stake() == 5 * 10**10

    count = get_metrics().registry.get_sample_value(
        "substratheus_rpc_requests_total",
        {
            "network": "polkadot",
            "chain": "polkadot",
            "endpoint": ENDPOINT,
            "operation": "fetch_minimum_active_stake",
        },
    )

    assert count == 1


def test_fetch_nominator_summary_passes_network_address(exporter_config: ExporterConfig) -> None:
    client, substrate = _client(
        exporter_config,
        {"ErasStakersOverview": {"total": 42, "own": 0, "nominator_count": 2, "page_count": 1}},
    )

    summary = client.fetch_nominator_summary(100, ALICE_ACCOUNT_ID)

    assert summary == NominatorSummary(total=42, nominator_count=2)
    assert substrate.calls == [("Staking", "ErasStakersOverview", [100, ALICE_POLKADOT])]


def test_fetch_era_points_returns_map(exporter_config: ExporterConfig) -> None:
    client, substrate = _client(
        exporter_config,
        {"ErasRewardPoints": {"total": 20, "individual": [(ALICE_POLKADOT, 20)]}},
    )

    era_points = client.fetch_era_points(7)

    assert isinstance(era_points, EraPointsMap)
    assert era_points.points_for(ALICE_ACCOUNT_ID) == 20
    assert substrate.calls == [("Staking", "ErasRewardPoints", [7])]


def test_close_swallows_backend_errors(exporter_config: ExporterConfig) -> None:
    class _Broken(FakeSubstrate):
        def close(self) -> None:
            raise OSError("already closed")

    client = SubstrateClient(_Broken(), endpoint=ENDPOINT, config=exporter_config)

    client.close()


def test_concurrent_fetches_are_serialized(exporter_config: ExporterConfig) -> None:
    class _SingleSession(FakeSubstrate):
        def __init__(self) -> None:
            super().__init__({"ActiveEra": {"index": 1000}})
            self.in_flight = 0
            self.max_in_flight = 0
            self._counter_lock = threading.Lock()

        def query(self, module: str, storage_function: str, params: list[Any] | None = None) -> Any:
            with self._counter_lock:
                self.in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self.in_flight)

            time.sleep(0.001)

            try:
                return super().query(module, storage_function, params)
            finally:
                with self._counter_lock:
                    self.in_flight -= 1

    substrate = _SingleSession()
    client = SubstrateClient(substrate, endpoint=ENDPOINT, config=exporter_config)
    results: list[int | None] = []
    results_lock = threading.Lock()

    def _worker() -> None:
        for _ in range(20):
            era = client.fetch_current_era()

            with results_lock:
                results.append(era)

    threads = [threading.Thread(target=_worker) for _ in range(12)]

    for thread in threads:
        thread.start()

    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 240
    assert results.count(1000) == 240
    assert substrate.max_in_flight == 1


def test_fetch_on_closed_client_returns_none_without_reconnecting(exporter_config: ExporterConfig) -> None:
    class _ClosingSession(FakeSubstrate):
        def __init__(self) -> None:
            super().__init__({"ActiveEra": {"index": 1000}})
            self.reconnects = 0

        def query(self, module: str, storage_function: str, params: list[Any] | None = None) -> Any:
            if self.closed:
                raise WebSocketConnectionClosedException("socket is already closed.")

            return super().query(module, storage_function, params)

        def connect_websocket(self) -> None:
            self.reconnects += 1

    substrate = _ClosingSession()
    client = SubstrateClient(substrate, endpoint=ENDPOINT, config=exporter_config)

    assert client.fetch_current_era() == 1000

    client.close()

    assert client.fetch_current_era() is None
    assert substrate.reconnects == 0
    assert _error_count("fetch_current_era", "connection_error") == 1


def test_connect_wraps_failures(monkeypatch: pytest.MonkeyPatch, exporter_config: ExporterConfig) -> None:
    def _raise(**kwargs: Any) -> None:
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(rpc_module, "SubstrateInterface", _raise)

    with pytest.raises(RpcConnectionError) as exc_info:
        rpc_module.connect(ENDPOINT, exporter_config, timeout_seconds=1.0)

    assert exc_info.value.endpoint == ENDPOINT
    assert exc_info.value.operation == "connect"


def test_connect_initializes_runtime(monkeypatch: pytest.MonkeyPatch, exporter_config: ExporterConfig) -> None:
    created: dict[str, Any] = {}

    class _Interface(FakeSubstrate):
        def __init__(self, **kwargs: Any) -> None:
            super().__init__()
            created.update(kwargs)
            self.runtime_loaded = False

        def init_runtime(self) -> None:
            self.runtime_loaded = True

    monkeypatch.setattr(rpc_module, "SubstrateInterface", _Interface)

    client = rpc_module.connect(ENDPOINT, exporter_config, timeout_seconds=3.0)

    assert client.endpoint == ENDPOINT
    assert created == {
        "url": ENDPOINT,
        "ss58_format": 0,
        "ws_options": {"timeout": 3.0},
        "auto_reconnect": False,
    }
