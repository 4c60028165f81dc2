"""Chain RPC client wrapping substrate-interface storage queries."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import StorageFunctionNotFound, SubstrateRequestException
from websocket import WebSocketConnectionClosedException, WebSocketTimeoutException

from .address import ACCOUNT_ID_LENGTH, encode_address, ss58_decode
from .config import ExporterConfig
from .exceptions import (
    AddressError,
    DecodeError,
    RpcConnectionError,
    RpcError,
    RpcProtocolError,
    RpcTimeoutError,
)
from .logging import build_log_extra, get_logger
from .metrics import (
    MetricsStoreProtocol,
    chain_labels,
    record_rpc_call_duration,
    record_rpc_error,
    record_rpc_request,
)
from .models import EraPointsMap, NominatorSummary

LOGGER = get_logger(__name__)

STAKING_PALLET = "Staking"

T = TypeVar("T")


def _categorize_error(exception: Exception) -> str:
    """Categorize an exception into an error type for metrics.

    Args:
        exception: The exception to categorize.

    Returns:
        The error category: "timeout", "connection_error", "rpc_error", "decode", or "unknown".
    """
    if isinstance(exception, DecodeError):
        return "decode"
    if isinstance(exception, RpcTimeoutError):
        return "timeout"
    if isinstance(exception, RpcConnectionError):
        return "connection_error"
    if isinstance(exception, RpcError):
        return "rpc_error"

    if isinstance(exception, (WebSocketTimeoutException, TimeoutError)):
        return "timeout"

    if isinstance(exception, (WebSocketConnectionClosedException, ConnectionError)):
        return "connection_error"

    if isinstance(exception, (SubstrateRequestException, StorageFunctionNotFound)):
        return "rpc_error"

    exception_type = type(exception).__name__.lower()
    exception_str = str(exception).lower()

    if "timeout" in exception_type or "timed out" in exception_str:
        return "timeout"

    if "connection" in exception_type or "connection" in exception_str:
        return "connection_error"

    if isinstance(exception, OSError):
        return "connection_error"

    return "unknown"


def _wrap_rpc_exception(exception: Exception, endpoint: str, operation: str) -> RpcError:
    """Wrap an exception in an appropriate RpcError subclass.

    Args:
        exception: The exception to wrap.
        endpoint: The RPC endpoint the operation ran against.
        operation: The operation type (e.g., "fetch_current_era").

    Returns:
        An RpcError or appropriate subclass wrapping the original exception.
    """
    if isinstance(exception, RpcError):
        return exception

    error_type = _categorize_error(exception)
    error_message = f"RPC operation '{operation}' failed: {exception}"
    context = {"original_exception": type(exception).__name__}

    if error_type == "timeout":
        return RpcTimeoutError(error_message, endpoint=endpoint, operation=operation, context=context)

    if error_type == "connection_error":
        return RpcConnectionError(error_message, endpoint=endpoint, operation=operation, context=context)

    if error_type == "rpc_error":
        rpc_error_code = None
        rpc_error_message = None

        if isinstance(exception, SubstrateRequestException) and exception.args:
            error_data = exception.args[0]
            if isinstance(error_data, dict):
                rpc_error_code = error_data.get("code")
                rpc_error_message = error_data.get("message")

        return RpcProtocolError(
            error_message,
            endpoint=endpoint,
            operation=operation,
            rpc_error_code=rpc_error_code,
            rpc_error_message=rpc_error_message,
            context=context,
        )

    return RpcError(
        error_message,
        endpoint=endpoint,
        operation=operation,
        context={**context, "error_type": error_type},
    )


def _decode_int(value: Any, storage: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{storage} is not an integer.", storage=storage, value=value)

    return value


def _decode_account_id(value: Any, storage: str) -> bytes:
    if isinstance(value, (bytes, bytearray)) and len(value) == ACCOUNT_ID_LENGTH:
        return bytes(value)

    if isinstance(value, str):
        if value.startswith("0x"):
            try:
                raw = bytes.fromhex(value[2:])
            except ValueError as exc:
                raise DecodeError(f"{storage} holds a malformed account id.", storage=storage, value=value) from exc

            if len(raw) == ACCOUNT_ID_LENGTH:
                return raw
        else:
            try:
                return ss58_decode(value)
            except AddressError as exc:
                raise DecodeError(f"{storage} holds a malformed account id.", storage=storage, value=value) from exc

    raise DecodeError(f"{storage} holds a malformed account id.", storage=storage, value=value)


def decode_active_era(value: Any) -> int:
    storage = "Staking.ActiveEra"

    if isinstance(value, dict) and "index" in value:
        return _decode_int(value["index"], storage)

    raise DecodeError(f"{storage} has an unexpected shape.", storage=storage, value=value)


def decode_era_points(value: Any) -> EraPointsMap:
    storage = "Staking.ErasRewardPoints"

    if not isinstance(value, dict) or "individual" not in value:
        raise DecodeError(f"{storage} has an unexpected shape.", storage=storage, value=value)

    raw_individual = value["individual"]

    if isinstance(raw_individual, dict):
        entries = list(raw_individual.items())
    elif isinstance(raw_individual, (list, tuple)):
        entries = list(raw_individual)
    else:
        raise DecodeError(f"{storage} has an unexpected shape.", storage=storage, value=value)

    individual: dict[bytes, int] = {}

    for entry in entries:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise DecodeError(f"{storage} holds a malformed entry.", storage=storage, value=entry)

        account, points = entry
        individual[_decode_account_id(account, storage)] = _decode_int(points, storage)

    total = _decode_int(value.get("total", sum(individual.values())), storage)

    return EraPointsMap(total=total, individual=individual)


def decode_nominator_summary(value: Any) -> NominatorSummary:
    storage = "Staking.ErasStakersOverview"

    if not isinstance(value, dict) or "total" not in value or "nominator_count" not in value:
        raise DecodeError(f"{storage} has an unexpected shape.", storage=storage, value=value)

    return NominatorSummary(
        total=_decode_int(value["total"], storage),
        nominator_count=_decode_int(value["nominator_count"], storage),
    )


def decode_balance(storage: str) -> Callable[[Any], int]:
    def _decode(value: Any) -> int:
        return _decode_int(value, storage)

    return _decode


@runtime_checkable
class StorageBackendProtocol(Protocol):
    """Subset of `SubstrateInterface` used by the exporter."""

    def query(self, module: str, storage_function: str, params: list[Any] | None = None) -> Any: ...

    def close(self) -> None: ...


@runtime_checkable
class ChainClientProtocol(Protocol):
    @property
    def endpoint(self) -> str: ...

    def fetch_current_era(self) -> int | None: ...

    def fetch_era_points(self, era: int) -> EraPointsMap | None: ...

    def fetch_nominator_summary(self, era: int, account_id: bytes) -> NominatorSummary | None: ...

    def fetch_minimum_active_stake(self) -> int | None: ...

    def fetch_total_stake(self, era: int) -> int | None: ...

    def close(self) -> None: ...


class SubstrateClient:
    """Typed, fallible staking storage lookups against one RPC endpoint.

    Every fetch returns None when the value is absent, when the transport
    fails, or when the stored value cannot be decoded. Failures are logged
    and counted, never raised.

    One websocket session serves all workers. Its request ids and reply
    queue are not thread-safe, so requests on one client are serialized.
    """

    def __init__(
        self,
        substrate: StorageBackendProtocol,
        *,
        endpoint: str,
        config: ExporterConfig,
        metrics: MetricsStoreProtocol | None = None,
    ) -> None:
        self._substrate = substrate
        self._endpoint = endpoint
        self._config = config
        self._labels = chain_labels(config)
        self._metrics = metrics
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def execute_query(
        self,
        operation: str,
        storage_function: str,
        params: list[Any] | None,
        decoder: Callable[[Any], T],
        *,
        era: int | None = None,
    ) -> T | None:
        """Run one storage query and decode its value.

        Returns:
            The decoded value, or None if the storage item is empty, the
            request failed, or the value could not be decoded.
        """
        log_extra = build_log_extra(
            config=self._config,
            endpoint=self._endpoint,
            era=era,
            additional={"operation": operation},
        )

        record_rpc_request(self._labels, self._endpoint, operation, metrics=self._metrics)

        try:
            with self._lock:
                start_time = time.perf_counter()
                result = self._substrate.query(STAKING_PALLET, storage_function, params or [])
        except Exception as exc:  # noqa: BLE001
            wrapped = _wrap_rpc_exception(exc, self._endpoint, operation)
            error_type = _categorize_error(exc)

            record_rpc_error(self._labels, self._endpoint, operation, error_type, metrics=self._metrics)

            LOGGER.warning(
                "RPC operation '%s' failed on %s: %s",
                operation,
                self._endpoint,
                wrapped.message,
                extra={**log_extra, **wrapped.context, "error_type": error_type},
            )

            return None

        record_rpc_call_duration(
            self._labels,
            operation,
            time.perf_counter() - start_time,
            metrics=self._metrics,
        )

        meta_info = getattr(result, "meta_info", None) or {}
        value = getattr(result, "value", None)

        if not meta_info.get("result_found", True) or value is None:
            LOGGER.debug(
                "Storage %s.%s is empty.",
                STAKING_PALLET,
                storage_function,
                extra=log_extra,
            )

            return None

        try:
            return decoder(value)
        except DecodeError as exc:
            record_rpc_error(self._labels, self._endpoint, operation, "decode", metrics=self._metrics)

            LOGGER.warning(
                "Unable to decode %s.%s: %s",
                STAKING_PALLET,
                storage_function,
                exc.message,
                extra={**log_extra, **exc.context, "error_type": "decode"},
            )

            return None

    def fetch_current_era(self) -> int | None:
        return self.execute_query("fetch_current_era", "ActiveEra", None, decode_active_era)

    def fetch_era_points(self, era: int) -> EraPointsMap | None:
        return self.execute_query(
            "fetch_era_points",
            "ErasRewardPoints",
            [era],
            decode_era_points,
            era=era,
        )

    def fetch_nominator_summary(self, era: int, account_id: bytes) -> NominatorSummary | None:
        address = encode_address(self._config.network, account_id)

        return self.execute_query(
            "fetch_nominator_summary",
            "ErasStakersOverview",
            [era, address],
            decode_nominator_summary,
            era=era,
        )

    def fetch_minimum_active_stake(self) -> int | None:
        return self.execute_query(
            "fetch_minimum_active_stake",
            "MinimumActiveStake",
            None,
            decode_balance("Staking.MinimumActiveStake"),
        )

    def fetch_total_stake(self, era: int) -> int | None:
        return self.execute_query(
            "fetch_total_stake",
            "ErasTotalStake",
            [era],
            decode_balance("Staking.ErasTotalStake"),
            era=era,
        )

    def close(self) -> None:
        try:
            with self._lock:
                self._substrate.close()
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug(
                "Error while closing connection to %s: %s",
                self._endpoint,
                exc,
                extra=build_log_extra(config=self._config, endpoint=self._endpoint),
            )


def connect(
    endpoint: str,
    config: ExporterConfig,
    *,
    timeout_seconds: float,
    metrics: MetricsStoreProtocol | None = None,
) -> SubstrateClient:
    """Open a connection to ``endpoint`` and load its runtime metadata.

    The returned client is ready to serve queries. It never reconnects on
    its own; a dropped session surfaces as failed fetches and endpoint
    selection stays with the connection manager.

    Raises:
        RpcConnectionError: If the endpoint is unreachable or the handshake fails.
    """
    try:
        substrate = SubstrateInterface(
            url=endpoint,
            ss58_format=config.network.prefix,
            ws_options={"timeout": timeout_seconds},
            auto_reconnect=False,
        )
        substrate.init_runtime()
    except Exception as exc:  # noqa: BLE001
        raise RpcConnectionError(
            f"Unable to connect to RPC endpoint: {exc}",
            endpoint=endpoint,
            operation="connect",
            context={"original_exception": type(exc).__name__},
        ) from exc

    return SubstrateClient(substrate, endpoint=endpoint, config=config, metrics=metrics)


__all__ = [
    "ChainClientProtocol",
    "STAKING_PALLET",
    "StorageBackendProtocol",
    "SubstrateClient",
    "_categorize_error",
    "_wrap_rpc_exception",
    "connect",
    "decode_active_era",
    "decode_balance",
    "decode_era_points",
    "decode_nominator_summary",
]
