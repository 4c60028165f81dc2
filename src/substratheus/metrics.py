"""Prometheus metric registry and helpers for staking exporter state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from .models import Labels

if TYPE_CHECKING:
    from .config import ExporterConfig

METRICS_PREFIX = "substratheus"

LABEL_NAMES = ("network", "chain", "validator_name", "validator_address")

CHAIN_METRIC_NAMES = ("era", "minimum_active_stake", "average_stake", "rpc_health")

VALIDATOR_METRIC_NAMES = ("active", "era_points", "nominator_stake", "nominator_count")


@dataclass(slots=True)
class ExporterMetrics:
    up: Gauge
    configured_validators: Gauge
    poller_tasks: Gauge


@dataclass(slots=True)
class ChainMetrics:
    era: Gauge
    minimum_active_stake: Gauge
    average_stake: Gauge
    rpc_health: Gauge


@dataclass(slots=True)
class ValidatorMetrics:
    active: Gauge
    era_points: Gauge
    nominator_stake: Gauge
    nominator_count: Gauge


@dataclass(slots=True)
class RpcMetrics:
    requests: Counter
    errors: Counter
    call_duration: Histogram
    endpoint_up: Gauge


@dataclass(slots=True)
class PollerMetrics:
    poll_duration: Gauge


@runtime_checkable
class MetricsStoreProtocol(Protocol):
    registry: CollectorRegistry
    exporter: ExporterMetrics
    chain: ChainMetrics
    validator: ValidatorMetrics
    rpc: RpcMetrics
    poller: PollerMetrics


@dataclass(slots=True)
class MetricsBundle(MetricsStoreProtocol):
    registry: CollectorRegistry
    exporter: ExporterMetrics
    chain: ChainMetrics
    validator: ValidatorMetrics
    rpc: RpcMetrics
    poller: PollerMetrics


def _metric_name(name: str) -> str:
    return f"{METRICS_PREFIX}_{name}"


def create_metrics(registry: CollectorRegistry | None = None) -> MetricsBundle:
    registry = registry or CollectorRegistry()

    exporter = ExporterMetrics(
        up=Gauge(
            _metric_name("exporter_up"),
            "Indicates whether the exporter is available (1 for up, 0 for down).",
            registry=registry,
        ),
        configured_validators=Gauge(
            _metric_name("configured_validators"),
            "Number of validators currently configured in the exporter.",
            registry=registry,
        ),
        poller_tasks=Gauge(
            _metric_name("poller_tasks"),
            "Number of running polling tasks (connection manager and workers).",
            registry=registry,
        ),
    )

    chain = ChainMetrics(
        era=Gauge(
            _metric_name("era"),
            "Active era reported by the chain.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        minimum_active_stake=Gauge(
            _metric_name("minimum_active_stake"),
            "Minimum active nominator stake of the last election, in scaled token units.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        average_stake=Gauge(
            _metric_name("average_stake"),
            "Total era stake divided by the number of active validators, in scaled token units.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        rpc_health=Gauge(
            _metric_name("rpc_health"),
            "Indicates whether an RPC endpoint is currently connected and healthy (1) or not (0).",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
    )

    validator = ValidatorMetrics(
        active=Gauge(
            _metric_name("active"),
            "Indicates whether the validator earned era points in the last settled era (1) or not (0).",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        era_points=Gauge(
            _metric_name("era_points"),
            "Era points earned by the validator in the last settled era.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        nominator_stake=Gauge(
            _metric_name("nominator_stake"),
            "Total stake backing the validator in the effective era, in scaled token units.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
        nominator_count=Gauge(
            _metric_name("nominator_count"),
            "Number of nominators backing the validator in the effective era.",
            labelnames=LABEL_NAMES,
            registry=registry,
        ),
    )

    rpc = RpcMetrics(
        requests=Counter(
            _metric_name("rpc_requests"),
            "Total number of storage queries sent to the RPC endpoint.",
            labelnames=("network", "chain", "endpoint", "operation"),
            registry=registry,
        ),
        errors=Counter(
            _metric_name("rpc_errors"),
            "Total number of failed storage queries by error type.",
            labelnames=("network", "chain", "endpoint", "operation", "error_type"),
            registry=registry,
        ),
        call_duration=Histogram(
            _metric_name("rpc_call_duration_seconds"),
            "Duration of storage queries against the RPC endpoint.",
            labelnames=("network", "chain", "operation"),
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=registry,
        ),
        endpoint_up=Gauge(
            _metric_name("rpc_endpoint_up"),
            "Indicates whether the given RPC endpoint is the connected and healthy one (1) or not (0).",
            labelnames=("network", "chain", "endpoint"),
            registry=registry,
        ),
    )

    poller = PollerMetrics(
        poll_duration=Gauge(
            _metric_name("poll_duration_seconds"),
            "Duration of the most recent polling cycle per worker.",
            labelnames=("network", "chain", "worker"),
            registry=registry,
        ),
    )

    return MetricsBundle(
        registry=registry,
        exporter=exporter,
        chain=chain,
        validator=validator,
        rpc=rpc,
        poller=poller,
    )


_METRICS: MetricsStoreProtocol = create_metrics()


def get_metrics() -> MetricsStoreProtocol:
    return _METRICS


def set_metrics(bundle: MetricsStoreProtocol) -> None:
    global _METRICS
    _METRICS = bundle


def reset_metrics_state(registry: CollectorRegistry | None = None) -> MetricsStoreProtocol:
    """Rebuild the metrics bundle so every series starts from scratch."""

    bundle = create_metrics(registry)
    set_metrics(bundle)

    return bundle


def _resolve_gauge(metrics: MetricsStoreProtocol, metric_name: str) -> Gauge:
    if metric_name in CHAIN_METRIC_NAMES:
        return getattr(metrics.chain, metric_name)

    if metric_name in VALIDATOR_METRIC_NAMES:
        return getattr(metrics.validator, metric_name)

    raise KeyError(f"Unknown metric '{metric_name}'.")


def set_gauge(
    metric_name: str,
    labels: Labels,
    value: float,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    """Write a value into the series identified by ``labels`` (last write wins)."""

    metrics_bundle = metrics or get_metrics()

    _resolve_gauge(metrics_bundle, metric_name).labels(*labels.as_tuple()).set(value)


def get_gauge_value(
    metric_name: str,
    labels: Labels,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> float | None:
    """Return the current value of a series, or None if it was never written."""

    metrics_bundle = metrics or get_metrics()

    _resolve_gauge(metrics_bundle, metric_name)

    return metrics_bundle.registry.get_sample_value(
        _metric_name(metric_name),
        dict(zip(LABEL_NAMES, labels.as_tuple())),
    )


def chain_labels(config: ExporterConfig) -> Labels:
    return Labels(network=config.network.value, chain=config.chain)


def validator_labels(config: ExporterConfig, name: str, address: str) -> Labels:
    return Labels(
        network=config.network.value,
        chain=config.chain,
        validator_name=name,
        validator_address=address,
    )


def reset_chain_metrics(labels: Labels, *, metrics: MetricsStoreProtocol | None = None) -> None:
    """Reset chain-level staking gauges to zero."""

    for metric_name in ("era", "minimum_active_stake", "average_stake"):
        set_gauge(metric_name, labels, 0, metrics=metrics)


def reset_validator_metrics(labels: Labels, *, metrics: MetricsStoreProtocol | None = None) -> None:
    """Reset the four validator gauges to zero."""

    for metric_name in VALIDATOR_METRIC_NAMES:
        set_gauge(metric_name, labels, 0, metrics=metrics)


def initialize_metrics(config: ExporterConfig, *, metrics: MetricsStoreProtocol | None = None) -> None:
    """Create every chain and validator series with a zero value."""

    metrics_bundle = metrics or get_metrics()

    labels = chain_labels(config)

    reset_chain_metrics(labels, metrics=metrics_bundle)
    set_gauge("rpc_health", labels, 0, metrics=metrics_bundle)

    for endpoint in config.endpoints:
        metrics_bundle.rpc.endpoint_up.labels(labels.network, labels.chain, endpoint).set(0)

    for validator in config.validators:
        reset_validator_metrics(
            validator_labels(config, validator.name, validator.address),
            metrics=metrics_bundle,
        )

    metrics_bundle.exporter.configured_validators.set(len(config.validators))


def record_rpc_health(
    labels: Labels,
    endpoint: str,
    healthy: bool,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    """Record the health of the connection to ``endpoint``."""

    metrics_bundle = metrics or get_metrics()
    value = 1 if healthy else 0

    set_gauge("rpc_health", labels, value, metrics=metrics_bundle)
    metrics_bundle.rpc.endpoint_up.labels(labels.network, labels.chain, endpoint).set(value)


def record_rpc_request(
    labels: Labels,
    endpoint: str,
    operation: str,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    metrics_bundle = metrics or get_metrics()

    metrics_bundle.rpc.requests.labels(labels.network, labels.chain, endpoint, operation).inc()


def record_rpc_error(
    labels: Labels,
    endpoint: str,
    operation: str,
    error_type: str,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    metrics_bundle = metrics or get_metrics()

    metrics_bundle.rpc.errors.labels(
        labels.network,
        labels.chain,
        endpoint,
        operation,
        error_type,
    ).inc()


def record_rpc_call_duration(
    labels: Labels,
    operation: str,
    duration_seconds: float,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    metrics_bundle = metrics or get_metrics()

    metrics_bundle.rpc.call_duration.labels(labels.network, labels.chain, operation).observe(duration_seconds)


def record_poll_duration(
    labels: Labels,
    worker: str,
    duration_seconds: float,
    *,
    metrics: MetricsStoreProtocol | None = None,
) -> None:
    metrics_bundle = metrics or get_metrics()

    metrics_bundle.poller.poll_duration.labels(labels.network, labels.chain, worker).set(duration_seconds)


def update_poller_task_count(count: int, *, metrics: MetricsStoreProtocol | None = None) -> None:
    metrics_bundle = metrics or get_metrics()

    metrics_bundle.exporter.poller_tasks.set(count)


__all__ = [
    "CHAIN_METRIC_NAMES",
    "ChainMetrics",
    "ExporterMetrics",
    "LABEL_NAMES",
    "METRICS_PREFIX",
    "MetricsBundle",
    "MetricsStoreProtocol",
    "PollerMetrics",
    "RpcMetrics",
    "VALIDATOR_METRIC_NAMES",
    "ValidatorMetrics",
    "chain_labels",
    "create_metrics",
    "get_gauge_value",
    "get_metrics",
    "initialize_metrics",
    "record_poll_duration",
    "record_rpc_call_duration",
    "record_rpc_error",
    "record_rpc_health",
    "record_rpc_request",
    "reset_chain_metrics",
    "reset_metrics_state",
    "reset_validator_metrics",
    "set_gauge",
    "set_metrics",
    "update_poller_task_count",
    "validator_labels",
]
