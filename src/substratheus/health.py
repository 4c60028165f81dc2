"""Health reporting and metrics formatting helpers."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple

from fastapi import status

from .context import ApplicationContext
from .metrics import METRICS_PREFIX, chain_labels, get_gauge_value


def _endpoint_status(context: ApplicationContext, endpoint: str) -> str:
    labels = chain_labels(context.config)

    value = context.metrics.registry.get_sample_value(
        f"{METRICS_PREFIX}_rpc_endpoint_up",
        {"network": labels.network, "chain": labels.chain, "endpoint": endpoint},
    )

    return "ok" if value == 1 else "unhealthy"


def generate_health_report(
    context: ApplicationContext,
    include_details: bool = False,
) -> Tuple[str, int, List[Dict[str, str]]]:
    """Summarise RPC health from the ``rpc_health`` gauge.

    Returns:
        Overall status, HTTP status code and per-endpoint entries.
    """
    config = context.config

    healthy = get_gauge_value("rpc_health", chain_labels(config), metrics=context.metrics) == 1

    if healthy:
        overall_status = "ok"
        status_code = status.HTTP_200_OK
    else:
        overall_status = "unhealthy"
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    endpoint_details: List[Dict[str, str]] = []

    for role, endpoint in (("primary", config.rpc_url), ("backup", config.backup_rpc_url)):
        entry: Dict[str, str] = {
            "role": role,
            "status": _endpoint_status(context, endpoint),
        }

        if include_details:
            entry["endpoint"] = endpoint

        endpoint_details.append(entry)

    return overall_status, status_code, endpoint_details


def generate_readiness_report(context: ApplicationContext) -> Tuple[bool, Dict[str, str]]:
    """Report ready once the connection manager has published a client."""

    client = context.handle.get()

    if client is None:
        return False, {"network": context.config.network.value, "chain": context.config.chain}

    return True, {
        "network": context.config.network.value,
        "chain": context.config.chain,
        "endpoint": client.endpoint,
    }


def format_metrics_payload(payload: bytes) -> bytes:
    """Rewrite exponent-formatted sample values as plain decimals."""

    text = payload.decode()

    lines = []

    for line in text.splitlines():
        if not line or line.startswith("#"):
            lines.append(line)

            continue

        parts = line.rsplit(" ", 1)

        if len(parts) != 2:
            lines.append(line)

            continue

        metric, value = parts

        if "e" in value.lower() and "inf" not in value.lower():
            try:
                value = format(Decimal(value), "f")
            except InvalidOperation:
                pass

        lines.append(f"{metric} {value}")

    return ("\n".join(lines) + "\n").encode()


__all__ = [
    "format_metrics_payload",
    "generate_health_report",
    "generate_readiness_report",
]
