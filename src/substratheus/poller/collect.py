"""Synchronous metric collection cycles invoked by the worker loops."""

from __future__ import annotations

from ..config import ExporterConfig, ValidatorConfig
from ..logging import build_log_extra, get_logger
from ..metrics import (
    MetricsStoreProtocol,
    chain_labels,
    get_metrics,
    reset_chain_metrics,
    reset_validator_metrics,
    set_gauge,
    validator_labels,
)
from ..models import EraPointsMap, NominatorSummary, tokens_to_units
from ..rpc import ChainClientProtocol
from .connection import ConnectionHandle

LOGGER = get_logger(__name__)

# Reward data of the newest era may not be settled yet; the previous era's is.
ERA_LOOKBACK = 1


def fetch_era_points_with_fallback(
    client: ChainClientProtocol,
    era: int,
) -> tuple[int, EraPointsMap]:
    """Fetch era points at ``era``, falling back to ``era - ERA_LOOKBACK``.

    An absent or empty map counts as unavailable. When neither era has data
    an empty map is returned together with the original era.

    Returns:
        The era the points belong to and the points map.
    """
    era_points = client.fetch_era_points(era)

    if era_points:
        return era, era_points

    fallback_era = era - ERA_LOOKBACK

    if fallback_era >= 0:
        fallback_points = client.fetch_era_points(fallback_era)

        if fallback_points:
            return fallback_era, fallback_points

    return era, EraPointsMap()


def collect_chain_metrics_sync(
    config: ExporterConfig,
    handle: ConnectionHandle,
    metrics: MetricsStoreProtocol | None = None,
) -> bool:
    """Collect and record chain-wide staking figures for one cycle.

    Returns:
        True if the current era could be read, False otherwise.
    """
    metrics_bundle = metrics or get_metrics()
    labels = chain_labels(config)

    client = handle.get()

    if client is None:
        LOGGER.debug(
            "RPC unavailable; resetting chain metrics.",
            extra=build_log_extra(config=config),
        )

        reset_chain_metrics(labels, metrics=metrics_bundle)

        return False

    current_era = client.fetch_current_era()

    if current_era is None:
        LOGGER.warning(
            "Unable to fetch current era from %s; keeping previous chain metrics.",
            client.endpoint,
            extra=build_log_extra(config=config, endpoint=client.endpoint),
        )

        return False

    set_gauge("era", labels, current_era, metrics=metrics_bundle)

    points_era, era_points = fetch_era_points_with_fallback(client, current_era)

    active_count = len(era_points)

    minimum_active_stake = client.fetch_minimum_active_stake()

    if minimum_active_stake is not None:
        set_gauge(
            "minimum_active_stake",
            labels,
            tokens_to_units(minimum_active_stake),
            metrics=metrics_bundle,
        )

    total_stake = client.fetch_total_stake(points_era)

    if total_stake is not None and active_count > 0:
        set_gauge(
            "average_stake",
            labels,
            tokens_to_units(total_stake) // active_count,
            metrics=metrics_bundle,
        )

    LOGGER.debug(
        "Collected chain metrics.",
        extra=build_log_extra(
            config=config,
            endpoint=client.endpoint,
            era=current_era,
            additional={"points_era": points_era, "active_validators": active_count},
        ),
    )

    return True


def resolve_effective_era(
    client: ChainClientProtocol,
    account_id: bytes,
    active_era: int,
) -> tuple[int | None, NominatorSummary | None]:
    """Find the newest era, at or one before ``active_era``, with nominator data.

    Returns:
        The effective era and its nominator summary, or (None, None).
    """
    if active_era <= 0:
        return None, None

    for era in (active_era, active_era - ERA_LOOKBACK):
        if era < 0:
            continue

        summary = client.fetch_nominator_summary(era, account_id)

        if summary is not None:
            return era, summary

    return None, None


def collect_validator_metrics_sync(
    config: ExporterConfig,
    validator: ValidatorConfig,
    handle: ConnectionHandle,
    metrics: MetricsStoreProtocol | None = None,
) -> bool:
    """Collect and record activity, points and nominator figures for one validator.

    All four validator gauges are overwritten on every cycle.

    Returns:
        True if an effective era was found, False otherwise.
    """
    metrics_bundle = metrics or get_metrics()
    labels = validator_labels(config, validator.name, validator.address)

    client = handle.get()

    if client is None:
        LOGGER.debug(
            "RPC unavailable; resetting validator metrics.",
            extra=build_log_extra(config=config, validator=validator),
        )

        reset_validator_metrics(labels, metrics=metrics_bundle)

        return False

    active_era = client.fetch_current_era() or 0

    effective_era, summary = resolve_effective_era(client, validator.account_id, active_era)

    active = False
    points = 0

    if effective_era is not None and effective_era >= 1:
        era_points = client.fetch_era_points(effective_era - 1)

        if era_points is not None:
            validator_points = era_points.points_for(validator.account_id)

            if validator_points is not None:
                active = True
                points = validator_points

    if summary is None:
        summary = NominatorSummary()

    set_gauge("active", labels, 1 if active else 0, metrics=metrics_bundle)
    set_gauge("era_points", labels, points, metrics=metrics_bundle)
    set_gauge("nominator_stake", labels, tokens_to_units(summary.total), metrics=metrics_bundle)
    set_gauge("nominator_count", labels, summary.nominator_count, metrics=metrics_bundle)

    LOGGER.debug(
        "Collected validator metrics.",
        extra=build_log_extra(
            config=config,
            validator=validator,
            endpoint=client.endpoint,
            era=effective_era,
            additional={"active_era": active_era, "active": active, "era_points": points},
        ),
    )

    return effective_era is not None


__all__ = [
    "ERA_LOOKBACK",
    "collect_chain_metrics_sync",
    "collect_validator_metrics_sync",
    "fetch_era_points_with_fallback",
    "resolve_effective_era",
]
