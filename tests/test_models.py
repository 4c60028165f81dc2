from __future__ import annotations

import pytest

from substratheus.models import (
    TOKEN_SCALE,
    EraPointsMap,
    Labels,
    NominatorSummary,
    tokens_to_units,
)


@pytest.mark.parametrize(
    ("tokens", "expected"),
    [
        (0, 0),
        (TOKEN_SCALE - 1, 0),
        (TOKEN_SCALE, 1),
        (123_456_789_012_345, 12_345),
        (-(TOKEN_SCALE + 1), -1),
    ],
)
def test_tokens_to_units_truncates(tokens: int, expected: int) -> None:
    assert tokens_to_units(tokens) == expected


def test_labels_render_missing_validator_fields_as_empty() -> None:
    labels = Labels(network="polkadot", chain="polkadot")

    assert labels.as_tuple() == ("polkadot", "polkadot", "", "")


def test_labels_equal_sets_compare_equal() -> None:
    first = Labels("kusama", "kusama", "alice", "addr")
    second = Labels("kusama", "kusama", "alice", "addr")

    assert first == second
    assert hash(first) == hash(second)


def test_era_points_map_lookup() -> None:
    account = b"\x01" * 32
    era_points = EraPointsMap(total=30, individual={account: 30})

    assert len(era_points) == 1
    assert era_points.points_for(account) == 30
    assert era_points.points_for(b"\x02" * 32) is None
    assert not EraPointsMap()


def test_nominator_summary_defaults_to_zero() -> None:
    summary = NominatorSummary()

    assert summary.total == 0
    assert summary.nominator_count == 0
