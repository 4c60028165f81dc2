"""Core data models used across the exporter."""

from __future__ import annotations

from dataclasses import dataclass, field

# Native token amounts are exposed in units of 10^10 planck.
TOKEN_SCALE = 10**10


def tokens_to_units(tokens: int) -> int:
    """Downscale a native token amount by ``TOKEN_SCALE``, truncating toward zero."""

    quotient = abs(tokens) // TOKEN_SCALE

    return -quotient if tokens < 0 else quotient


@dataclass(frozen=True, slots=True)
class Labels:
    """Label set identifying one series in every metric family.

    Chain-level series leave the validator fields unset; they are rendered as
    empty strings so that equal label sets always collapse to one series.
    """

    network: str
    chain: str
    validator_name: str | None = None
    validator_address: str | None = None

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (
            self.network,
            self.chain,
            self.validator_name or "",
            self.validator_address or "",
        )


@dataclass(slots=True)
class EraPointsMap:
    """Reward points of every validator that was active in one era."""

    total: int = 0
    individual: dict[bytes, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.individual)

    def points_for(self, account_id: bytes) -> int | None:
        return self.individual.get(bytes(account_id))


@dataclass(frozen=True, slots=True)
class NominatorSummary:
    """Total backing stake and nominator count of one validator in one era."""

    total: int = 0
    nominator_count: int = 0


__all__ = [
    "EraPointsMap",
    "Labels",
    "NominatorSummary",
    "TOKEN_SCALE",
    "tokens_to_units",
]
