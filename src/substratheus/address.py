"""SS58 address encoding for the supported relay and solo chains."""

from __future__ import annotations

import hashlib
from enum import Enum

import base58

from .exceptions import AddressError

SS58_CONTEXT = b"SS58PRE"
ACCOUNT_ID_LENGTH = 32
CHECKSUM_LENGTH = 2
# Prefixes 0..63 fit in a single byte; larger ones use the two-byte form.
MAX_SIMPLE_PREFIX = 63


class Network(str, Enum):
    POLKADOT = "polkadot"
    KUSAMA = "kusama"
    AVAIL = "avail"

    @property
    def prefix(self) -> int:
        return NETWORK_PREFIXES[self]


NETWORK_PREFIXES: dict[Network, int] = {
    Network.POLKADOT: 0,
    Network.KUSAMA: 2,
    Network.AVAIL: 42,
}


def _checksum(payload: bytes) -> bytes:
    digest = hashlib.blake2b(SS58_CONTEXT + payload, digest_size=64).digest()
    return digest[:CHECKSUM_LENGTH]


def ss58_encode(account_id: bytes, prefix: int) -> str:
    """Encode a raw 32-byte account identifier as an SS58 address.

    Args:
        account_id: Public key bytes of the account.
        prefix: Network prefix byte (0..63).

    Returns:
        Checksummed base-58 address string.

    Raises:
        AddressError: If the account length or prefix is unsupported.
    """
    if len(account_id) != ACCOUNT_ID_LENGTH:
        raise AddressError(
            f"Account identifier must be {ACCOUNT_ID_LENGTH} bytes, got {len(account_id)}.",
            context={"length": len(account_id)},
        )

    if not 0 <= prefix <= MAX_SIMPLE_PREFIX:
        raise AddressError(
            f"Unsupported SS58 prefix {prefix}.",
            context={"prefix": prefix},
        )

    payload = bytes([prefix]) + bytes(account_id)

    return base58.b58encode(payload + _checksum(payload)).decode("ascii")


def ss58_decode(address: str, prefix: int | None = None) -> bytes:
    """Decode an SS58 address back to its 32-byte account identifier.

    The checksum is always verified. When ``prefix`` is given the address
    must also carry that network prefix.

    Raises:
        AddressError: If the address is malformed, fails the checksum, or
            belongs to another network.
    """
    try:
        raw = base58.b58decode(address.strip())
    except ValueError as exc:
        raise AddressError(
            f"Address '{address}' is not valid base58.",
            context={"address": address},
        ) from exc

    expected_length = 1 + ACCOUNT_ID_LENGTH + CHECKSUM_LENGTH

    if len(raw) != expected_length:
        raise AddressError(
            f"Address '{address}' decodes to {len(raw)} bytes, expected {expected_length}.",
            context={"address": address},
        )

    address_prefix = raw[0]

    if address_prefix > MAX_SIMPLE_PREFIX:
        raise AddressError(
            f"Address '{address}' uses an unsupported prefix.",
            context={"address": address, "prefix": address_prefix},
        )

    payload = raw[: 1 + ACCOUNT_ID_LENGTH]

    if _checksum(payload) != raw[1 + ACCOUNT_ID_LENGTH :]:
        raise AddressError(
            f"Address '{address}' has an invalid checksum.",
            context={"address": address},
        )

    if prefix is not None and address_prefix != prefix:
        raise AddressError(
            f"Address '{address}' has prefix {address_prefix}, expected {prefix}.",
            context={"address": address, "prefix": address_prefix, "expected_prefix": prefix},
        )

    return payload[1:]


def encode_address(network: Network, account_id: bytes) -> str:
    """Encode an account identifier with the given network's prefix."""

    return ss58_encode(account_id, network.prefix)


__all__ = [
    "ACCOUNT_ID_LENGTH",
    "NETWORK_PREFIXES",
    "Network",
    "encode_address",
    "ss58_decode",
    "ss58_encode",
]
