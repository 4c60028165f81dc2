"""Loading and validation of the TOML exporter configuration."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .address import Network, ss58_decode
from .exceptions import AddressError, ConfigError, ValidationError
from .settings import AppSettings, get_settings

DEFAULT_ENV_PATH = Path.cwd().joinpath(".env").resolve()

load_dotenv(DEFAULT_ENV_PATH)


@dataclass(frozen=True, slots=True)
class ValidatorConfig:
    name: str

    address: str

    account_id: bytes = field(repr=False, compare=False)


@dataclass(frozen=True, slots=True)
class ExporterConfig:
    network: Network

    chain: str

    rpc_url: str

    backup_rpc_url: str

    validators: tuple[ValidatorConfig, ...]

    @property
    def endpoints(self) -> tuple[str, str]:
        return (self.rpc_url, self.backup_rpc_url)


def load_exporter_config(path: Path | None = None) -> ExporterConfig:
    config_path = path or resolve_config_path()

    data = _read_toml(config_path)

    return parse_exporter_config(data)


def resolve_config_path(settings: AppSettings | None = None) -> Path:
    resolved_settings = settings or get_settings()

    return resolved_settings.config.resolve_config_path()


def parse_exporter_config(data: dict[str, Any]) -> ExporterConfig:
    """Build an ``ExporterConfig`` from an already parsed TOML document.

    Validator names are unique case-insensitively and no account may be
    listed twice, even under different names.

    Raises:
        ValidationError: On a missing, malformed or duplicated value.
    """
    network = _parse_network(data.get("network"))

    chain = _require_non_empty_string(data.get("chain"), "chain")

    rpc_url = _require_non_empty_string(data.get("rpc_url"), "rpc_url")

    backup_rpc_url = _require_non_empty_string(data.get("backup_rpc_url"), "backup_rpc_url")

    validators_data = data.get("validators", [])

    if not isinstance(validators_data, list):
        raise ValidationError(
            "Configuration 'validators' section must be an array.",
            config_section="validators",
            expected_type="array",
            value=type(validators_data).__name__,
        )

    validators: list[ValidatorConfig] = []

    seen_names: set[str] = set()

    seen_accounts: set[bytes] = set()

    for index, entry in enumerate(validators_data, start=1):
        if not isinstance(entry, dict):
            raise ValidationError(
                f"validators[{index}] must be a table.",
                config_section=f"validators[{index}]",
                expected_type="table",
                value=type(entry).__name__,
            )

        validator = _parse_validator_config(entry, index, network)

        normalized_name = validator.name.lower()

        if normalized_name in seen_names:
            raise ValidationError(
                f"Duplicate validator name '{validator.name}' detected.",
                config_section=f"validators[{index}]",
                config_key="name",
                value=validator.name,
            )

        if validator.account_id in seen_accounts:
            raise ValidationError(
                f"Duplicate validator address '{validator.address}' detected.",
                config_section=f"validators[{index}]",
                config_key="address",
                value=validator.address,
            )

        seen_names.add(normalized_name)
        seen_accounts.add(validator.account_id)

        validators.append(validator)

    return ExporterConfig(
        network=network,
        chain=chain,
        rpc_url=rpc_url,
        backup_rpc_url=backup_rpc_url,
        validators=tuple(validators),
    )


def _parse_network(value: Any) -> Network:
    raw_network = _require_non_empty_string(value, "network")

    try:
        return Network(raw_network.lower())
    except ValueError as exc:
        supported = ", ".join(network.value for network in Network)
        raise ValidationError(
            f"network must be one of: {supported}.",
            config_section="network",
            config_key="network",
            expected_type="network",
            value=raw_network,
        ) from exc


def _parse_validator_config(data: dict[str, Any], index: int, network: Network) -> ValidatorConfig:
    """Decode one ``[[validators]]`` table; the address must use the network's SS58 prefix."""
    name = _require_non_empty_string(data.get("name"), f"validators[{index}].name")

    address = _require_non_empty_string(data.get("address"), f"validators[{index}].address")

    try:
        account_id = ss58_decode(address, network.prefix)
    except AddressError as exc:
        raise ValidationError(
            f"validators[{index}].address is not a valid {network.value} address: {exc.message}",
            config_section=f"validators[{index}]",
            config_key="address",
            expected_type="ss58_address",
            value=address,
        ) from exc

    return ValidatorConfig(name=name, address=address, account_id=account_id)


def _read_toml(path: Path) -> dict[str, Any]:
    """Load ``path`` after expanding `$VAR` and `${VAR}` references from the environment.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ConfigError: If the expanded text is not valid TOML.
    """
    with path.open("r", encoding="utf-8") as file:
        raw_toml = file.read()

    expanded_toml = os.path.expandvars(raw_toml)

    try:
        return tomllib.loads(expanded_toml)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Configuration file is not valid TOML: {exc}",
            config_file=str(path),
        ) from exc


def _require_non_empty_string(value: Any, location: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{location} must be a non-empty string.",
            config_section=location,
            expected_type="string",
            value=value if value is None or isinstance(value, str) else type(value).__name__,
        )

    return value.strip()


__all__ = [
    "ExporterConfig",
    "ValidatorConfig",
    "load_exporter_config",
    "parse_exporter_config",
    "resolve_config_path",
]
