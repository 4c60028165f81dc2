"""``substratheus-validate-config``: check a config file or print what the exporter would run with."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .config import ExporterConfig, load_exporter_config
from .exceptions import ConfigError
from .runtime_settings import RuntimeSettings, get_runtime_settings

MASKED_VALUE = "<masked>"
SECRET_KEYS = ("rpc_url", "backup_rpc_url")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check a substratheus config.toml without starting the exporter.")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="config file to check; SUBSTRATHEUS_CONFIG_PATH or ./config.toml when omitted",
    )
    parser.add_argument(
        "--print-resolved",
        action="store_true",
        help="print the environment settings and parsed config as JSON",
    )
    parser.add_argument(
        "--show-secrets",
        action="store_true",
        help="do not mask rpc_url and backup_rpc_url in --print-resolved output",
    )
    return parser


def _resolve_path(config_path: str | None) -> Path | None:
    return Path(config_path).expanduser().resolve() if config_path else None


def validate_config(config_path: str | None = None) -> ExporterConfig:
    """Parse ``config_path`` (or the default location) and return the validated config."""

    return load_exporter_config(_resolve_path(config_path))


def _serialize(value: Any) -> Any:
    """Turn dataclasses, enums and account ids into JSON-friendly values."""
    if is_dataclass(value):
        return _serialize(asdict(value))
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return f"0x{value.hex()}"
    return value


def _render_runtime_settings(runtime: RuntimeSettings, *, show_secrets: bool) -> str:
    exporter = _serialize(runtime.config)

    if not show_secrets:
        exporter.update({key: MASKED_VALUE for key in SECRET_KEYS if exporter.get(key)})

    return json.dumps(
        {
            "config_path": str(runtime.config_path),
            "settings": _serialize(runtime.app),
            "exporter": exporter,
        },
        indent=2,
        sort_keys=True,
    )


def main(argv: list[str] | None = None) -> int:
    """Entry point of ``substratheus-validate-config``."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.print_resolved:
            runtime = get_runtime_settings(config_path=_resolve_path(args.config_path))
            print(_render_runtime_settings(runtime, show_secrets=args.show_secrets))
            return 0

        validate_config(args.config_path)
    except FileNotFoundError as exc:
        parser.error(f"Config file not found: {exc}")
    except ConfigError as exc:
        parser.error(str(exc))

    print("Configuration OK")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
