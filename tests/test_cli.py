import json
from pathlib import Path

import pytest

from substratheus.cli import main, validate_config

from conftest import ALICE_POLKADOT


def write_config(path: Path, content: str) -> Path:
    config_file = path.joinpath("config.toml")
    config_file.write_text(content, encoding="utf-8")
    return config_file


VALID_CONFIG = f"""
network = "polkadot"
chain = "polkadot"
rpc_url = "wss://secret-primary.example"
backup_rpc_url = "wss://secret-backup.example"

[[validators]]
name = "alice"
address = "{ALICE_POLKADOT}"
"""


def test_validate_config_success(tmp_path: Path) -> None:
    config = validate_config(str(write_config(tmp_path, VALID_CONFIG)))

    assert config.validators[0].name == "alice"


def test_main_reports_configuration_ok(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_file = write_config(tmp_path, VALID_CONFIG)

    exit_code = main(["--config", str(config_file)])

    assert exit_code == 0
    assert "Configuration OK" in capsys.readouterr().out


def test_print_runtime_settings_masks_rpc_urls(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_file = write_config(tmp_path, VALID_CONFIG)

    exit_code = main(["--config", str(config_file), "--print-resolved"])

    assert exit_code == 0

    payload = json.loads(capsys.readouterr().out)

    assert payload["config_path"] == str(config_file.resolve())
    assert payload["exporter"]["rpc_url"] == "<masked>"
    assert payload["exporter"]["backup_rpc_url"] == "<masked>"
    assert payload["exporter"]["network"] == "polkadot"
    assert payload["exporter"]["validators"][0]["address"] == ALICE_POLKADOT
    assert "poller" in payload["settings"]


def test_print_runtime_settings_can_show_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_file = write_config(tmp_path, VALID_CONFIG)

    exit_code = main(
        [
            "--config",
            str(config_file),
            "--print-resolved",
            "--show-secrets",
        ]
    )

    assert exit_code == 0

    captured = capsys.readouterr()

    assert "wss://secret-primary.example" in captured.out
    assert "wss://secret-backup.example" in captured.out


def test_main_errors_when_config_missing(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    missing_path = tmp_path.joinpath("absent.toml")

    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(missing_path)])

    assert exc_info.value.code == 2
    assert "Config file not found" in capsys.readouterr().err


def test_main_errors_on_invalid_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_file = write_config(tmp_path, VALID_CONFIG.replace('"polkadot"\nchain', '"westend"\nchain'))

    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(config_file)])

    assert exc_info.value.code == 2
    assert "network must be one of" in capsys.readouterr().err
