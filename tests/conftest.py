import pytest

from substratheus.config import ExporterConfig, parse_exporter_config
from substratheus.context import reset_application_context
from substratheus.metrics import reset_metrics_state
from substratheus.poller.manager import reset_poller_manager
from substratheus.runtime_settings import reset_runtime_settings_cache

ALICE_ACCOUNT_ID = bytes.fromhex("d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d")
BOB_ACCOUNT_ID = bytes.fromhex("8eaf04151687736326c9fea17e25fc5287613693c912909cb226aa4794f26a48")

ALICE_POLKADOT = "15oF4uVJwmo4TdGW7VfQxNLavjCXviqxT9S1MgbjMNHr6Sp5"
BOB_POLKADOT = "14E5nqKAp3oAJcmzgZhUD2RcptBeUBScxKHgJKU4HPNcKVf3"


@pytest.fixture(autouse=True)
def reset_exporter_state() -> None:
    reset_metrics_state()
    reset_application_context()
    reset_runtime_settings_cache()
    reset_poller_manager()
    yield
    reset_metrics_state()
    reset_application_context()
    reset_runtime_settings_cache()
    reset_poller_manager()


@pytest.fixture
def exporter_config() -> ExporterConfig:
    return parse_exporter_config(
        {
            "network": "polkadot",
            "chain": "polkadot",
            "rpc_url": "wss://primary.example",
            "backup_rpc_url": "wss://backup.example",
            "validators": [
                {"name": "alice", "address": ALICE_POLKADOT},
                {"name": "bob", "address": BOB_POLKADOT},
            ],
        }
    )
