from __future__ import annotations

import json
import os

import pytest

from sofia_indexer.core.errors import ConfigError
from sofia_indexer.settings import PROJECT_ROOT, load_settings, parse_start_block


def _missing_config(tmp_path) -> str:
    return str(tmp_path / "absent.json")


def test_defaults_come_from_the_chain_preset(tmp_path) -> None:
    settings = load_settings(config_path=_missing_config(tmp_path), environ={})

    assert settings.chain.chain_id == 13579
    assert settings.chain.rpc_url == "https://testnet.rpc.intuition.systems"
    assert settings.chain.contract_address == "0xB92EA1B47E4ABD0a520E9138BB59dBd1bC6C475B"
    assert settings.chain.native_currency.symbol == "TRUST"
    assert settings.scan.poll_interval_seconds == 10.0
    assert settings.scan.start_block == "latest"
    assert settings.scan.lookback_blocks == 1000
    assert settings.verifier.gateway_url == "https://ipfs.io/ipfs/"
    assert settings.verifier.signature_marker == "| Sofia"
    assert settings.verifier.max_attempts == 3
    assert settings.db_path == os.path.join(PROJECT_ROOT, "sofia_indexer.db")


def test_environment_overrides_config_file(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "chain": {"rpc_url": "https://file.rpc"},
                "indexer": {"poll_interval_ms": 2500, "start_block": 1200, "db_path": "data/x.db"},
                "verifier": {"signature_marker": "#signed"},
            }
        ),
        encoding="utf-8",
    )
    environ = {"RPC_URL": "https://env.rpc", "LOOKBACK_BLOCKS": "50", "START_BLOCK": ""}

    settings = load_settings(config_path=str(path), environ=environ)

    assert settings.chain.rpc_url == "https://env.rpc"
    assert settings.scan.poll_interval_seconds == 2.5
    assert settings.scan.start_block == 1200
    assert settings.scan.lookback_blocks == 50
    assert settings.verifier.signature_marker == "#signed"
    assert settings.db_path == os.path.join(PROJECT_ROOT, "data/x.db")


def test_config_path_can_come_from_environment(tmp_path) -> None:
    path = tmp_path / "alt.json"
    path.write_text(json.dumps({"indexer": {"max_block_range": 500}}), encoding="utf-8")

    settings = load_settings(environ={"SOFIA_CONFIG": str(path)})

    assert settings.scan.max_block_range == 500


def test_missing_rpc_url_is_a_config_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"chain": {"rpc_url": ""}}), encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config_path=str(path), environ={})


@pytest.mark.parametrize(
    "environ",
    [
        {"CONTRACT_ADDRESS": "0x1234"},
        {"CHAIN_PRESET": "mainnet-someday"},
        {"POLL_INTERVAL_MS": "soon"},
        {"IPFS_GATEWAY_URL": "ipfs.io"},
        {"VERIFIER_MAX_ATTEMPTS": "0"},
        {"START_BLOCK": "-1"},
    ],
)
def test_invalid_values_are_config_errors(tmp_path, environ) -> None:
    with pytest.raises(ConfigError):
        load_settings(config_path=_missing_config(tmp_path), environ=environ)


def test_unreadable_config_file_is_a_config_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(config_path=str(path), environ={})


def test_parse_start_block() -> None:
    assert parse_start_block("latest") == "latest"
    assert parse_start_block(" Latest ") == "latest"
    assert parse_start_block("42") == 42
