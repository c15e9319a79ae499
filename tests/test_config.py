import json
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import requests

from bridge_relayer.config import Config, load_deployment_descriptor
from bridge_relayer.exceptions import ConfigError

BASE_ENV = {
    "CHAIN_A_RPC_URL": "http://chain-a:8545",
    "CHAIN_B_RPC_URL": "http://chain-b:8545",
    "RELAYER_PRIVATE_KEY": "0x" + "11" * 32,
}


def test_defaults_from_env():
    config = Config.from_env(BASE_ENV)

    assert config.confirmation_depth == 3
    assert config.poll_interval_ms == 3000
    assert config.poll_interval_seconds == 3.0
    assert config.state_path == "./data/processed_nonces.json"
    assert config.submit_retries == 3
    assert config.rewind_reset_scope == "all"
    config.validate()


def test_signing_key_falls_back_to_deployer_key():
    env = dict(BASE_ENV)
    del env["RELAYER_PRIVATE_KEY"]
    env["DEPLOYER_PRIVATE_KEY"] = "0x" + "22" * 32

    assert Config.from_env(env).signing_key == "0x" + "22" * 32


def test_missing_required_values_are_listed():
    with pytest.raises(ConfigError) as excinfo:
        Config.from_env({"CHAIN_B_RPC_URL": "http://chain-b"}).validate()

    message = str(excinfo.value)
    assert "chain_a_rpc_url" in message
    assert "signing_key" in message
    assert "chain_b_rpc_url" not in message


def test_non_integer_value_is_rejected():
    with pytest.raises(ConfigError):
        Config.from_env({**BASE_ENV, "CONFIRMATION_DEPTH": "three"})


@pytest.mark.parametrize("overrides", [
    {"confirmation_depth": -1},
    {"poll_interval_ms": 0},
    {"submit_retries": 0},
    {"tx_timeout_seconds": 0},
    {"rewind_reset_scope": "sometimes"},
])
def test_out_of_range_values_are_rejected(overrides):
    config = replace(Config.from_env(BASE_ENV), **overrides)
    with pytest.raises(ConfigError):
        config.validate()


def _write(path, data):
    path.write_text(json.dumps(data))
    return str(path)


def test_addresses_resolved_from_deployment_files(tmp_path):
    chain_a = _write(tmp_path / "chain-a.json", {"BridgeLock": "0xA1", "GovernanceEmergency": "0xA2"})
    chain_b = _write(tmp_path / "chain-b.json", {"BridgeMint": "0xB1", "GovernanceVoting": "0xB2"})
    config = Config.from_env({
        **BASE_ENV,
        "CHAIN_A_BRIDGE_LOCK": "0xExplicit",
        "CHAIN_A_DEPLOYMENT_FILE": chain_a,
        "CHAIN_B_DEPLOYMENT_FILE": chain_b,
    })

    resolved = config.with_resolved_addresses()

    assert resolved.bridge_lock_address == "0xExplicit"
    assert resolved.governance_emergency_address == "0xA2"
    assert resolved.bridge_mint_address == "0xB1"
    assert resolved.governance_voting_address == "0xB2"


def test_unresolvable_addresses_are_fatal(tmp_path):
    config = Config.from_env({
        **BASE_ENV,
        "CHAIN_A_DEPLOYMENT_FILE": str(tmp_path / "missing-a.json"),
        "CHAIN_B_DEPLOYMENT_FILE": str(tmp_path / "missing-b.json"),
        "CHAIN_B_BRIDGE_MINT": "0xB1",
    })

    with pytest.raises(ConfigError) as excinfo:
        config.with_resolved_addresses()
    assert "bridge_lock_address" in str(excinfo.value)
    assert "bridge_mint_address" not in str(excinfo.value)


def test_unparsable_descriptor_is_fatal(tmp_path):
    path = tmp_path / "chain-a.json"
    path.write_text("{oops")

    with pytest.raises(ConfigError):
        load_deployment_descriptor(str(path))


def test_descriptor_fetched_from_url():
    response = MagicMock()
    response.json.return_value = {"BridgeMint": "0xB1"}
    with patch("bridge_relayer.config.requests.get", return_value=response) as get:
        assert load_deployment_descriptor("https://deploy.example/chain-b.json") == {"BridgeMint": "0xB1"}
    get.assert_called_once_with("https://deploy.example/chain-b.json", timeout=10)


def test_descriptor_url_failure_is_fatal():
    with patch("bridge_relayer.config.requests.get", side_effect=requests.exceptions.ConnectionError("refused")):
        with pytest.raises(ConfigError):
            load_deployment_descriptor("http://deploy.example/chain-a.json")
