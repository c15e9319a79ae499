import os
import json
import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional, Mapping

import requests
from dotenv import load_dotenv

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("chain_a_rpc_url", "chain_b_rpc_url", "signing_key")
REWIND_SCOPES = ("all", "chain")

# Deployment descriptor keys per chain, mapped to the Config field they fill.
CHAIN_A_DESCRIPTOR_KEYS = {
    "bridge_lock_address": "BridgeLock",
    "governance_emergency_address": "GovernanceEmergency",
}
CHAIN_B_DESCRIPTOR_KEYS = {
    "bridge_mint_address": "BridgeMint",
    "governance_voting_address": "GovernanceVoting",
}


@dataclass(frozen=True)
class Config:
    """Houses all configuration parameters for the relayer. Built once at startup."""
    chain_a_rpc_url: Optional[str] = None
    chain_b_rpc_url: Optional[str] = None
    signing_key: Optional[str] = None

    confirmation_depth: int = 3
    poll_interval_ms: int = 3000
    state_path: str = "./data/processed_nonces.json"

    # Chain A contracts
    bridge_lock_address: Optional[str] = None
    governance_emergency_address: Optional[str] = None
    # Chain B contracts
    bridge_mint_address: Optional[str] = None
    governance_voting_address: Optional[str] = None

    chain_a_deployment_file: str = "./deployments/chain-a.json"
    chain_b_deployment_file: str = "./deployments/chain-b.json"

    submit_retries: int = 3
    retry_base_delay_ms: int = 1000
    max_block_range: int = 0
    rewind_reset_scope: str = "all"
    tx_timeout_seconds: int = 120
    log_level: str = "INFO"

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def retry_base_delay_seconds(self) -> float:
        return self.retry_base_delay_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, env_file: Optional[str] = None) -> "Config":
        """
        Reads configuration from environment variables.

        Args:
            env: Mapping to read from instead of os.environ (used by tests).
            env_file: Optional path of a .env file to load first.
        """
        if env is None:
            load_dotenv(env_file)
            env = os.environ

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigError(f"{name} must be an integer, got '{raw}'") from None

        return cls(
            chain_a_rpc_url=env.get("CHAIN_A_RPC_URL") or None,
            chain_b_rpc_url=env.get("CHAIN_B_RPC_URL") or None,
            signing_key=env.get("RELAYER_PRIVATE_KEY") or env.get("DEPLOYER_PRIVATE_KEY") or None,
            confirmation_depth=_int("CONFIRMATION_DEPTH", 3),
            poll_interval_ms=_int("POLL_INTERVAL_MS", 3000),
            state_path=env.get("DB_PATH") or "./data/processed_nonces.json",
            bridge_lock_address=env.get("CHAIN_A_BRIDGE_LOCK") or None,
            governance_emergency_address=env.get("CHAIN_A_GOVERNANCE_EMERGENCY") or None,
            bridge_mint_address=env.get("CHAIN_B_BRIDGE_MINT") or None,
            governance_voting_address=env.get("CHAIN_B_GOVERNANCE_VOTING") or None,
            chain_a_deployment_file=env.get("CHAIN_A_DEPLOYMENT_FILE") or "./deployments/chain-a.json",
            chain_b_deployment_file=env.get("CHAIN_B_DEPLOYMENT_FILE") or "./deployments/chain-b.json",
            submit_retries=_int("SUBMIT_RETRIES", 3),
            retry_base_delay_ms=_int("RETRY_BASE_DELAY_MS", 1000),
            max_block_range=_int("MAX_BLOCK_RANGE", 0),
            rewind_reset_scope=(env.get("REWIND_RESET_SCOPE") or "all").lower(),
            tx_timeout_seconds=_int("TX_TIMEOUT_SECONDS", 120),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )

    def validate(self) -> None:
        """Fails with ConfigError if a critical parameter is missing or out of range."""
        missing = [name for name in REQUIRED_FIELDS if not getattr(self, name)]
        if missing:
            raise ConfigError(f"Missing required config: {', '.join(missing)}")
        if self.confirmation_depth < 0:
            raise ConfigError("CONFIRMATION_DEPTH must not be negative")
        if self.poll_interval_ms <= 0:
            raise ConfigError("POLL_INTERVAL_MS must be positive")
        if self.tx_timeout_seconds <= 0:
            raise ConfigError("TX_TIMEOUT_SECONDS must be positive")
        if self.submit_retries < 1:
            raise ConfigError("SUBMIT_RETRIES must be at least 1")
        if self.retry_base_delay_ms < 0 or self.max_block_range < 0:
            raise ConfigError("RETRY_BASE_DELAY_MS and MAX_BLOCK_RANGE must not be negative")
        if self.rewind_reset_scope not in REWIND_SCOPES:
            raise ConfigError(
                f"REWIND_RESET_SCOPE must be one of {REWIND_SCOPES}, got '{self.rewind_reset_scope}'"
            )

    def with_resolved_addresses(self) -> "Config":
        """
        Fills contract addresses missing from the environment using the
        per-chain deployment descriptors. Explicit values always win.

        Returns:
            A new Config with every contract address set.

        Raises:
            ConfigError: If an address cannot be resolved from either source.
        """
        resolved: Dict[str, Optional[str]] = {}
        for location, keys in (
            (self.chain_a_deployment_file, CHAIN_A_DESCRIPTOR_KEYS),
            (self.chain_b_deployment_file, CHAIN_B_DESCRIPTOR_KEYS),
        ):
            if all(getattr(self, field) for field in keys):
                continue
            descriptor = load_deployment_descriptor(location)
            if descriptor is None:
                continue
            for field, key in keys.items():
                if not getattr(self, field) and descriptor.get(key):
                    resolved[field] = descriptor[key]
                    logger.info(f"Resolved {field} from deployment descriptor {location}")

        config = replace(self, **resolved)
        missing = [
            field
            for field in (*CHAIN_A_DESCRIPTOR_KEYS, *CHAIN_B_DESCRIPTOR_KEYS)
            if not getattr(config, field)
        ]
        if missing:
            raise ConfigError(
                f"Missing contract addresses ({', '.join(missing)}). "
                "Set env vars or provide deployment files for chain A/B."
            )
        return config


def load_deployment_descriptor(location: str) -> Optional[Dict[str, str]]:
    """
    Loads a deployment descriptor from a local path or an http(s) URL.

    Returns None when a local file does not exist.
    """
    if location.startswith(("http://", "https://")):
        try:
            response = requests.get(location, timeout=10)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ConfigError(f"Could not fetch deployment descriptor from {location}: {e}") from e
    else:
        if not os.path.exists(location):
            logger.debug(f"Deployment descriptor {location} not found.")
            return None
        try:
            with open(location, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read deployment descriptor {location}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Deployment descriptor {location} must be a JSON object")
    return data
