"""
Pytest configuration and shared fakes for the relayer tests.
"""
import pytest

from bridge_relayer.config import Config
from bridge_relayer.exceptions import ChainError, NonceAlreadyProcessed
from bridge_relayer.relayer import CrossChainRelayer
from bridge_relayer.state import StateDB


class FakeChainClient:
    """
    In-memory ChainClient. Logs are returned in insertion order, and the
    receiving side rejects a second effect for the same (method, nonce).
    """

    def __init__(self, tag, height=0):
        self.tag = tag
        self.height = height
        self.logs = []
        self.queries = []
        self.submissions = []
        self.confirmed = []
        self.effects = []
        self.fail_submits = 0
        self.height_error = None
        self.confirm_error = None
        self._applied = set()

    def add_log(self, contract, event_name, event):
        self.logs.append((contract, event_name, event))

    async def get_height(self):
        if self.height_error is not None:
            raise self.height_error
        return self.height

    async def query_logs(self, contract, event_name, from_block, to_block):
        self.queries.append((contract, event_name, from_block, to_block))
        return [
            event
            for log_contract, log_name, event in self.logs
            if log_contract == contract and log_name == event_name and from_block <= event.block_number <= to_block
        ]

    async def submit(self, contract, method, args):
        args = tuple(args)
        self.submissions.append((contract, method, args))
        if self.fail_submits:
            self.fail_submits -= 1
            raise ChainError(f"chain {self.tag}: connection reset")
        replay_key = (method, args[-1] if args else None)
        if replay_key in self._applied:
            raise NonceAlreadyProcessed(f"{method} {replay_key[1]} already applied")
        self._applied.add(replay_key)
        self.effects.append((method, args))
        return "0x%064x" % len(self.submissions)

    async def wait_for_confirmation(self, tx_hash):
        if self.confirm_error is not None:
            raise self.confirm_error
        self.confirmed.append(tx_hash)

    def effect_total(self, method):
        return sum(args[1] for name, args in self.effects if name == method)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "data" / "processed_nonces.json")


@pytest.fixture
def config(state_path):
    return Config(
        chain_a_rpc_url="http://chain-a:8545",
        chain_b_rpc_url="http://chain-b:8545",
        signing_key="0x" + "11" * 32,
        confirmation_depth=3,
        poll_interval_ms=3000,
        state_path=state_path,
        bridge_lock_address="0x" + "a1" * 20,
        governance_emergency_address="0x" + "a2" * 20,
        bridge_mint_address="0x" + "b1" * 20,
        governance_voting_address="0x" + "b2" * 20,
        retry_base_delay_ms=1000,
    )


@pytest.fixture
def clients():
    return {"A": FakeChainClient("A"), "B": FakeChainClient("B")}


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_relayer(config, clients, sleep):
    """Builds a relayer over a fresh StateDB, as a process restart would."""
    def _make(**overrides):
        cfg = config
        if overrides:
            from dataclasses import replace
            cfg = replace(config, **overrides)
        return CrossChainRelayer(cfg, clients, StateDB(cfg.state_path), sleep=sleep)
    return _make
