import json
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from eth_account import Account
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers.base import BaseProvider

from .events import BridgeEvent, decode_event
from .exceptions import ChainError, NonceAlreadyProcessed, TransactionReverted

logger = logging.getLogger(__name__)

# --- Contract ABIs (only the fragments the relayer touches) ---
BRIDGE_LOCK_ABI = json.loads('''
[
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "name": "user", "type": "address"},
            {"indexed": false, "name": "amount", "type": "uint256"},
            {"indexed": false, "name": "nonce", "type": "uint256"}
        ],
        "name": "Locked",
        "type": "event"
    },
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"}
        ],
        "name": "unlock",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]
''')

BRIDGE_MINT_ABI = json.loads('''
[
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "name": "user", "type": "address"},
            {"indexed": false, "name": "amount", "type": "uint256"},
            {"indexed": false, "name": "nonce", "type": "uint256"}
        ],
        "name": "Burned",
        "type": "event"
    },
    {
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"}
        ],
        "name": "mintWrapped",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]
''')

GOVERNANCE_VOTING_ABI = json.loads('''
[
    {
        "anonymous": false,
        "inputs": [
            {"indexed": true, "name": "proposalId", "type": "uint256"},
            {"indexed": false, "name": "data", "type": "bytes"}
        ],
        "name": "ProposalPassed",
        "type": "event"
    }
]
''')

GOVERNANCE_EMERGENCY_ABI = json.loads('''
[
    {
        "inputs": [],
        "name": "pauseBridge",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]
''')

CONTRACT_ABIS = {
    "bridge_lock": BRIDGE_LOCK_ABI,
    "bridge_mint": BRIDGE_MINT_ABI,
    "governance_voting": GOVERNANCE_VOTING_ABI,
    "governance_emergency": GOVERNANCE_EMERGENCY_ABI,
}

# Reverts meaning the receiving side already applied this effect, per method.
REPLAY_ERROR_SIGNATURES = {
    "mintWrapped": ("NonceAlreadyProcessed()", "NonceAlreadyProcessed(uint256)"),
    "unlock": ("NonceAlreadyProcessed()", "NonceAlreadyProcessed(uint256)"),
    "pauseBridge": ("EnforcedPause()",),
}


def error_selector(signature: str) -> str:
    return bytes(Web3.keccak(text=signature)[:4]).hex()


def is_replay_rejection(error: Exception, method: str) -> bool:
    """True if a revert of `method` carries the error its contract uses to reject a repeated effect."""
    signatures = REPLAY_ERROR_SIGNATURES.get(method, ())
    text = f"{error} {getattr(error, 'data', '') or ''}".lower()
    for signature in signatures:
        if signature.split("(")[0].lower() in text or error_selector(signature) in text:
            return True
    return False


class ChainClient(Protocol):
    """Capability the relayer core uses to read from and write to one chain."""
    tag: str

    async def get_height(self) -> int: ...

    async def query_logs(
        self, contract: str, event_name: str, from_block: int, to_block: int
    ) -> List[BridgeEvent]: ...

    async def submit(self, contract: str, method: str, args: Sequence[Any]) -> str: ...

    async def wait_for_confirmation(self, tx_hash: str) -> None: ...


class Web3ChainClient:
    """ChainClient backed by a web3 HTTP provider and a local signing key."""

    def __init__(
        self,
        tag: str,
        rpc_url: str,
        private_key: str,
        addresses: Dict[str, str],
        tx_timeout: int = 120,
        provider: Optional[BaseProvider] = None,
    ):
        """
        Initializes the client.
        Args:
            tag (str): Chain tag, 'A' or 'B'.
            rpc_url (str): The HTTP RPC endpoint for the chain's node.
            private_key (str): Key used to sign mirrored transactions.
            addresses (Dict[str, str]): Contract role -> address on this chain.
            tx_timeout (int): Seconds to wait for a transaction receipt.
            provider (BaseProvider): Overrides the HTTP provider built from rpc_url.
        """
        self.tag = tag
        self.rpc_url = rpc_url
        self.tx_timeout = tx_timeout
        self.web3 = Web3(provider or Web3.HTTPProvider(rpc_url))
        # inject POA compatibility for dev/sidechain nodes
        self.web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.account = Account.from_key(private_key)
        self.contracts: Dict[str, Contract] = {
            role: self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=CONTRACT_ABIS[role])
            for role, address in addresses.items()
        }

    def connect(self) -> bool:
        """Checks the RPC endpoint and logs the chain it serves."""
        logger.info(f"Connecting to chain {self.tag} node at {self.rpc_url}...")
        try:
            if not self.web3.is_connected():
                raise ConnectionError("Failed to connect to the node.")
            logger.info(
                f"Chain {self.tag} connected. Chain ID: {self.web3.eth.chain_id}, "
                f"signer: {self.account.address}"
            )
            return True
        except Exception as e:
            logger.warning(f"Chain {self.tag} not reachable yet ({self.rpc_url}): {e}")
            return False

    def _contract(self, role: str) -> Contract:
        try:
            return self.contracts[role]
        except KeyError:
            raise ValueError(f"Contract '{role}' is not configured on chain {self.tag}") from None

    async def get_height(self) -> int:
        try:
            return await asyncio.to_thread(lambda: self.web3.eth.block_number)
        except Exception as e:
            raise ChainError(f"Chain {self.tag}: could not fetch the latest block number: {e}") from e

    async def query_logs(
        self, contract: str, event_name: str, from_block: int, to_block: int
    ) -> List[BridgeEvent]:
        event = self._contract(contract).events[event_name]()
        try:
            logs = await asyncio.to_thread(event.get_logs, from_block=from_block, to_block=to_block)
        except Exception as e:
            raise ChainError(
                f"Chain {self.tag}: error scanning '{event_name}' in blocks {from_block}-{to_block}: {e}"
            ) from e
        if logs:
            logger.info(f"Chain {self.tag}: found {len(logs)} '{event_name}' events in blocks {from_block}-{to_block}")
        return [decode_event(event_name, log) for log in logs]

    def _build_and_send(self, contract: str, method: str, args: Tuple[Any, ...]) -> str:
        fn = self._contract(contract).functions[method](*args)
        tx = fn.build_transaction({
            "from": self.account.address,
            "nonce": self.web3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": self.web3.eth.chain_id,
        })
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return self.web3.to_hex(tx_hash)

    async def submit(self, contract: str, method: str, args: Sequence[Any]) -> str:
        try:
            tx_hash = await asyncio.to_thread(self._build_and_send, contract, method, tuple(args))
        except ContractLogicError as e:
            if is_replay_rejection(e, method):
                raise NonceAlreadyProcessed(f"Chain {self.tag}: {method} rejected as already applied: {e}") from e
            raise
        logger.info(f"Chain {self.tag}: submitted {method}. Hash: {tx_hash}")
        return tx_hash

    async def wait_for_confirmation(self, tx_hash: str) -> None:
        receipt = await asyncio.to_thread(
            self.web3.eth.wait_for_transaction_receipt, tx_hash, timeout=self.tx_timeout
        )
        if receipt["status"] != 1:
            raise TransactionReverted(tx_hash)
        logger.info(f"Chain {self.tag}: transaction {tx_hash} confirmed in block {receipt['blockNumber']}")


def build_clients(config) -> Dict[str, Web3ChainClient]:
    """Creates the chain A and chain B clients from a resolved Config."""
    return {
        "A": Web3ChainClient(
            "A",
            config.chain_a_rpc_url,
            config.signing_key,
            {
                "bridge_lock": config.bridge_lock_address,
                "governance_emergency": config.governance_emergency_address,
            },
            tx_timeout=config.tx_timeout_seconds,
        ),
        "B": Web3ChainClient(
            "B",
            config.chain_b_rpc_url,
            config.signing_key,
            {
                "bridge_mint": config.bridge_mint_address,
                "governance_voting": config.governance_voting_address,
            },
            tx_timeout=config.tx_timeout_seconds,
        ),
    }
