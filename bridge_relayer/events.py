from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

# (chain tag, contract role, event name) for every event the relayer watches.
WATCHED_EVENTS = (
    ("A", "bridge_lock", "Locked"),
    ("B", "bridge_mint", "Burned"),
    ("B", "governance_voting", "ProposalPassed"),
)


@dataclass(frozen=True)
class MirroredAction:
    """The single on-chain call that mirrors an observed event."""
    chain: str
    contract: str
    method: str
    args: Tuple[Any, ...] = ()

    def describe(self) -> str:
        return f"{self.method}({', '.join(str(arg) for arg in self.args)}) on chain {self.chain}"


@dataclass(frozen=True)
class Locked:
    """Tokens locked in the vault on chain A."""
    user: str
    amount: int
    nonce: int
    block_number: int = 0
    log_index: int = 0

    chain = "A"
    kind = "LOCK"

    @property
    def key(self) -> str:
        return event_key(self.chain, self.kind, self.nonce)

    def mirrored_action(self) -> MirroredAction:
        return MirroredAction("B", "bridge_mint", "mintWrapped", (self.user, self.amount, self.nonce))


@dataclass(frozen=True)
class Burned:
    """Wrapped tokens burned on chain B."""
    user: str
    amount: int
    nonce: int
    block_number: int = 0
    log_index: int = 0

    chain = "B"
    kind = "BURN"

    @property
    def key(self) -> str:
        return event_key(self.chain, self.kind, self.nonce)

    def mirrored_action(self) -> MirroredAction:
        return MirroredAction("A", "bridge_lock", "unlock", (self.user, self.amount, self.nonce))


@dataclass(frozen=True)
class ProposalPassed:
    """A governance proposal passed on chain B. The proposal id is its nonce."""
    proposal_id: int
    data: bytes = b""
    block_number: int = 0
    log_index: int = 0

    chain = "B"
    kind = "PROPOSAL"

    @property
    def nonce(self) -> int:
        return self.proposal_id

    @property
    def key(self) -> str:
        return event_key(self.chain, self.kind, self.proposal_id)

    def mirrored_action(self) -> MirroredAction:
        return MirroredAction("A", "governance_emergency", "pauseBridge")


BridgeEvent = Union[Locked, Burned, ProposalPassed]


def event_key(chain: str, kind: str, nonce: Any) -> str:
    """Idempotency key in the form '<chainTag>_<eventKind>_<nonce>'."""
    return f"{chain}_{kind}_{nonce}"


def decode_event(event_name: str, log: Dict[str, Any]) -> BridgeEvent:
    """
    Builds the typed event from a decoded log entry.

    Args:
        event_name: One of 'Locked', 'Burned' or 'ProposalPassed'.
        log: A decoded log with 'args', 'blockNumber' and 'logIndex'.
    """
    args = log["args"]
    position = {"block_number": int(log["blockNumber"]), "log_index": int(log["logIndex"])}

    if event_name == "Locked":
        return Locked(user=args["user"], amount=int(args["amount"]), nonce=int(args["nonce"]), **position)
    if event_name == "Burned":
        return Burned(user=args["user"], amount=int(args["amount"]), nonce=int(args["nonce"]), **position)
    if event_name == "ProposalPassed":
        return ProposalPassed(proposal_id=int(args["proposalId"]), data=bytes(args["data"]), **position)
    raise ValueError(f"Unknown event '{event_name}'")
