import os
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any

from .exceptions import CorruptStateError

logger = logging.getLogger(__name__)

CHAINS = ("A", "B")

# On-disk names of the per-chain cursors.
CURSOR_FIELDS = {"A": "chainA", "B": "chainB"}


@dataclass
class RelayState:
    """Processed event keys and per-chain scan cursors. The only persisted entity."""
    processed: Dict[str, bool] = field(default_factory=dict)
    cursors: Dict[str, int] = field(default_factory=lambda: {chain: 0 for chain in CHAINS})

    def is_processed(self, key: str) -> bool:
        return bool(self.processed.get(key))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": dict(self.processed),
            "cursors": {CURSOR_FIELDS[chain]: self.cursors[chain] for chain in CHAINS},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RelayState":
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        processed = data.get("processed")
        cursors = data.get("cursors")
        processed = {} if processed is None else processed
        cursors = {} if cursors is None else cursors
        if not isinstance(processed, dict) or not isinstance(cursors, dict):
            raise ValueError("'processed' and 'cursors' must be objects")

        parsed_cursors = {}
        for chain in CHAINS:
            value = cursors.get(CURSOR_FIELDS[chain], 0) or 0
            if isinstance(value, bool) or not isinstance(value, (int, str)):
                raise ValueError(f"cursor {CURSOR_FIELDS[chain]} is not an integer")
            parsed_cursors[chain] = int(value)
            if parsed_cursors[chain] < 0:
                raise ValueError(f"cursor {CURSOR_FIELDS[chain]} is negative")

        return cls(
            processed={str(key): True for key, flag in processed.items() if flag},
            cursors=parsed_cursors,
        )


def load_state(path: str) -> RelayState:
    """
    Loads state from the JSON file. Returns a zero-value state if the file doesn't exist.

    Raises:
        CorruptStateError: If the file exists but cannot be parsed. There is
            no safe automatic repair, so this is fatal at startup.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)

    if not os.path.exists(path):
        logger.info(f"State file '{path}' not found. Starting with default state.")
        return RelayState()

    try:
        with open(path, "r", encoding="utf-8") as f:
            return RelayState.from_dict(json.load(f))
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
        raise CorruptStateError(path, str(e)) from e


def persist_state(path: str, state: RelayState) -> None:
    """
    Writes the full state atomically: a sibling temporary file is written and
    flushed to disk, then renamed over the target. A reader or a crash never
    observes a half-written file.
    """
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


class StateDB:
    """
    Owns the in-memory RelayState and its file. Every mutating method
    persists before returning.
    """

    def __init__(self, path: str):
        self.path = os.path.abspath(path)
        self.state = load_state(self.path)

    def is_processed(self, key: str) -> bool:
        return self.state.is_processed(key)

    def cursor(self, chain: str) -> int:
        return self.state.cursors[chain]

    def mark_processed(self, key: str) -> None:
        self.state.processed[key] = True
        persist_state(self.path, self.state)

    def advance_cursor(self, chain: str, block_number: int) -> None:
        current = self.state.cursors[chain]
        if block_number < current:
            raise ValueError(
                f"Refusing to move cursor {CURSOR_FIELDS[chain]} backwards ({current} -> {block_number})"
            )
        self.state.cursors[chain] = block_number
        persist_state(self.path, self.state)

    def save(self) -> None:
        persist_state(self.path, self.state)
