import logging
from typing import Dict, Iterator, NamedTuple, Optional

from .state import CHAINS, RelayState

logger = logging.getLogger(__name__)


class ScanRange(NamedTuple):
    """Inclusive block range [from_block, to_block]."""
    from_block: int
    to_block: int

    def chunks(self, size: int) -> Iterator["ScanRange"]:
        """Splits the range into consecutive pieces of at most `size` blocks (0 = no split)."""
        if size <= 0:
            yield self
            return
        for start in range(self.from_block, self.to_block + 1, size):
            yield ScanRange(start, min(start + size - 1, self.to_block))


def next_scan_range(latest: int, cursor: int, confirmation_depth: int) -> Optional[ScanRange]:
    """
    Computes the next settled range to scan.

    Only blocks at or below `latest - confirmation_depth` are acted on.
    Returns None when nothing new is settled.
    """
    target = latest - confirmation_depth
    if target <= cursor:
        return None
    return ScanRange(cursor + 1, target)


class CursorAdvancer:
    """Decides per-chain scan ranges and resets progress when a chain rewinds."""

    def __init__(self, confirmation_depth: int, reset_scope: str = "all"):
        self.confirmation_depth = confirmation_depth
        self.reset_scope = reset_scope

    def detect_rewind(self, state: RelayState, heights: Dict[str, int]) -> bool:
        """
        Resets cursors and processed keys if any chain's head is behind its cursor.

        With the 'all' scope both chains restart from genesis and the processed
        set is cleared. With the 'chain' scope only the rewound chain's cursor
        and the keys of events originating there are dropped.

        Returns:
            True if the state was reset and must be persisted.
        """
        rewound = [chain for chain in CHAINS if state.cursors[chain] > heights[chain]]
        if not rewound:
            return False

        logger.warning(
            f"Detected chain rewind (latestA={heights['A']}, latestB={heights['B']}, "
            f"cursorA={state.cursors['A']}, cursorB={state.cursors['B']}); resetting state"
        )
        if self.reset_scope == "chain":
            for chain in rewound:
                state.cursors[chain] = 0
                prefix = f"{chain}_"
                state.processed = {
                    key: flag for key, flag in state.processed.items() if not key.startswith(prefix)
                }
        else:
            state.processed = {}
            for chain in CHAINS:
                state.cursors[chain] = 0
        return True

    def scan_range(self, state: RelayState, chain: str, latest: int) -> Optional[ScanRange]:
        return next_scan_range(latest, state.cursors[chain], self.confirmation_depth)
