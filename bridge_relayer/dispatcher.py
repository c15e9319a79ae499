import logging
from typing import Iterable, Mapping

from .chain import ChainClient
from .events import BridgeEvent
from .exceptions import NonceAlreadyProcessed
from .retry import RetryPolicy
from .state import StateDB

logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Applies the mirrored action of each observed event exactly once per key.

    A key is marked processed only after the mirrored transaction is
    confirmed, and the state is persisted before the next event is handled.
    A crash between submission and persistence causes one resubmission,
    which the receiving contract rejects by nonce.
    """

    def __init__(self, clients: Mapping[str, ChainClient], state_db: StateDB, retry_policy: RetryPolicy):
        self.clients = clients
        self.state_db = state_db
        self.retry_policy = retry_policy

    async def dispatch_all(self, events: Iterable[BridgeEvent]) -> int:
        """
        Dispatches events strictly in the given order.

        Returns:
            Number of events whose mirrored action was applied in this call.
        """
        applied = 0
        for event in events:
            if await self.dispatch(event):
                applied += 1
        return applied

    async def dispatch(self, event: BridgeEvent) -> bool:
        """Returns False if the event was already processed and skipped."""
        key = event.key
        if self.state_db.is_processed(key):
            logger.debug(f"Skipping {key}: already processed.")
            return False

        action = event.mirrored_action()
        client = self.clients[action.chain]
        logger.info(f"Relaying {key} (block {event.block_number}) -> {action.describe()}")

        try:
            tx_hash = await self.retry_policy.run(
                lambda: client.submit(action.contract, action.method, action.args),
                f"{action.method} {key}",
            )
            await client.wait_for_confirmation(tx_hash)
        except NonceAlreadyProcessed as e:
            logger.info(f"{key} was already applied on chain {action.chain}; marking processed. ({e})")

        self.state_db.mark_processed(key)
        logger.info(f"Marked {key} processed.")
        return True
