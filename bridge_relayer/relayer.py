import heapq
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .chain import ChainClient, build_clients
from .config import Config
from .cursor import CursorAdvancer, ScanRange
from .dispatcher import EventDispatcher
from .events import WATCHED_EVENTS, BridgeEvent
from .retry import RetryPolicy
from .state import CHAINS, StateDB

logger = logging.getLogger(__name__)


class CrossChainRelayer:
    """Orchestrates the polling loop: scan both chains, relay events, persist progress."""

    def __init__(
        self,
        config: Config,
        clients: Mapping[str, ChainClient],
        state_db: StateDB,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.config = config
        self.clients = clients
        self.state_db = state_db
        self.advancer = CursorAdvancer(config.confirmation_depth, config.rewind_reset_scope)
        self.dispatcher = EventDispatcher(
            clients,
            state_db,
            RetryPolicy(config.submit_retries, config.retry_base_delay_seconds, sleep=sleep or asyncio.sleep),
        )
        self._sleep = sleep or self._interruptible_sleep
        self._stop_event = asyncio.Event()

    @classmethod
    def from_config(cls, config: Config) -> "CrossChainRelayer":
        """
        Startup: validates config, resolves contract addresses and loads state.

        Raises:
            ConfigError: Required parameters or contract addresses are missing.
            CorruptStateError: The state file exists but cannot be parsed.
        """
        config.validate()
        config = config.with_resolved_addresses()
        state_db = StateDB(config.state_path)
        logger.info(f"[relayer] state file: {state_db.path}")
        logger.info(
            f"[relayer] loaded state: processed={len(state_db.state.processed)}, "
            f"cursorA={state_db.cursor('A')}, cursorB={state_db.cursor('B')}"
        )
        clients = build_clients(config)
        for client in clients.values():
            client.connect()
        return cls(config, clients, state_db)

    @property
    def is_running(self) -> bool:
        return not self._stop_event.is_set()

    async def run_cycle(self) -> None:
        """
        Executes a single poll iteration. Any exception leaves cursors and
        processed keys exactly as last persisted.
        """
        latest = await asyncio.gather(*(self.clients[chain].get_height() for chain in CHAINS))
        heights: Dict[str, int] = dict(zip(CHAINS, latest))

        if self.advancer.detect_rewind(self.state_db.state, heights):
            self.state_db.save()

        for chain in CHAINS:
            scan_range = self.advancer.scan_range(self.state_db.state, chain, heights[chain])
            if scan_range is None:
                logger.debug(f"Chain {chain}: no new confirmed blocks (head {heights[chain]}).")
                continue
            for chunk in scan_range.chunks(self.config.max_block_range):
                await self._process_range(chain, chunk)

    async def _process_range(self, chain: str, scan_range: ScanRange) -> None:
        events = await self.fetch_events(chain, scan_range)
        await self.dispatcher.dispatch_all(events)
        self.state_db.advance_cursor(chain, scan_range.to_block)
        logger.info(
            f"Chain {chain}: processed blocks {scan_range.from_block}-{scan_range.to_block} "
            f"({len(events)} events)"
        )

    async def fetch_events(self, chain: str, scan_range: ScanRange) -> List[BridgeEvent]:
        """
        Queries every watched event source of a chain over the range.

        Results of several sources are merged by (block, log index); each
        source's own order is kept as returned.
        """
        client = self.clients[chain]
        batches = await asyncio.gather(*(
            client.query_logs(contract, event_name, scan_range.from_block, scan_range.to_block)
            for event_chain, contract, event_name in WATCHED_EVENTS
            if event_chain == chain
        ))
        return list(heapq.merge(*batches, key=lambda event: (event.block_number, event.log_index)))

    async def start(self, max_iterations: Optional[int] = None) -> None:
        """Starts the main polling loop. Runs until stop() or max_iterations."""
        logger.info("Cross-Chain Relayer has started.")
        iterations = 0
        while self.is_running:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"[relayer] loop error: {e}")

            iterations += 1
            if max_iterations is not None and iterations >= max_iterations:
                break
            await self._sleep(self.config.poll_interval_seconds)
        logger.info("Cross-Chain Relayer has stopped.")

    def stop(self) -> None:
        """Stops the loop after the current iteration."""
        logger.info("Stopping Cross-Chain Relayer...")
        self._stop_event.set()

    async def _interruptible_sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
