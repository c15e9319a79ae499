import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

from .exceptions import NonceAlreadyProcessed

logger = logging.getLogger(__name__)

# Errors that will not change on a later attempt; surfaced immediately.
TERMINAL_EXCEPTIONS: Tuple[Type[BaseException], ...] = (NonceAlreadyProcessed,)


class RetryPolicy:
    """
    Retries an async call with linear backoff.

    Strategy:
    - Up to `attempts` calls in total
    - Sleep attempt * base_delay seconds after each failure (1x, 2x, 3x ...)
    - Terminal errors and the last failure are re-raised to the caller
    """

    def __init__(
        self,
        attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def run(self, func: Callable[[], Awaitable[Any]], label: str) -> Any:
        for attempt in range(1, self.attempts + 1):
            try:
                return await func()
            except TERMINAL_EXCEPTIONS:
                raise
            except Exception as e:
                logger.warning(f"[retry] {label} attempt {attempt}/{self.attempts} failed: {e}")
                if attempt == self.attempts:
                    logger.error(f"[retry] {label} giving up after {self.attempts} attempts")
                    raise
                await self._sleep(self.base_delay * attempt)
