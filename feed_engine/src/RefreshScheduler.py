"""RefreshScheduler: Per-symbol cancellable background refresh.

Each tracked symbol owns at most one timer task. The feed manager re-arms
the timer at the symbol's refresh interval after every successful fetch.
When a refresh fails, the scheduler re-arms it with jittered exponential
backoff so that failing symbols do not retry in lockstep.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Keyed set of one-shot refresh timers.

    :ivar base_backoff: Delay after the first consecutive failure.
    :ivar max_backoff: Cap on the failure delay.
    :ivar jitter: Relative jitter applied to failure delays (0.2 = +/-20%).
    """

    def __init__(
        self,
        refresh: Callable[[str], Awaitable[Any]],
        base_backoff: float = 1.0,
        max_backoff: float = 60.0,
        jitter: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler.

        :param refresh: Coroutine function called with the symbol when its
            timer fires.
        :param base_backoff: Delay in seconds after the first failure.
        :param max_backoff: Maximum failure delay in seconds.
        :param jitter: Relative jitter for failure delays, in [0, 1).
        :param rng: Random source for jitter.
        """
        if base_backoff <= 0 or max_backoff < base_backoff:
            raise ValueError("Require 0 < base_backoff <= max_backoff")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

        self._refresh = refresh
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._tasks: dict[str, asyncio.Task] = {}
        self._failures: dict[str, int] = {}
        # Timers past their sleep, currently running the refresh
        self._firing: set[asyncio.Task] = set()

    def schedule(self, symbol: str, delay: float) -> None:
        """Arm (or re-arm) the timer for a symbol.

        Any sleeping timer for the symbol is cancelled. A timer that is
        already running its refresh is left to finish, so a refresh may
        re-arm its own symbol.

        :param symbol: Token symbol.
        :param delay: Seconds until the refresh fires.
        """
        existing = self._tasks.get(symbol)
        if existing is not None and existing not in self._firing:
            existing.cancel()
        self._tasks[symbol] = asyncio.create_task(
            self._run(symbol, max(0.0, delay)), name=f"refresh-{symbol}"
        )
        logger.debug(f"{symbol}: refresh scheduled in {delay:.1f}s")

    def failure_delay(self, failures: int) -> float:
        """Jittered exponential delay after ``failures`` consecutive failures."""
        delay = min(self.base_backoff * (2 ** (failures - 1)), self.max_backoff)
        return delay * (1 + self._rng.uniform(-self.jitter, self.jitter))

    async def _run(self, symbol: str, delay: float) -> None:
        current = asyncio.current_task()
        try:
            await asyncio.sleep(delay)
            self._firing.add(current)
            await self._refresh(symbol)
            self._failures[symbol] = 0
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failures = self._failures.get(symbol, 0) + 1
            self._failures[symbol] = failures
            retry_in = self.failure_delay(failures)
            logger.warning(
                f"{symbol}: background refresh failed ({e}); "
                f"retry #{failures} in {retry_in:.1f}s"
            )
            self.schedule(symbol, retry_in)
        finally:
            self._firing.discard(current)
            if self._tasks.get(symbol) is current:
                del self._tasks[symbol]

    def is_scheduled(self, symbol: str) -> bool:
        return symbol in self._tasks

    def consecutive_failures(self, symbol: str) -> int:
        return self._failures.get(symbol, 0)

    @property
    def symbols(self) -> list[str]:
        return list(self._tasks)

    def cancel(self, symbol: str) -> bool:
        """Cancel a symbol's timer.

        :returns: True if a timer was pending.
        """
        self._failures.pop(symbol, None)
        task = self._tasks.pop(symbol, None)
        if task is None:
            return False
        task.cancel()
        logger.debug(f"{symbol}: refresh cancelled")
        return True

    async def cancel_all(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._failures.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
