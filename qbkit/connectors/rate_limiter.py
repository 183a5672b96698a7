"""
Rolling-window rate limiter for the QuickBooks Online API.

QuickBooks enforces two independent budgets per company: 500 standard
requests per minute and 40 batch calls per minute. The limiter keeps the
timestamps of admitted requests for each budget and evicts those older than
the window on every admission, so the count inside any rolling window never
exceeds the ceiling.

Admission rejects instead of sleeping. Callers that prefer to wait use
``acquire`` with an explicit upper bound.
"""

import asyncio
import threading
import time
from collections import deque
from typing import Callable

import structlog
from pydantic import BaseModel, ConfigDict

from qbkit.config import Settings
from qbkit.errors import QBOThrottleError
from qbkit.models.enums import RateBudget

logger = structlog.get_logger()


class Permit(BaseModel):
    """Grant of capacity to send one request under a budget."""

    model_config = ConfigDict(frozen=True)

    budget: RateBudget
    issued_at: float
    window_count: int


class RateLimiter:
    """
    Thread-safe rolling-window limiter with one window per RateBudget.

    A permit counts against its budget from the moment it is issued, whether
    or not the request it guards ultimately succeeds.

    Attributes:
        limits: Ceiling per budget
        window_seconds: Rolling window length
    """

    def __init__(
        self,
        standard_limit: int = 500,
        batch_limit: int = 40,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the limiter.

        Args:
            standard_limit: Standard requests allowed per window
            batch_limit: Batch calls allowed per window
            window_seconds: Rolling window length in seconds
            clock: Monotonic time source, injectable for tests
        """
        self.limits: dict[RateBudget, int] = {
            RateBudget.STANDARD: standard_limit,
            RateBudget.BATCH: batch_limit,
        }
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._admitted: dict[RateBudget, deque[float]] = {budget: deque() for budget in RateBudget}

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimiter":
        return cls(
            standard_limit=settings.qb_rate_limit_standard,
            batch_limit=settings.qb_rate_limit_batch,
            window_seconds=settings.qb_rate_limit_window_seconds,
        )

    def _evict(self, budget: RateBudget, now: float) -> deque[float]:
        cutoff = now - self.window_seconds
        admitted = self._admitted[budget]
        while admitted and admitted[0] <= cutoff:
            admitted.popleft()
        return admitted

    def admit(self, budget: RateBudget = RateBudget.STANDARD) -> Permit:
        """
        Take one unit of capacity from a budget.

        Args:
            budget: Budget to draw from

        Returns:
            Permit for the admitted request

        Raises:
            QBOThrottleError: If the budget is exhausted for the current window;
                ``retry_after`` is the time until the oldest entry expires
        """
        with self._lock:
            now = self._clock()
            admitted = self._evict(budget, now)
            limit = self.limits[budget]

            if len(admitted) >= limit:
                retry_after = max(0.0, admitted[0] + self.window_seconds - now)
                logger.warning(
                    "rate_limit_blocked",
                    budget=budget.value,
                    limit=limit,
                    retry_after_seconds=round(retry_after, 3),
                )
                raise QBOThrottleError(
                    f"Local {budget.value} budget of {limit} requests per "
                    f"{self.window_seconds:g}s exhausted",
                    retry_after=retry_after,
                    budget=budget.value,
                )

            admitted.append(now)
            return Permit(budget=budget, issued_at=now, window_count=len(admitted))

    async def acquire(self, budget: RateBudget = RateBudget.STANDARD, max_wait: float = 60.0) -> Permit:
        """
        Admit a request, sleeping until capacity frees up for at most ``max_wait`` seconds.

        Raises:
            QBOThrottleError: If capacity will not free up within ``max_wait``
        """
        waited = 0.0
        while True:
            try:
                return self.admit(budget)
            except QBOThrottleError as e:
                if waited + e.retry_after > max_wait:
                    raise
                logger.info(
                    "rate_limit_waiting",
                    budget=budget.value,
                    sleep_seconds=round(e.retry_after, 3),
                )
                await asyncio.sleep(e.retry_after)
                waited += e.retry_after

    def usage(self, budget: RateBudget = RateBudget.STANDARD) -> int:
        """Number of requests admitted within the current rolling window."""
        with self._lock:
            return len(self._evict(budget, self._clock()))

    def remaining(self, budget: RateBudget = RateBudget.STANDARD) -> int:
        return max(0, self.limits[budget] - self.usage(budget))

    def snapshot(self) -> dict[str, int]:
        """Per-budget usage, for status reporting."""
        return {budget.value: self.usage(budget) for budget in RateBudget}
