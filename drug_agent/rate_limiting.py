"""Request pacing shared by the public drug registries (RxNav, DailyMed, openFDA)."""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, time as dtime
from typing import TYPE_CHECKING, Deque, Dict, Optional, Tuple

import pytz

if TYPE_CHECKING:
    from .config import AgentConfig

logger = logging.getLogger(__name__)

MAX_SINGLE_SLEEP_SECONDS = 60.0


def _now_monotonic() -> float:
    """Module-level function for monotonic time that tests can patch."""
    return time.monotonic()


class DailyQuotaExceeded(RuntimeError):
    """Raised when the daily registry quota is spent and waiting is disallowed."""


@dataclass(frozen=True)
class RateLimitStatus:
    in_window: int
    wait_seconds: float
    used_today: int
    daily_limit: Optional[int]
    remaining_today: Optional[int]
    seconds_until_daily_reset: float
    usage_by_registry: Dict[str, int] = field(default_factory=dict)

    @property
    def rate_limited(self) -> bool:
        return self.wait_seconds > 0


class RegistryRateLimiter:
    """Sliding one-second window with an optional daily quota.

    One limiter is shared by every registry client of a pipeline, so the label
    and adverse-event fan-outs are paced together. The daily counter rolls
    over at midnight in ``timezone``.

    Args:
        max_requests_per_second: Requests allowed in any one-second window.
        daily_request_limit: Requests allowed per day (None, 0, or -1 disables the quota).
        max_daily_wait_seconds: Longest wait for a quota reset before giving up.
    """

    def __init__(
        self,
        max_requests_per_second: int = 10,
        daily_request_limit: Optional[int] = None,
        timezone: str = "UTC",
        max_daily_wait_seconds: Optional[float] = 0,
    ) -> None:
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be positive")
        if daily_request_limit in (0, -1):
            daily_request_limit = None
        elif daily_request_limit is not None and daily_request_limit < 0:
            raise ValueError("daily_request_limit must be positive, 0, or -1 to disable")

        self.max_requests_per_second = max_requests_per_second
        self.daily_request_limit = daily_request_limit
        self.max_daily_wait_seconds = max_daily_wait_seconds
        self.tz = pytz.timezone(timezone)
        self._window: Deque[float] = deque()
        self._lock = threading.Lock()
        self._used_today = 0
        self._day = datetime.now(self.tz).date()
        self._by_registry: Counter = Counter()

    @classmethod
    def from_config(cls, config: "AgentConfig") -> "RegistryRateLimiter":
        return cls(
            max_requests_per_second=config.registry_max_requests_per_second,
            daily_request_limit=config.registry_daily_request_limit,
            timezone=config.rate_limit_timezone,
        )

    def _refresh(self) -> Tuple[float, datetime]:
        # caller holds self._lock
        now = _now_monotonic()
        local_now = datetime.now(self.tz)
        if local_now.date() != self._day:
            self._day = local_now.date()
            self._used_today = 0
            self._by_registry.clear()
        while self._window and now - self._window[0] >= 1.0:
            self._window.popleft()
        return now, local_now

    def _quota_spent(self) -> bool:
        return self.daily_request_limit is not None and self._used_today >= self.daily_request_limit

    def _seconds_until_daily_reset(self, local_now: datetime) -> float:
        midnight = self.tz.localize(datetime.combine(local_now.date(), dtime.min)) + timedelta(days=1)
        return max(0.0, (self.tz.normalize(midnight) - local_now).total_seconds())

    def _pending_wait(self, now: float, local_now: datetime) -> float:
        if self._quota_spent():
            return self._seconds_until_daily_reset(local_now)
        if len(self._window) < self.max_requests_per_second:
            return 0.0
        return max(0.0, 1.0 - (now - self._window[0]))

    def _take(self, now: float, registry: str) -> None:
        self._window.append(now)
        self._used_today += 1
        self._by_registry[registry] += 1

    def try_acquire(self, registry: str = "registry") -> float:
        """Consume a slot if one is free.

        Returns 0.0 on success, otherwise the seconds to wait before retrying.
        """
        with self._lock:
            now, local_now = self._refresh()
            wait = self._pending_wait(now, local_now)
            if wait <= 0:
                self._take(now, registry)
            return wait

    async def acquire_async(self, registry: str = "registry") -> None:
        """Wait for a free slot and consume it on behalf of ``registry``."""
        while True:
            wait = self.try_acquire(registry)
            if wait <= 0:
                return
            with self._lock:
                quota_spent = self._quota_spent()

            if quota_spent:
                if self.max_daily_wait_seconds is not None and wait > self.max_daily_wait_seconds:
                    raise DailyQuotaExceeded(
                        f"Daily registry quota of {self.daily_request_limit} reached; next reset in {wait:.0f}s"
                    )
                logger.warning("Daily registry quota reached, %s waits %.0fs", registry, wait)
            else:
                logger.debug("%s paced for %.2fs", registry, wait)
            await asyncio.sleep(min(wait, MAX_SINGLE_SLEEP_SECONDS))

    def status(self) -> RateLimitStatus:
        with self._lock:
            now, local_now = self._refresh()
            remaining = None
            if self.daily_request_limit is not None:
                remaining = max(self.daily_request_limit - self._used_today, 0)
            return RateLimitStatus(
                in_window=len(self._window),
                wait_seconds=self._pending_wait(now, local_now),
                used_today=self._used_today,
                daily_limit=self.daily_request_limit,
                remaining_today=remaining,
                seconds_until_daily_reset=self._seconds_until_daily_reset(local_now),
                usage_by_registry=dict(self._by_registry),
            )
