"""
Rate limiting module for IP-based request throttling.

Two tiers protect the shared Gemini quota:
- per identity: a soft limit after which requests are spaced by a delay
  window, and a hard limit after which requests are refused for the day
- global: a daily ceiling across all identities

Counters reset lazily on the first call of a new local calendar day.
State is process-local; several workers or instances each keep their own
counters, so a shared store with atomic increments would be needed there.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from src.config import logger

ALLOW = "allow"
DELAY = "delay"
REJECT = "reject"

GLOBAL_LIMIT_MESSAGE = "Daily service limit reached. Please try again tomorrow!"
IDENTITY_LIMIT_MESSAGE = (
    "Daily limit reached. Thanks for using our service! Please try again tomorrow."
)


@dataclass(slots=True)
class RateRecord:
    count: int
    first_request_at: datetime
    last_request_at: datetime


@dataclass(slots=True)
class RateLimitDecision:
    """Outcome of a rate-limit check for one identity."""

    outcome: str
    message: Optional[str] = None
    retry_after_seconds: Optional[int] = None
    remaining_per_identity: Optional[int] = None
    remaining_global: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == ALLOW


@dataclass(slots=True)
class RateLimitStats:
    total_identities: int
    global_daily_count: int
    global_remaining: int


class RateLimiter:
    """In-memory two-tier daily rate limiter keyed by client identity."""

    def __init__(
        self,
        soft_limit: int = 30,
        hard_limit: int = 40,
        global_daily_limit: int = 400,
        delay_seconds: int = 60,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.soft_limit = soft_limit
        self.hard_limit = hard_limit
        self.global_daily_limit = global_daily_limit
        self.delay_seconds = delay_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, RateRecord] = {}
        self._daily_count = 0
        self._window_started_at: Optional[datetime] = None

    def check(self, identity: str) -> RateLimitDecision:
        """Decide whether ``identity`` may proceed. Does not consume quota."""
        with self._lock:
            return self._check_locked(identity, self._clock())

    def record(self, identity: str) -> None:
        """Charge one request against ``identity`` and the global counter."""
        with self._lock:
            self._record_locked(identity, self._clock())

    def try_acquire(self, identity: str) -> RateLimitDecision:
        """Check and, when allowed, record in one step."""
        with self._lock:
            now = self._clock()
            decision = self._check_locked(identity, now)
            if decision.allowed:
                self._record_locked(identity, now)
            return decision

    def get_stats(self) -> RateLimitStats:
        with self._lock:
            self._reset_if_new_day(self._clock())
            return RateLimitStats(
                total_identities=len(self._records),
                global_daily_count=self._daily_count,
                global_remaining=max(0, self.global_daily_limit - self._daily_count),
            )

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
            self._daily_count = 0
            self._window_started_at = None

    # -------------------------
    # Internals (caller holds the lock)
    # -------------------------
    def _reset_if_new_day(self, now: datetime) -> None:
        if self._window_started_at is not None and not _is_new_day(
            self._window_started_at, now
        ):
            return

        if self._window_started_at is not None:
            logger.info(
                "Daily rate limit window rolled over",
                extra={"previous_daily_count": self._daily_count},
            )
        self._daily_count = 0
        self._window_started_at = now

        stale = [
            identity
            for identity, record in self._records.items()
            if _is_new_day(record.first_request_at, now)
        ]
        for identity in stale:
            del self._records[identity]

    def _check_locked(self, identity: str, now: datetime) -> RateLimitDecision:
        self._reset_if_new_day(now)

        if self._daily_count >= self.global_daily_limit:
            logger.warning(
                "Global daily limit reached",
                extra={"identity": identity, "daily_count": self._daily_count},
            )
            return RateLimitDecision(outcome=REJECT, message=GLOBAL_LIMIT_MESSAGE)

        record = self._records.get(identity) or RateRecord(
            count=0, first_request_at=now, last_request_at=now
        )

        if record.count >= self.hard_limit:
            logger.warning(
                "Identity daily limit reached",
                extra={"identity": identity, "count": record.count},
            )
            return RateLimitDecision(outcome=REJECT, message=IDENTITY_LIMIT_MESSAGE)

        if record.count >= self.soft_limit:
            elapsed = (now - record.last_request_at).total_seconds()
            if elapsed < self.delay_seconds:
                retry_after = math.ceil(self.delay_seconds - elapsed)
                logger.info(
                    "Identity throttled",
                    extra={
                        "identity": identity,
                        "count": record.count,
                        "retry_after": retry_after,
                    },
                )
                return RateLimitDecision(
                    outcome=DELAY,
                    message=f"Please wait {retry_after} seconds before your next try-on.",
                    retry_after_seconds=retry_after,
                )

        return RateLimitDecision(
            outcome=ALLOW,
            remaining_per_identity=max(0, self.soft_limit - record.count),
            remaining_global=max(0, self.global_daily_limit - self._daily_count),
        )

    def _record_locked(self, identity: str, now: datetime) -> None:
        self._reset_if_new_day(now)

        record = self._records.get(identity)
        if record is None:
            record = RateRecord(count=0, first_request_at=now, last_request_at=now)
            self._records[identity] = record

        record.count += 1
        record.last_request_at = now
        self._daily_count += 1

        logger.debug(
            "Request recorded",
            extra={
                "identity": identity,
                "count": record.count,
                "daily_count": self._daily_count,
            },
        )


def _is_new_day(since: datetime, now: datetime) -> bool:
    return since.date() != now.date()


__all__ = [
    "ALLOW",
    "DELAY",
    "REJECT",
    "RateLimiter",
    "RateLimitDecision",
    "RateLimitStats",
    "RateRecord",
]
