"""
Submission throttling policies.

Two independent policies guard intake:

1. Submitter cooldown - one accepted submission per identity per window
   (command path, keyed by Discord user id)
2. Origin rate cap - at most N requests from one client address within a
   lookback window (form path, keyed by network origin)

They never share identity keys. A third, coarser limiter caps raw HTTP API
calls per client address regardless of outcome.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional

from redeem_panel.storage.repository import (
    Clock,
    CooldownTracker,
    RequestStore,
    utcnow,
)


@dataclass(frozen=True)
class ThrottleDecision:
    """Result of a throttle check."""
    allowed: bool
    retry_after: timedelta = timedelta(0)
    message: str = ""


ALLOW = ThrottleDecision(allowed=True)


def _format_wait(wait: timedelta) -> str:
    minutes, seconds = divmod(int(wait.total_seconds()), 60)
    if minutes and seconds:
        return f"{minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


@dataclass(frozen=True)
class SubmitterCooldownPolicy:
    """One accepted submission per submitter identity per window."""
    window: timedelta = timedelta(minutes=10)

    def __post_init__(self):
        if self.window <= timedelta(0):
            raise ValueError("cooldown window must be > 0")

    def check(self, identity: str, cooldowns: CooldownTracker) -> ThrottleDecision:
        remaining = cooldowns.remaining(identity, self.window)
        if remaining <= timedelta(0):
            return ALLOW
        window_minutes = int(self.window.total_seconds() // 60)
        return ThrottleDecision(
            allowed=False,
            retry_after=remaining,
            message=(
                f"You must wait {window_minutes} minutes between redeem requests. "
                f"Try again in {_format_wait(remaining)}."
            ),
        )


@dataclass(frozen=True)
class OriginRatePolicy:
    """Reject once `max_requests` or more requests from one origin fall inside the lookback."""
    max_requests: int = 3
    lookback: timedelta = timedelta(minutes=15)

    def __post_init__(self):
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if self.lookback <= timedelta(0):
            raise ValueError("lookback must be > 0")

    def check(self, origin: str, store: RequestStore) -> ThrottleDecision:
        recent = store.recent_by_origin(origin, self.lookback)
        if len(recent) < self.max_requests:
            return ALLOW

        # The window reopens when the oldest counted request ages out
        oldest = recent[self.max_requests - 1]
        retry_after = max(
            oldest.submitted_at + self.lookback - store.clock(), timedelta(0)
        )
        return ThrottleDecision(
            allowed=False,
            retry_after=retry_after,
            message=(
                "Too many recent requests from this IP. "
                "Please wait before trying again."
            ),
        )


class RequestRateLimiter:
    """Sliding-window cap on raw API calls per client address.

    Calls count whatever the route later answers, so refused submissions
    cannot be repeated without limit. Calls refused here are not counted.
    In-memory; resets on restart.
    """

    def __init__(self, max_requests: int = 5, window: timedelta = timedelta(minutes=15),
                 clock: Optional[Clock] = None):
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window <= timedelta(0):
            raise ValueError("window must be > 0")
        self.max_requests = max_requests
        self.window = window
        self.clock = clock or utcnow
        self._hits: Dict[str, Deque[datetime]] = {}
        self._lock = threading.Lock()

    def hit(self, address: str) -> ThrottleDecision:
        """Count one call from `address` unless it is already over the cap."""
        now = self.clock()
        cutoff = now - self.window
        with self._lock:
            hits = self._hits.setdefault(address, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return ThrottleDecision(
                    allowed=False,
                    retry_after=hits[0] + self.window - now,
                    message="Too many requests from this IP, please try again later.",
                )
            hits.append(now)
            return ALLOW
