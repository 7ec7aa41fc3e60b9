"""
Fixed-window rate limiting keyed by client identity.

Each limiter instance owns its counter map and the lifecycle of the sweep task
that purges expired windows. State is process-local: limits hold per process,
not across horizontally scaled instances.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from fastapi import Request

from logging_setup import get_logger, Component


logger = get_logger(Component.RATE_LIMITER)


@dataclass
class RateLimitRecord:
    """Counter for one key within one window."""

    count: int
    window_reset_time: float


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_in: float  # seconds until the current window resets

    @property
    def retry_after(self) -> int:
        """Whole seconds to wait before the window resets."""
        return math.ceil(self.reset_in)

    def headers(self) -> Dict[str, str]:
        """X-RateLimit-* headers, plus Retry-After when denied."""
        reset_at = datetime.now(timezone.utc) + timedelta(seconds=self.reset_in)
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": reset_at.isoformat(),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class FixedWindowRateLimiter:
    """
    Fixed-window request counter.

    Usage:
        limiter = FixedWindowRateLimiter(limit=10, window_seconds=60, name="chat")
        await limiter.start()
        result = limiter.check("203.0.113.7")
        if not result.allowed:
            ...
        await limiter.stop()

    Windows expire lazily on lookup; the sweep task only bounds memory.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        *,
        name: str = "default",
        sweep_interval_seconds: float = 300.0,
        now: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.limit = limit
        self.window_seconds = float(window_seconds)
        self.name = name
        self.sweep_interval_seconds = sweep_interval_seconds

        self._now = now
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def check(self, key: str) -> RateLimitResult:
        """Count one request for key and report whether it is allowed."""
        with self._lock:
            now = self._now()
            record = self._records.get(key)

            if record is None or now >= record.window_reset_time:
                self._records[key] = RateLimitRecord(
                    count=1,
                    window_reset_time=now + self.window_seconds,
                )
                return RateLimitResult(
                    allowed=True,
                    limit=self.limit,
                    remaining=self.limit - 1,
                    reset_in=self.window_seconds,
                )

            reset_in = record.window_reset_time - now

            if record.count >= self.limit:
                result = RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_in=reset_in,
                )
            else:
                record.count += 1
                result = RateLimitResult(
                    allowed=True,
                    limit=self.limit,
                    remaining=self.limit - record.count,
                    reset_in=reset_in,
                )

        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                limiter=self.name,
                retry_after=result.retry_after,
            )
        return result

    def reset(self, key: str) -> None:
        """Forget the window for a key."""
        with self._lock:
            self._records.pop(key, None)

    def sweep(self) -> int:
        """Remove expired windows. Returns the number of records removed."""
        with self._lock:
            now = self._now()
            expired = [k for k, r in self._records.items() if now >= r.window_reset_time]
            for key in expired:
                del self._records[key]

        if expired:
            logger.debug("Swept expired rate limit windows", limiter=self.name, removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start(self) -> None:
        """Start the periodic sweep task. Idempotent."""
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name=f"ratelimit-sweep-{self.name}")
        logger.debug(
            "Rate limit sweep started",
            limiter=self.name,
            interval_seconds=self.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish. Safe to call twice."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Rate limit sweep stopped", limiter=self.name)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()


def client_key(request: Request) -> str:
    """
    Derive the client identity used as the rate limit key.

    Priority: first X-Forwarded-For hop, X-Real-IP, socket peer, "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"
