from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: float
    max_requests: int
    key_prefix: str


# Named limits per endpoint class.
FACE_SWAP = RateLimitConfig(window_seconds=60 * 60, max_requests=10, key_prefix="rl:faceswap")
GUEST_TRIAL = RateLimitConfig(window_seconds=365 * 24 * 60 * 60, max_requests=1, key_prefix="rl:guest")
IMAGE_UPLOAD = RateLimitConfig(window_seconds=10 * 60, max_requests=20, key_prefix="rl:upload")
API_GENERAL = RateLimitConfig(window_seconds=60, max_requests=100, key_prefix="rl:api")
LOGIN = RateLimitConfig(window_seconds=15 * 60, max_requests=5, key_prefix="rl:login")
GALLERY_LIKE = RateLimitConfig(window_seconds=10 * 60, max_requests=30, key_prefix="rl:like")


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }
        if self.retry_after is not None:
            h["Retry-After"] = str(self.retry_after)
        return h


class RateLimitStore(Protocol):
    """
    Backing store for fixed-window counters.

    increment() must start a fresh window (count=1, reset_at=now+window) when
    the key is missing or its window has passed, and otherwise add one.
    A shared store (KV/cache) implementing this makes the limiter safe across
    instances; InMemoryRateLimitStore is single-process only.
    """

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        ...

    async def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        ...

    async def expire(self, key: str) -> None:
        ...

    async def sweep(self, now: float) -> int:
        ...


class InMemoryRateLimitStore:
    """Process-local store. Entries live until sweep() evicts expired windows."""

    def __init__(self) -> None:
        self._entries: Dict[str, RateLimitEntry] = {}

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    async def increment(self, key: str, window_seconds: float, now: float) -> RateLimitEntry:
        entry = self._entries.get(key)
        if entry is None or now > entry.reset_at:
            entry = RateLimitEntry(count=0, reset_at=now + window_seconds)
            self._entries[key] = entry
        entry.count += 1
        return entry

    async def expire(self, key: str) -> None:
        self._entries.pop(key, None)

    async def sweep(self, now: float) -> int:
        stale = [k for k, e in self._entries.items() if now > e.reset_at]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class RateLimiter:
    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock

    async def check(self, config: RateLimitConfig, identifier: str) -> RateLimitResult:
        now = self.clock()
        key = f"{config.key_prefix}:{identifier}"
        entry = await self.store.increment(key, config.window_seconds, now)

        allowed = entry.count <= config.max_requests
        remaining = max(0, config.max_requests - entry.count)
        retry_after = None
        if not allowed:
            retry_after = max(1, int(math.ceil(entry.reset_at - now)))

        if not allowed:
            logger.info(
                "rate_limit_blocked",
                extra={"key": key, "count": entry.count, "limit": config.max_requests, "retry_after": retry_after},
            )

        return RateLimitResult(
            allowed=allowed,
            limit=config.max_requests,
            remaining=remaining,
            reset_at=entry.reset_at,
            retry_after=retry_after,
        )

    async def reset(self, config: RateLimitConfig, identifier: str) -> None:
        await self.store.expire(f"{config.key_prefix}:{identifier}")

    async def sweep(self) -> int:
        evicted = await self.store.sweep(self.clock())
        if evicted:
            logger.debug("rate_limit_sweep", extra={"evicted": evicted})
        return evicted


def get_client_ip(headers: Mapping[str, str]) -> str:
    forwarded = (headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for h in ("x-real-ip", "cf-connecting-ip"):
        v = (headers.get(h) or "").strip()
        if v:
            return v
    return "unknown"


def get_rate_limit_identifier(headers: Mapping[str, str], user_id: Optional[str] = None) -> str:
    return user_id or get_client_ip(headers)


async def run_sweeper(limiter: RateLimiter, interval_seconds: float, stop: asyncio.Event) -> None:
    """Evict expired windows every interval until `stop` is set."""
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            try:
                await limiter.sweep()
            except Exception:
                logger.exception("rate_limit_sweep_failed")


rate_limiter = RateLimiter()
