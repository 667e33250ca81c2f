"""Per-caller token-bucket admission control keyed by access tier."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from tai_bot.access.permissions import AccessPolicy, AccessTier, default_access_policy

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    tokens: float
    capacity: float
    refill_per_second: float
    last_refill: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_s: float | None = None
    reset_at: float | None = None
    reason: str = ""


class AdmissionController:
    """Owns the process-wide bucket store.

    Buckets are created full on first sight of a caller and refilled lazily
    on each check. Checks for the same caller are serialized with a per-key
    lock; different callers never contend.
    """

    def __init__(
        self,
        policy: AccessPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or default_access_policy()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._store_lock = threading.Lock()

    def check_admission(self, caller_id: str, tier: AccessTier) -> RateLimitResult:
        limits = self.policy.tier_policy(tier)
        capacity = float(limits.burst_capacity)
        rate = limits.refill_per_second
        key = _bucket_key(caller_id)

        with self._key_lock(key):
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(
                    tokens=capacity, capacity=capacity, refill_per_second=rate, last_refill=now
                )
                self._buckets[key] = bucket
            else:
                elapsed = max(0.0, now - bucket.last_refill)
                bucket.capacity = capacity
                bucket.refill_per_second = rate
                bucket.tokens = min(capacity, bucket.tokens + elapsed * rate)
                bucket.last_refill = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return RateLimitResult(allowed=True, remaining=math.floor(bucket.tokens))

            retry_after = (1 - bucket.tokens) / rate
            reset_at = now + retry_after
        logger.info(
            "admission denied caller=%s tier=%s retry_after=%.2fs",
            caller_id,
            tier.value,
            retry_after,
        )
        return RateLimitResult(
            allowed=False,
            remaining=0,
            retry_after_s=retry_after,
            reset_at=reset_at,
            reason="Rate limit exceeded",
        )

    def reset(self, caller_id: str) -> None:
        key = _bucket_key(caller_id)
        with self._key_lock(key):
            self._buckets.pop(key, None)

    def status(self, caller_id: str, tier: AccessTier) -> TokenBucket:
        key = _bucket_key(caller_id)
        with self._key_lock(key):
            bucket = self._buckets.get(key)
            if bucket is not None:
                return replace(bucket)
        limits = self.policy.tier_policy(tier)
        return TokenBucket(
            tokens=float(limits.burst_capacity),
            capacity=float(limits.burst_capacity),
            refill_per_second=limits.refill_per_second,
            last_refill=self._clock(),
        )

    def sweep_idle(self, max_age_s: float = 3600) -> int:
        """Evict buckets idle longer than ``max_age_s``; returns the count."""

        now = self._clock()
        with self._store_lock:
            stale = [
                key
                for key, bucket in self._buckets.items()
                if now - bucket.last_refill > max_age_s
            ]
            evicted = 0
            for key in stale:
                lock = self._locks.get(key)
                # A held lock means a check is in flight; that bucket is not idle.
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                try:
                    self._buckets.pop(key, None)
                    self._locks.pop(key, None)
                    evicted += 1
                finally:
                    if lock is not None:
                        lock.release()
        if evicted:
            logger.debug("evicted %d idle rate-limit buckets", evicted)
        return evicted

    def _lock_for(self, key: str) -> threading.Lock:
        with self._store_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            # A sweep may have retired this lock while we waited for it.
            if self._locks.get(key) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()


def _bucket_key(caller_id: str) -> str:
    return f"rate:{caller_id}"
