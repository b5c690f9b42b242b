from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)

HOUR_TTL_SECONDS = 2 * 3600
DAY_TTL_SECONDS = 2 * 86400


class CounterStore:
    def incr(self, key: str, ttl_seconds: int) -> int:
        raise NotImplementedError

    def get(self, key: str) -> int:
        raise NotImplementedError

    def clear(self, prefix: str) -> None:
        raise NotImplementedError


class MemoryCounterStore(CounterStore):
    """Process-local counters. Windows are encoded in the key, so stale keys are simply never read again."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def clear(self, prefix: str) -> None:
        with self._lock:
            for k in [k for k in self._counts if k.startswith(prefix)]:
                del self._counts[k]


class RedisCounterStore(CounterStore):
    def __init__(self, client) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        import redis

        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2))

    def incr(self, key: str, ttl_seconds: int) -> int:
        pipe = self._client.pipeline()
        pipe.incr(key)
        pipe.expire(key, ttl_seconds)
        count, _ = pipe.execute()
        return int(count)

    def get(self, key: str) -> int:
        value = self._client.get(key)
        return int(value) if value is not None else 0

    def clear(self, prefix: str) -> None:
        keys = list(self._client.scan_iter(match=f"{prefix}*"))
        if keys:
            self._client.delete(*keys)


@dataclass(frozen=True)
class VelocityCounts:
    hour_count: int
    day_count: int


@dataclass(frozen=True)
class Violation:
    type: str  # hourly_limit | daily_limit
    current: int
    limit: int


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    counts: VelocityCounts
    violations: list[Violation] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VelocityTracker:
    """
    Per-user action counters bucketed by UTC hour and UTC day.

    Key format: velocity:{user}:{action}:{window}, where the hour window is
    "Y-M-D-H" and the day window "Y-M-D" (month is zero-based).
    """

    KEY_PREFIX = "velocity:"

    def __init__(self, store: CounterStore | None = None, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store or MemoryCounterStore()
        self._clock = clock

    def _key(self, user_id, action: str, window: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}:{action}:{window}"

    def _hour_window(self) -> str:
        now = self._clock()
        return f"{now.year}-{now.month - 1}-{now.day}-{now.hour}"

    def _day_window(self) -> str:
        now = self._clock()
        return f"{now.year}-{now.month - 1}-{now.day}"

    def increment(self, user_id, action: str = "survey") -> VelocityCounts:
        hour = self.store.incr(self._key(user_id, action, self._hour_window()), HOUR_TTL_SECONDS)
        day = self.store.incr(self._key(user_id, action, self._day_window()), DAY_TTL_SECONDS)
        return VelocityCounts(hour, day)

    def get_counts(self, user_id, action: str = "survey") -> VelocityCounts:
        return VelocityCounts(
            self.store.get(self._key(user_id, action, self._hour_window())),
            self.store.get(self._key(user_id, action, self._day_window())),
        )

    def check_limits(self, user_id, *, action: str = "survey", max_per_hour: int = 20, max_per_day: int = 100) -> LimitCheck:
        counts = self.get_counts(user_id, action)
        violations: list[Violation] = []
        if counts.hour_count >= max_per_hour:
            violations.append(Violation("hourly_limit", counts.hour_count, max_per_hour))
        if counts.day_count >= max_per_day:
            violations.append(Violation("daily_limit", counts.day_count, max_per_day))
        return LimitCheck(allowed=not violations, counts=counts, violations=violations)

    def reset(self) -> None:
        self.store.clear(self.KEY_PREFIX)


def tracker_from_config(config: dict) -> VelocityTracker:
    """Redis-backed when REDIS_URL is reachable, otherwise in-process counters."""
    url = (config.get("REDIS_URL") or "").strip()
    if url and config.get("FRAUD_VELOCITY_BACKEND", "redis") == "redis":
        import redis

        try:
            store = RedisCounterStore.from_url(url)
            store._client.ping()
            return VelocityTracker(store)
        except redis.exceptions.RedisError as e:
            logger.warning("Velocity tracker falling back to memory store (redis unavailable: %s)", e)
    return VelocityTracker(MemoryCounterStore())
