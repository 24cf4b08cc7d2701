"""
=============================================================================
LUSHAK CONTACT API - REQUEST THROTTLE
=============================================================================
Sliding-window admission control for the public contact form.

Features:
- Per-identifier sliding window (default: 5 submissions / 60 seconds)
- Swappable counting backend: in-memory for single-instance deployments,
  Redis sorted sets for multi-instance deployments
- Automatic fallback to in-memory when Redis is unavailable
- Trusted-proxy validation for X-Forwarded-For

Usage:
    from lushak.core.rate_limiter import build_throttle

    throttle = build_throttle(settings)
    decision = throttle.admit(get_client_ip(request))
    if not decision.allowed:
        ...
=============================================================================
"""

import ipaddress
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Dict, Iterable, List, Optional

import redis
from fastapi import Request

from lushak.core.config import Settings, settings

logger = logging.getLogger(__name__)

ANONYMOUS_IDENTIFIER = "anonymous"


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    count: int
    retry_after: Optional[int] = None


# =============================================================================
# BACKEND ABSTRACTION
# =============================================================================


class SlidingWindowBackend(ABC):
    """Counting service behind the throttle."""

    @abstractmethod
    def hit(self, key: str, limit: int, window_seconds: int, now: float) -> ThrottleDecision:
        """Record an admission for ``key`` unless ``limit`` is already reached.

        Rejected attempts are not recorded, so the window rolls purely on
        admitted requests.
        """

    @abstractmethod
    def reset(self) -> None:
        """Clear all state (for tests)."""

    @abstractmethod
    def stats(self) -> dict:
        """Return debugging stats."""


def _retry_after(oldest: float, window_seconds: int, now: float) -> int:
    return max(1, math.ceil(oldest + window_seconds - now))


class InMemorySlidingWindow(SlidingWindowBackend):
    """Thread-safe in-memory backend (single-instance only, lost on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._last_sweep = 0.0

    def _sweep(self, window_start: float) -> None:
        """Forget identifiers whose newest admission has aged out. Caller holds the lock."""
        stale = [
            key
            for key, window in self._windows.items()
            if not window or window[-1] <= window_start
        ]
        for key in stale:
            del self._windows[key]
        self._last_sweep = window_start

    def hit(self, key: str, limit: int, window_seconds: int, now: float) -> ThrottleDecision:
        window_start = now - window_seconds

        with self._lock:
            # At most one full sweep per window length
            if window_start >= self._last_sweep + window_seconds:
                self._sweep(window_start)

            window = self._windows[key]

            while window and window[0] <= window_start:
                window.popleft()

            if len(window) >= limit:
                return ThrottleDecision(
                    allowed=False,
                    count=len(window),
                    retry_after=_retry_after(window[0], window_seconds, now),
                )

            window.append(now)
            return ThrottleDecision(allowed=True, count=len(window))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "backend": "in_memory",
                "tracked_keys": len(self._windows),
                "counts": {key: len(window) for key, window in self._windows.items()},
            }


class RedisSlidingWindow(SlidingWindowBackend):
    """Redis sorted-set backend shared by every API instance."""

    def __init__(self, redis_client, prefix: str = "throttle:contact:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def hit(self, key: str, limit: int, window_seconds: int, now: float) -> ThrottleDecision:
        redis_key = f"{self._prefix}{key}"
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, window_seconds)
        results = pipe.execute()
        count = int(results[2])

        if count <= limit:
            return ThrottleDecision(allowed=True, count=count)

        # Over the limit: take back our own entry so rejections don't count
        self._redis.zrem(redis_key, member)
        oldest = self._redis.zrange(redis_key, 0, 0, withscores=True)
        oldest_score = float(oldest[0][1]) if oldest else now
        return ThrottleDecision(
            allowed=False,
            count=count - 1,
            retry_after=_retry_after(oldest_score, window_seconds, now),
        )

    def reset(self) -> None:
        cursor = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self._prefix}*", count=500)
            if keys:
                self._redis.delete(*keys)
            if cursor == 0:
                break

    def stats(self) -> dict:
        counts = {}
        cursor = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self._prefix}*", count=500)
            for k in keys:
                key_str = k if isinstance(k, str) else k.decode()
                counts[key_str] = int(self._redis.zcard(k))
            if cursor == 0:
                break
        return {"backend": "redis", "counts": counts}


# =============================================================================
# THROTTLE
# =============================================================================


class RequestThrottle:
    """Admit up to ``limit`` requests per identifier per sliding window."""

    def __init__(
        self,
        backend: SlidingWindowBackend,
        limit: int = 5,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock

    def admit(self, identifier: Optional[str]) -> ThrottleDecision:
        key = identifier or ANONYMOUS_IDENTIFIER
        decision = self.backend.hit(key, self.limit, self.window_seconds, self._clock())
        if not decision.allowed:
            logger.warning(
                "Contact throttle rejected %s (%d in %ds window)",
                key,
                decision.count,
                self.window_seconds,
                extra={"event_type": "contact_throttled", "retry_after": decision.retry_after},
            )
        return decision

    def reset(self) -> None:
        self.backend.reset()


def build_throttle(config: Settings = settings) -> RequestThrottle:
    """Build the contact throttle, preferring Redis when configured."""
    backend: SlidingWindowBackend
    if config.THROTTLE_BACKEND == "redis":
        try:
            client = redis.Redis.from_url(
                config.REDIS_URL, decode_responses=True, socket_connect_timeout=2
            )
            client.ping()
            logger.info("Contact throttle using Redis backend (%s)", config.REDIS_URL)
            backend = RedisSlidingWindow(client)
        except redis.RedisError as exc:
            logger.warning(
                "Redis unavailable for contact throttle, using in-memory fallback: %s", exc
            )
            backend = InMemorySlidingWindow()
    else:
        backend = InMemorySlidingWindow()

    return RequestThrottle(
        backend,
        limit=config.CONTACT_RATE_LIMIT,
        window_seconds=config.CONTACT_WINDOW_SECONDS,
    )


# =============================================================================
# IP EXTRACTION
# =============================================================================


def parse_trusted_networks(
    entries: Iterable[str],
) -> List[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """Parse TRUSTED_PROXIES entries into network objects."""
    nets = []
    for entry in entries:
        try:
            nets.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Invalid TRUSTED_PROXIES entry ignored: %s", entry)
    return nets


_trusted_networks = parse_trusted_networks(settings.TRUSTED_PROXIES)


def _is_trusted_proxy(ip_str: str, networks=None) -> bool:
    """Check if an IP belongs to the configured trusted proxy ranges."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in net for net in (networks if networks is not None else _trusted_networks))


def get_client_ip(request: Request, networks=None) -> str:
    """Extract client IP, trusting X-Forwarded-For only from trusted proxies.

    Falls back to ``"anonymous"`` when the peer address is unavailable.
    """
    direct_ip = request.client.host if request.client else None

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and direct_ip and _is_trusted_proxy(direct_ip, networks):
        parts = [p.strip() for p in forwarded.split(",") if p.strip()]
        # Rightmost untrusted hop is the real client
        for ip in reversed(parts):
            if not _is_trusted_proxy(ip, networks):
                return ip
        if parts:
            return parts[0]

    return direct_ip or ANONYMOUS_IDENTIFIER
