"""
Rate limiting.

Two layers live here:

- ``RateLimiter``: fixed-window attempt counters per client IP for the
  sensitive auth operations (login, registration, password reset). Counters
  sit in Redis so every API process shares them; an in-memory store exists
  for development and tests only. Any store failure lets the request through.
- ``limiter``: the slowapi limiter used as a coarse per-route throttle on
  everything else (keyed by user when authenticated, otherwise by IP).
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from ipaddress import ip_address
from typing import Callable, Optional

from fastapi import Request
from redis import Redis
from slowapi import Limiter

from vetconnect.core.config import Settings, settings

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "ratelimit:"


class RateLimitKind(str, Enum):
    LOGIN = "login"
    REGISTER = "register"
    PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int = 60


DEFAULT_RULES = {
    RateLimitKind.LOGIN: RateLimitRule(limit=5),
    RateLimitKind.REGISTER: RateLimitRule(limit=3),
    RateLimitKind.PASSWORD_RESET: RateLimitRule(limit=2),
}


class CounterStore(ABC):
    """Expiring integer counters. Implementations may raise; RateLimiter handles it."""

    backend = "abstract"

    @abstractmethod
    def hit(self, key: str, window_seconds: int) -> Optional[int]:
        """Atomically increment ``key``; the first hit of a window sets its TTL."""
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[int]:
        ...

    @abstractmethod
    def ttl(self, key: str) -> Optional[int]:
        """Seconds until ``key`` expires, None if it does not exist."""
        ...

    @abstractmethod
    def delete(self, *keys: str) -> None:
        ...


class RedisCounterStore(CounterStore):
    backend = "redis"

    def __init__(self, client: Redis):
        self.client = client

    def hit(self, key: str, window_seconds: int) -> Optional[int]:
        # SET NX + INCR in one MULTI: the counter can never exist without a TTL
        pipe = self.client.pipeline(transaction=True)
        pipe.set(key, 0, ex=window_seconds, nx=True)
        pipe.incr(key)
        _, count = pipe.execute()
        return count

    def get(self, key: str) -> Optional[int]:
        value = self.client.get(key)
        return int(value) if value is not None else None

    def ttl(self, key: str) -> Optional[int]:
        remaining = self.client.ttl(key)
        if remaining is None or remaining < 0:
            return None
        return remaining

    def delete(self, *keys: str) -> None:
        if keys:
            self.client.delete(*keys)


class InMemoryCounterStore(CounterStore):
    """
    Process-local counters for development and tests.

    Each API process keeps its own counts, so limits are multiplied by the
    number of workers. Do not use behind more than one process.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: dict[str, list] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[list]:
        entry = self._counters.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._counters[key]
            return None
        return entry

    def hit(self, key: str, window_seconds: int) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = [0, self._clock() + window_seconds]
                self._counters[key] = entry
            entry[0] += 1
            return entry[0]

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry is not None else None

    def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            return max(0, int(entry[1] - self._clock() + 0.999))

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._counters.pop(key, None)


class NullCounterStore(CounterStore):
    """No store configured: nothing is counted, every attempt is allowed."""

    backend = "disabled"

    def hit(self, key: str, window_seconds: int) -> Optional[int]:
        return None

    def get(self, key: str) -> Optional[int]:
        return None

    def ttl(self, key: str) -> Optional[int]:
        return None

    def delete(self, *keys: str) -> None:
        return None


class RateLimiter:
    """
    Fixed-window limiter: the counter for (kind, client) resets wholesale when
    its TTL lapses. Bursts straddling a window boundary are accepted.
    """

    def __init__(
        self,
        store: CounterStore,
        rules: Optional[dict[RateLimitKind, RateLimitRule]] = None,
    ):
        self.store = store
        self.rules = {**DEFAULT_RULES, **(rules or {})}

    @classmethod
    def from_settings(cls, settings: Settings, store: CounterStore) -> "RateLimiter":
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        return cls(
            store,
            rules={
                RateLimitKind.LOGIN: RateLimitRule(settings.LOGIN_RATE_LIMIT, window),
                RateLimitKind.REGISTER: RateLimitRule(settings.REGISTER_RATE_LIMIT, window),
                RateLimitKind.PASSWORD_RESET: RateLimitRule(settings.PASSWORD_RESET_RATE_LIMIT, window),
            },
        )

    @staticmethod
    def _key(kind: RateLimitKind, client_address: str) -> str:
        return f"{RATE_LIMIT_PREFIX}{kind.value}:{client_address}"

    def limit_for(self, kind: RateLimitKind) -> int:
        return self.rules[kind].limit

    def allow(self, kind: RateLimitKind, client_address: str) -> bool:
        """Count one attempt and report whether it is within the limit."""
        rule = self.rules[kind]
        key = self._key(kind, client_address)
        try:
            attempts = self.store.hit(key, rule.window_seconds)
        except Exception as e:
            logger.error(f"Rate limit store error during {kind.value} check: {e}")
            return True

        if attempts is None:
            if self.store.backend != "disabled":
                logger.error(f"Rate limit store returned no count for key: {key}")
            return True

        allowed = attempts <= rule.limit
        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {kind.value} from {client_address} "
                f"(attempts: {attempts}/{rule.limit})"
            )
        else:
            logger.debug(f"Rate limit check for {kind.value}: {attempts}/{rule.limit} attempts")
        return allowed

    def remaining(self, kind: RateLimitKind, client_address: str) -> int:
        """Attempts left in the current window; the full limit if none were made."""
        limit = self.rules[kind].limit
        try:
            attempts = self.store.get(self._key(kind, client_address))
        except Exception as e:
            logger.error(f"Rate limit store error getting remaining attempts: {e}")
            return limit
        if attempts is None:
            return limit
        return max(0, limit - attempts)

    def retry_after(self, kind: RateLimitKind, client_address: str) -> int:
        """Seconds until the current window resets, 0 if no window is active."""
        try:
            remaining = self.store.ttl(self._key(kind, client_address))
        except Exception as e:
            logger.error(f"Rate limit store error getting TTL: {e}")
            return 0
        return remaining or 0

    def clear(self, client_address: str) -> None:
        """Drop every counter for an address (admin override and tests)."""
        keys = [self._key(kind, client_address) for kind in RateLimitKind]
        try:
            self.store.delete(*keys)
            logger.info(f"Rate limits cleared for IP: {client_address}")
        except Exception as e:
            logger.error(f"Failed to clear rate limits for {client_address}: {e}")


def build_counter_store(settings: Settings, client: Optional[Redis]) -> CounterStore:
    if client is not None:
        return RedisCounterStore(client)
    if settings.is_production:
        logger.error("No REDIS_URL configured - auth rate limiting is DISABLED.")
        return NullCounterStore()
    logger.warning("Using in-memory auth rate limits. Only valid for a single API process.")
    return InMemoryCounterStore()


def is_valid_ip(value: str) -> bool:
    try:
        ip_address(value)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trusted_proxies: Optional[set[str]] = None) -> str:
    """
    Client address for rate limiting.

    Forwarding headers are only honoured when the direct peer is a trusted
    proxy; otherwise anyone could pick their own rate-limit bucket.
    """
    remote_addr = request.client.host if request.client else None
    if trusted_proxies is None:
        trusted_proxies = settings.trusted_proxies

    if remote_addr and remote_addr in trusted_proxies:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # "client, proxy1, proxy2": the first entry is the original client
            client_ip = forwarded_for.split(",")[0].strip()
            if is_valid_ip(client_ip):
                return client_ip

        real_ip = request.headers.get("X-Real-IP", "").strip()
        if real_ip and is_valid_ip(real_ip):
            return real_ip

    return remote_addr or "unknown"


def get_user_identifier(request: Request) -> str:
    """
    Get identifier for rate limiting.
    Uses user ID if authenticated, otherwise IP address.
    """
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return f"user:{principal.id}"

    return get_client_ip(request)


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[settings.DEFAULT_RATE_LIMIT],
    storage_uri=settings.REDIS_URL or "memory://",
    swallow_errors=True,
)
