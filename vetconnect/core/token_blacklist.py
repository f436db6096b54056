"""
Revocation store: explicitly killed tokens and accounts.

Two record shapes are kept:

- ``blacklist:token:<sha256(token)>``: this exact token is revoked.
- ``blacklist:token:user:<account id>``: every token of the account issued at
  or before the stored cutoff (epoch milliseconds) is revoked.

Every record expires with the token(s) it blocks, so the store cleans itself.
Reads fail open (an unreachable store means "not revoked") and writes never
raise: logout and admin actions must not break because Redis is down.
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from redis import Redis

from vetconnect.core.config import Settings
from vetconnect.core.security import hash_token

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "blacklist:token:"
ACCOUNT_PREFIX = BLACKLIST_PREFIX + "user:"

TTL = Union[timedelta, int, float]


def ttl_seconds(ttl: TTL) -> int:
    """Whole seconds, rounded up so a record never expires before its token."""
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    return max(0, math.ceil(ttl))


def _token_key(token: str) -> str:
    return BLACKLIST_PREFIX + hash_token(token)


def _account_key(account_id) -> str:
    return ACCOUNT_PREFIX + str(account_id)


def epoch_millis(seconds: float) -> int:
    return round(seconds * 1000)


def _covers(cutoff: Optional[str], issued_at: Optional[datetime]) -> bool:
    """Whether an account-wide record applies to a token issued at ``issued_at``."""
    if issued_at is None:
        return True
    try:
        return epoch_millis(issued_at.timestamp()) <= int(cutoff)
    except (TypeError, ValueError):
        # Record without a readable cutoff: treat as covering everything
        return True


class RevocationStore(ABC):
    """Interface shared by the Redis, in-memory and disabled stores."""

    backend = "abstract"

    @abstractmethod
    def revoke_token(self, token: str, ttl: TTL) -> None:
        """Blacklist one token for ``ttl`` (its remaining natural lifetime)."""
        ...

    @abstractmethod
    def is_token_revoked(self, token: str) -> bool:
        ...

    @abstractmethod
    def claim_token(self, token: str, ttl: TTL) -> bool:
        """
        Blacklist a single-use token and report whether this call was the first
        to do so. Check and write happen as one step, so of two concurrent
        claims exactly one gets True.
        """
        ...

    @abstractmethod
    def unrevoke_token(self, token: str) -> None:
        """Remove a token from the blacklist (tests and admin only)."""
        ...

    @abstractmethod
    def revoke_all_for_account(self, account_id, ttl: TTL) -> None:
        """Blacklist every token of the account issued up to now."""
        ...

    @abstractmethod
    def is_all_revoked_for_account(self, account_id, issued_at: Optional[datetime] = None) -> bool:
        """
        True if an account-wide record exists. With ``issued_at`` only tokens
        issued at or before the revocation cutoff are considered revoked.
        """
        ...

    def ping(self) -> bool:
        return True


class RedisRevocationStore(RevocationStore):
    """Distributed store; safe behind any number of API workers."""

    backend = "redis"

    def __init__(self, client: Redis, clock: Callable[[], float] = time.time):
        self.client = client
        self._clock = clock

    def revoke_token(self, token: str, ttl: TTL) -> None:
        seconds = ttl_seconds(ttl)
        if seconds <= 0:
            logger.debug("Token already expired, nothing to blacklist")
            return
        try:
            self.client.set(_token_key(token), "1", ex=seconds)
            logger.info("Token blacklisted successfully")
        except Exception as e:
            logger.error(f"Failed to blacklist token: {e}")

    def is_token_revoked(self, token: str) -> bool:
        try:
            return bool(self.client.exists(_token_key(token)))
        except Exception as e:
            logger.error(f"Failed to check token blacklist: {e}")
            return False

    def claim_token(self, token: str, ttl: TTL) -> bool:
        seconds = ttl_seconds(ttl)
        if seconds <= 0:
            return True
        try:
            # SET NX: only the first writer gets a truthy reply
            return bool(self.client.set(_token_key(token), "1", ex=seconds, nx=True))
        except Exception as e:
            logger.error(f"Failed to claim token: {e}")
            return True

    def unrevoke_token(self, token: str) -> None:
        try:
            self.client.delete(_token_key(token))
            logger.info("Token removed from blacklist")
        except Exception as e:
            logger.error(f"Failed to remove token from blacklist: {e}")

    def revoke_all_for_account(self, account_id, ttl: TTL) -> None:
        seconds = ttl_seconds(ttl)
        if seconds <= 0:
            return
        try:
            self.client.set(_account_key(account_id), str(epoch_millis(self._clock())), ex=seconds)
            logger.info(f"All tokens blacklisted for user: {account_id}")
        except Exception as e:
            logger.error(f"Failed to blacklist all user tokens: {e}")

    def is_all_revoked_for_account(self, account_id, issued_at: Optional[datetime] = None) -> bool:
        try:
            cutoff = self.client.get(_account_key(account_id))
        except Exception as e:
            logger.error(f"Failed to check user token blacklist: {e}")
            return False
        if cutoff is None:
            return False
        return _covers(cutoff, issued_at)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except Exception as e:
            logger.error(f"Redis ping failed: {e}")
            return False


class InMemoryRevocationStore(RevocationStore):
    """
    Process-local store for development and tests.

    Entries live in this process only: behind more than one worker or server
    each process sees its own blacklist, so do not use it in production.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _set(self, key: str, value: str, seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + seconds)

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def revoke_token(self, token: str, ttl: TTL) -> None:
        seconds = ttl_seconds(ttl)
        if seconds > 0:
            self._set(_token_key(token), "1", seconds)

    def is_token_revoked(self, token: str) -> bool:
        return self._get(_token_key(token)) is not None

    def claim_token(self, token: str, ttl: TTL) -> bool:
        seconds = ttl_seconds(ttl)
        if seconds <= 0:
            return True
        key = _token_key(token)
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and entry[1] > now:
                return False
            self._entries[key] = ("1", now + seconds)
            return True

    def unrevoke_token(self, token: str) -> None:
        with self._lock:
            self._entries.pop(_token_key(token), None)

    def revoke_all_for_account(self, account_id, ttl: TTL) -> None:
        seconds = ttl_seconds(ttl)
        if seconds > 0:
            self._set(_account_key(account_id), str(epoch_millis(self._clock())), seconds)

    def is_all_revoked_for_account(self, account_id, issued_at: Optional[datetime] = None) -> bool:
        cutoff = self._get(_account_key(account_id))
        if cutoff is None:
            return False
        return _covers(cutoff, issued_at)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)


class NullRevocationStore(RevocationStore):
    """No store configured: nothing is ever revoked, writes are dropped."""

    backend = "disabled"

    def revoke_token(self, token: str, ttl: TTL) -> None:
        logger.debug("Token blacklist skipped (no revocation store configured)")

    def is_token_revoked(self, token: str) -> bool:
        return False

    def claim_token(self, token: str, ttl: TTL) -> bool:
        return True

    def unrevoke_token(self, token: str) -> None:
        return None

    def revoke_all_for_account(self, account_id, ttl: TTL) -> None:
        logger.debug(f"User token blacklist skipped (no revocation store configured): {account_id}")

    def is_all_revoked_for_account(self, account_id, issued_at: Optional[datetime] = None) -> bool:
        return False

    def ping(self) -> bool:
        return False


def build_revocation_store(settings: Settings, client: Optional[Redis]) -> RevocationStore:
    """Pick the store for this deployment."""
    if client is not None:
        return RedisRevocationStore(client)
    if settings.is_production:
        logger.error(
            "No REDIS_URL configured - token blacklisting is DISABLED. "
            "Logout and account-wide revocation rely on token versions only."
        )
        return NullRevocationStore()
    logger.warning(
        "Using in-memory token blacklist. Only valid for a single API process."
    )
    return InMemoryRevocationStore()
