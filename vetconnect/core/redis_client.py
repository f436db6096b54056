"""Redis connection used for the token blacklist and auth rate limits."""

from typing import Optional

from redis import Redis

from vetconnect.core.config import Settings


def create_redis_client(settings: Settings) -> Optional[Redis]:
    """
    Build a synchronous Redis client, or None when REDIS_URL is not set.

    Connect and socket timeouts are kept short: every caller treats a timeout
    like an outage and falls back to its fail-open default.
    """
    if not settings.REDIS_URL:
        return None

    return Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        health_check_interval=30,
    )
