"""Tests for the auth rate limiter."""

import threading
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request
from slowapi import Limiter

from vetconnect.core.rate_limit import (
    RATE_LIMIT_PREFIX,
    InMemoryCounterStore,
    NullCounterStore,
    RateLimiter,
    RateLimitKind,
    RateLimitRule,
    RedisCounterStore,
    get_client_ip,
    get_user_identifier,
    is_valid_ip,
)
from main import app

CLIENT = "198.51.100.23"


def make_request(client_host: str, headers: dict | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/auth/login",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (client_host, 52000),
    }
    return Request(scope)


class TestRateLimiter:

    def test_default_limits(self, rate_limiter):
        assert rate_limiter.limit_for(RateLimitKind.LOGIN) == 5
        assert rate_limiter.limit_for(RateLimitKind.REGISTER) == 3
        assert rate_limiter.limit_for(RateLimitKind.PASSWORD_RESET) == 2

    def test_sixth_login_attempt_denied(self, rate_limiter):
        """Attempts 1-5 pass, attempt 6 is rejected."""
        results = [rate_limiter.allow(RateLimitKind.LOGIN, CLIENT) for _ in range(6)]
        assert results == [True] * 5 + [False]

    def test_clear_resets_all_counters(self, rate_limiter):
        for _ in range(6):
            rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        for _ in range(3):
            rate_limiter.allow(RateLimitKind.PASSWORD_RESET, CLIENT)

        rate_limiter.clear(CLIENT)

        assert rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.allow(RateLimitKind.PASSWORD_RESET, CLIENT)

    def test_kinds_and_addresses_are_independent(self, rate_limiter):
        for _ in range(3):
            rate_limiter.allow(RateLimitKind.REGISTER, CLIENT)

        assert not rate_limiter.allow(RateLimitKind.REGISTER, CLIENT)
        assert rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.allow(RateLimitKind.REGISTER, "203.0.113.9")

    def test_remaining(self, rate_limiter):
        assert rate_limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 5
        rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 3

        for _ in range(5):
            rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 0

    def test_window_resets_wholesale(self, rate_limiter, clock):
        """Fixed window: the whole count disappears when the window ends."""
        for _ in range(5):
            assert rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert not rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)

        clock.advance(59)
        assert not rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.retry_after(RateLimitKind.LOGIN, CLIENT) == 1

        clock.advance(1)
        assert rate_limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert rate_limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 4

    def test_retry_after_without_window(self, rate_limiter):
        assert rate_limiter.retry_after(RateLimitKind.LOGIN, CLIENT) == 0

    def test_custom_rules(self, clock):
        limiter = RateLimiter(
            InMemoryCounterStore(clock=clock.time),
            rules={RateLimitKind.LOGIN: RateLimitRule(limit=1, window_seconds=10)},
        )
        assert limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert not limiter.allow(RateLimitKind.LOGIN, CLIENT)
        assert limiter.limit_for(RateLimitKind.REGISTER) == 3

    def test_concurrent_attempts_are_all_counted(self, clock):
        """Eight threads racing on one address: no hit is lost and only the limit passes."""
        store = InMemoryCounterStore(clock=clock.time)
        limiter = RateLimiter(
            store, rules={RateLimitKind.LOGIN: RateLimitRule(limit=10, window_seconds=60)}
        )
        barrier = threading.Barrier(8)
        allowed = []

        def attempt():
            barrier.wait()
            for _ in range(25):
                allowed.append(limiter.allow(RateLimitKind.LOGIN, CLIENT))

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get(f"{RATE_LIMIT_PREFIX}login:{CLIENT}") == 200
        assert allowed.count(True) == 10
        assert limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 0


class TestFailOpen:
    """A broken or missing counter store never blocks a request."""

    def test_store_exception_allows(self):
        store = MagicMock()
        store.hit.side_effect = RedisConnectionError("down")
        store.get.side_effect = RedisConnectionError("down")
        store.ttl.side_effect = RedisConnectionError("down")
        store.delete.side_effect = RedisConnectionError("down")
        limiter = RateLimiter(store)

        assert all(limiter.allow(RateLimitKind.LOGIN, CLIENT) for _ in range(10))
        assert limiter.remaining(RateLimitKind.LOGIN, CLIENT) == 5
        assert limiter.retry_after(RateLimitKind.LOGIN, CLIENT) == 0
        limiter.clear(CLIENT)

    def test_store_returning_none_allows(self):
        store = MagicMock()
        store.backend = "redis"
        store.hit.return_value = None
        limiter = RateLimiter(store)

        assert limiter.allow(RateLimitKind.LOGIN, CLIENT)

    def test_null_store_allows_everything(self):
        limiter = RateLimiter(NullCounterStore())
        assert all(limiter.allow(RateLimitKind.PASSWORD_RESET, CLIENT) for _ in range(10))
        assert limiter.remaining(RateLimitKind.PASSWORD_RESET, CLIENT) == 2


class TestRedisCounterStore:

    def test_hit_sets_ttl_and_increments_atomically(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [True, 1]
        store = RedisCounterStore(client)

        assert store.hit("ratelimit:login:1.2.3.4", 60) == 1

        client.pipeline.assert_called_once_with(transaction=True)
        pipe.set.assert_called_once_with("ratelimit:login:1.2.3.4", 0, ex=60, nx=True)
        pipe.incr.assert_called_once_with("ratelimit:login:1.2.3.4")

    def test_limiter_key_layout(self):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [None, 6]
        limiter = RateLimiter(RedisCounterStore(client))

        assert not limiter.allow(RateLimitKind.LOGIN, CLIENT)
        client.pipeline.return_value.incr.assert_called_once_with(f"ratelimit:login:{CLIENT}")

    def test_ttl_of_missing_key(self):
        client = MagicMock()
        client.ttl.return_value = -2
        assert RedisCounterStore(client).ttl("ratelimit:login:x") is None

    def test_get_parses_integer(self):
        client = MagicMock()
        client.get.return_value = "4"
        assert RedisCounterStore(client).get("ratelimit:login:x") == 4


class TestClientIp:

    def test_direct_peer_used_without_trusted_proxy(self):
        request = make_request("198.51.100.1", {"X-Forwarded-For": "203.0.113.7"})
        assert get_client_ip(request, trusted_proxies=set()) == "198.51.100.1"

    def test_forwarded_for_honoured_from_trusted_proxy(self):
        request = make_request("10.0.0.2", {"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "203.0.113.7"

    def test_real_ip_fallback_from_trusted_proxy(self):
        request = make_request("10.0.0.2", {"X-Real-IP": "203.0.113.8"})
        assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "203.0.113.8"

    def test_invalid_forwarded_value_ignored(self):
        request = make_request("10.0.0.2", {"X-Forwarded-For": "not-an-ip"})
        assert get_client_ip(request, trusted_proxies={"10.0.0.2"}) == "10.0.0.2"

    @pytest.mark.parametrize("value,expected", [
        ("192.168.1.1", True),
        ("2001:db8::1", True),
        ("999.1.1.1", False),
        ("localhost", False),
    ])
    def test_is_valid_ip(self, value, expected):
        assert is_valid_ip(value) is expected


class TestDefaultRouteLimits:
    """Routes without their own limit fall under the limiter's default."""

    @pytest.fixture
    def strict_limiter(self):
        original = app.state.limiter
        app.state.limiter = Limiter(key_func=get_user_identifier, default_limits=["2/minute"])
        yield app.state.limiter
        app.state.limiter = original

    def test_undecorated_route_is_throttled(self, client, strict_limiter):
        assert client.get("/").status_code == 200
        assert client.get("/").status_code == 200

        response = client.get("/")
        assert response.status_code == 429
