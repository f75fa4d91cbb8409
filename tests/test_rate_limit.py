"""Tests for the fixed-window rate limiter and its HTTP surface."""
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from reqflow_core.api.app import create_app
from reqflow_core.errors import RateLimitError
from reqflow_core.rate_limit import RateLimiter, client_identifier


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestRateLimiter:
    """Windowing behaviour with an injected clock."""

    def test_fourth_request_in_window_rejected(self, clock):
        """Test that the request after the limit is refused."""
        limiter = RateLimiter(max_requests=3, window_ms=1000, clock=clock)

        results = [limiter.check("1.2.3.4", "/api/db/projects")[0] for _ in range(4)]

        assert results == [True, True, True, False]

    def test_window_resets_after_expiry(self, clock):
        """Test that a new window admits requests again."""
        limiter = RateLimiter(max_requests=3, window_ms=1000, clock=clock)
        for _ in range(4):
            limiter.check("1.2.3.4", "/api/db/projects")

        clock.now = 1.001

        assert limiter.check("1.2.3.4", "/api/db/projects") == (True, 0)

    def test_retry_after_is_remaining_window(self, clock):
        """Test that retry_after is the time left in the window."""
        limiter = RateLimiter(max_requests=1, window_ms=60_000, clock=clock)
        limiter.check("c", "/r")

        clock.now = 15.5
        allowed, retry_after = limiter.check("c", "/r")

        assert not allowed
        assert retry_after == 45

    def test_keys_are_independent(self, clock):
        """Test that clients are counted separately."""
        limiter = RateLimiter(max_requests=1, window_ms=1000, clock=clock)

        assert limiter.check("a", "/x")[0]
        assert limiter.check("b", "/x")[0]
        assert limiter.check("a", "/y")[0]
        assert not limiter.check("a", "/x")[0]

    def test_admit_raises_rate_limit_error(self, clock):
        """Test that admit raises once the limit is hit."""
        limiter = RateLimiter(max_requests=1, window_ms=1000, clock=clock)
        limiter.admit("a", "/x")

        with pytest.raises(RateLimitError) as exc_info:
            limiter.admit("a", "/x")

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after == 1

    def test_sweep_removes_expired_counters(self, clock):
        """Test that sweeping drops expired windows only."""
        limiter = RateLimiter(max_requests=5, window_ms=1000, clock=clock)
        limiter.check("a", "/x")
        clock.now = 0.5
        limiter.check("b", "/x")

        clock.now = 1.2
        removed = limiter.sweep()

        assert removed == 1
        assert len(limiter) == 1


class TestClientIdentifier:
    def _request(self, headers=(), client=("10.0.0.9", 5000)):
        return Request({"type": "http", "headers": list(headers), "client": client})

    def test_first_forwarded_hop_wins(self):
        """Test that the first X-Forwarded-For hop identifies the client."""
        request = self._request(headers=[(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")])

        assert client_identifier(request) == "203.0.113.7"

    def test_falls_back_to_peer_address(self):
        """Test the peer address fallback."""
        assert client_identifier(self._request()) == "10.0.0.9"

    def test_anonymous_without_peer(self):
        """Test the anonymous fallback."""
        assert client_identifier(self._request(client=None)) == "anonymous"


class TestRateLimitedRoutes:
    """429 responses carry the retry hint in body and header."""

    def test_route_limit_returns_429(self, settings, session_factory):
        """Test the 429 body and Retry-After header."""
        settings.rate_limit_max_requests = 2
        with TestClient(create_app(settings, session_factory)) as client:
            headers = {"X-Forwarded-For": "198.51.100.1"}
            assert client.get("/api/db/projects", headers=headers).status_code == 200
            assert client.get("/api/db/projects", headers=headers).status_code == 200

            response = client.get("/api/db/projects", headers=headers)

            assert response.status_code == 429
            assert response.json()["error"] == "Too many requests"
            assert response.json()["retryAfter"] >= 1
            assert response.headers["Retry-After"] == str(response.json()["retryAfter"])

            other = client.get("/api/db/projects", headers={"X-Forwarded-For": "198.51.100.2"})
            assert other.status_code == 200

    def test_routes_are_counted_separately(self, settings, session_factory):
        """Test that each route has its own counter."""
        settings.rate_limit_max_requests = 1
        with TestClient(create_app(settings, session_factory)) as client:
            assert client.get("/api/db/projects").status_code == 200
            assert client.get("/api/db/collections").status_code == 200
            assert client.get("/api/db/projects").status_code == 429

    def test_ai_route_allows_twenty_per_minute(self, client):
        """Test the AI route's separate limit."""
        statuses = [client.post("/api/ai", json={}).status_code for _ in range(21)]

        assert statuses[:20] == [400] * 20
        assert statuses[20] == 429
