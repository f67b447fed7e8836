"""
Tests for Main Application wiring.

Middleware behaviour that applies to every request.
"""

from uuid import uuid4

from httpx import AsyncClient
from starlette.requests import Request

from app.api.errors import UNMATCHED_ROUTE, route_label
from app.observability.metrics import metrics


class TestRequestId:
    """Tests for request id propagation."""

    async def test_generated_when_absent(self, client: AsyncClient):
        """Every response carries a request id."""
        response = await client.get("/")
        assert len(response.headers["X-Request-ID"]) == 32

    async def test_echoed_when_sent(self, client: AsyncClient):
        """A caller-supplied id is echoed back."""
        response = await client.get("/", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    async def test_present_on_errors(self, client: AsyncClient):
        """Error envelopes also carry the id."""
        response = await client.get("/api/v1/users/current-user", headers={"X-Request-ID": "req-7"})
        assert response.status_code == 401
        assert response.headers["X-Request-ID"] == "req-7"


class TestCors:
    """Tests for CORS configuration."""

    async def test_preflight_allows_credentials(self, client: AsyncClient):
        """Preflight responses allow credentialed requests."""
        response = await client.options(
            "/api/v1/users/login",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-credentials"] == "true"

    async def test_unlisted_origin_not_allowed(self, client: AsyncClient):
        """Origins outside the configured list get no CORS grant."""
        response = await client.get("/", headers={"Origin": "https://evil.example"})
        assert "access-control-allow-origin" not in response.headers


class TestMetricLabels:
    """Tests for bounded metric label sets."""

    async def test_path_parameters_do_not_create_series(self, client: AsyncClient):
        """Distinct usernames and ids share their route template's series."""
        gauge = metrics.http_requests_in_progress._metrics
        errors = metrics.errors_total._metrics
        before = set(gauge) | set(errors)

        for _ in range(20):
            await client.get(f"/api/v1/users/c/user-{uuid4().hex}")
            await client.get(f"/api/v1/users/nope-{uuid4().hex}")

        added = (set(gauge) | set(errors)) - before
        assert len(added) <= 3
        assert not any("user-" in label or "nope-" in label for key in added for label in key)
        assert ("/api/v1/users/c/{username}", "GET") in gauge

    def test_unknown_path_is_unmatched(self):
        """Requests matching no route share a single label."""
        from app.main import app

        request = Request({"type": "http", "method": "GET", "path": "/x/y", "app": app, "headers": []})
        assert route_label(request) == UNMATCHED_ROUTE
