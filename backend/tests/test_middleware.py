"""Tests for middleware."""

import pytest
import pytest_asyncio
import httpx
from fastapi import FastAPI

from patrulha.core.middleware import MetricsMiddleware, RequestIDMiddleware


class TestRequestIDMiddleware:
    """Tests for request ID middleware."""

    @pytest_asyncio.fixture
    async def request_id_client(self):
        """Client backed by app with RequestIDMiddleware enabled."""
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(
            transport=transport,
            base_url="http://testserver",
            timeout=10.0,
        ) as ac:
            yield ac

    @pytest.mark.asyncio
    async def test_request_id_generated(self, request_id_client: httpx.AsyncClient):
        """Test that request ID is generated and included in response."""
        response = await request_id_client.get("/ping")
        assert "X-Request-ID" in response.headers
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) > 0

    @pytest.mark.asyncio
    async def test_request_id_preserved(self, request_id_client: httpx.AsyncClient):
        """Test that provided request ID is preserved."""
        response = await request_id_client.get(
            "/ping",
            headers={"X-Request-ID": "test-request-id-123"},
        )
        assert response.headers.get("X-Request-ID") == "test-request-id-123"


class TestMetricsMiddleware:
    """Tests for HTTP metrics path normalization."""

    @pytest.fixture
    def middleware(self):
        return MetricsMiddleware(app=FastAPI())

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/v1/import/properties", "import/properties"),
            ("/api/v1/health", "health"),
            ("/api/imports/42", "imports/{id}"),
            (
                "/api/v1/imports/4f7c1b8e-0000-4000-8000-000000000001/errors",
                "imports/{id}/errors",
            ),
        ],
    )
    def test_normalize_endpoint(self, middleware, path, expected):
        assert middleware._normalize_endpoint(path) == expected

    @pytest.mark.asyncio
    async def test_requests_pass_through(self):
        app = FastAPI()
        app.add_middleware(MetricsMiddleware)

        @app.get("/api/v1/health")
        async def health():
            return {"status": "healthy"}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            response = await ac.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
