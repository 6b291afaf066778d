"""Pytest configuration and fixtures."""

import sys

import pytest
import pytest_asyncio
import httpx
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from patrulha.core.auth import get_current_caller
from patrulha.core.deps import get_property_store
from patrulha.models.auth import CallerProfile
from patrulha.services import import_orchestrator
from patrulha.services.csv_parser import ParsedTable
from patrulha.services.import_orchestrator import ImportOptions
from patrulha.services.property_store import PropertyStore


@pytest.fixture
def caller():
    """Authenticated caller stamped on imported records."""
    return CallerProfile(
        id="4f7c1b8e-0000-4000-8000-000000000001",
        email="sargento@example.com",
        full_name="Sgt. Silva",
        role="team_leader",
        crpm="4",
        batalhao="2",
        cia="1",
    )


@pytest.fixture
def mock_store():
    """Property store double: no duplicates, every insert succeeds."""
    store = AsyncMock(spec=PropertyStore)
    store.find_duplicate.return_value = False
    store.create_property.return_value = None
    store.record_import_error.return_value = None
    return store


@pytest.fixture
def import_options(caller):
    """Options for driving the orchestrator directly, without delays."""
    return ImportOptions(caller=caller, row_delay=0)


@pytest.fixture
def scenario_table():
    """Three rows: one valid, one missing its name, one with a bad latitude."""
    return ParsedTable(
        separator=",",
        headers=["nome", "lat", "lon", "cidade"],
        rows=[
            ["Fazenda A", "-23.1", "-51.2", "Ibaiti"],
            ["", "1", "2", "X"],
            ["Fazenda B", "bad", "-51.0", "Jacarezinho"],
        ],
    )


@pytest.fixture
def scenario_mapping():
    return {"nome": "name", "lat": "latitude", "lon": "longitude", "cidade": "cidade"}


@pytest.fixture
def test_app(monkeypatch, caller, mock_store):
    """
    Create FastAPI app suitable for testing.
    Authentication and the property store are replaced by dependency overrides.
    """
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("IMPORT_ROW_DELAY_MS", "0")
    monkeypatch.setattr(import_orchestrator.settings, "import_row_delay_ms", 0)
    for mod in ("patrulha.core.config", "patrulha.main"):
        if mod in sys.modules:
            del sys.modules[mod]
    from patrulha.main import create_app
    app = create_app()
    # BaseHTTPMiddleware layers can deadlock streaming responses under test
    # transports; they are covered separately in test_middleware.
    app.user_middleware = [
        m
        for m in app.user_middleware
        if m.cls.__name__ not in {"RequestIDMiddleware", "MetricsMiddleware"}
    ]
    app.middleware_stack = app.build_middleware_stack()

    app.dependency_overrides[get_current_caller] = lambda: caller
    app.dependency_overrides[get_property_store] = lambda: mock_store
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(test_app):
    """Test client for FastAPI app."""
    return TestClient(test_app, base_url="http://testserver")


@pytest_asyncio.fixture
async def async_client(test_app):
    """Async client for streaming endpoints that can deadlock with sync TestClient."""
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        timeout=15.0,
    ) as ac:
        yield ac
