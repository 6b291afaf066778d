"""Unit tests for database module (DatabaseConnection helpers)."""

import psycopg
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from patrulha.core.config import Settings
from patrulha.core.database import DatabaseConnection
from patrulha.core.errors import APIException, ErrorCode


def connected(rows=None, row=None) -> DatabaseConnection:
    """DatabaseConnection wired to a mocked psycopg connection."""
    db = DatabaseConnection("localhost", 5432, "postgres", "postgres", "secret")
    cursor = AsyncMock()
    cursor.fetchall.return_value = rows or []
    cursor.fetchone.return_value = row
    conn = MagicMock()
    conn.closed = False
    conn.cursor.return_value.__aenter__.return_value = cursor
    db._conn = conn
    db.cursor = cursor
    return db


class TestConnectionSetup:
    """Tests for building and opening connections."""

    def test_from_settings(self):
        config = Settings(db_host="db.internal", db_port=6543, db_sslmode="require", query_timeout=12)
        db = DatabaseConnection.from_settings(config)
        assert db.host == "db.internal"
        assert db.port == 6543
        assert db.query_timeout == 12
        assert db.is_connected() is False

    def test_connect_kwargs(self):
        db = DatabaseConnection("h", 5432, "d", "u", "p", sslmode="require")
        kwargs = db._connect_kwargs()
        assert kwargs["dbname"] == "d"
        assert kwargs["autocommit"] is True
        assert kwargs["sslmode"] == "require"

    def test_connect_kwargs_without_sslmode(self):
        assert "sslmode" not in DatabaseConnection("h", 5432, "d", "u", "p")._connect_kwargs()

    def test_connection_required(self):
        db = DatabaseConnection("h", 5432, "d", "u", "p")
        with pytest.raises(APIException) as exc_info:
            db.connection
        assert exc_info.value.code == ErrorCode.DB_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        db = DatabaseConnection("h", 5432, "d", "u", "p")
        with patch.object(
            psycopg.AsyncConnection,
            "connect",
            AsyncMock(side_effect=psycopg.OperationalError("connection refused")),
        ):
            with pytest.raises(APIException) as exc_info:
                await db.connect()
        assert exc_info.value.code == ErrorCode.DB_CONNECT_FAILED
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_context_manager(self):
        conn = AsyncMock()
        conn.closed = False
        db = DatabaseConnection("h", 5432, "d", "u", "p")
        with patch.object(psycopg.AsyncConnection, "connect", AsyncMock(return_value=conn)):
            async with db:
                assert db.is_connected() is True
        conn.close.assert_awaited_once()
        assert db.is_connected() is False


class TestExecute:
    """Tests for query helpers."""

    @pytest.mark.asyncio
    async def test_execute_query(self):
        db = connected(rows=[{"id": 1}, {"id": 2}])
        rows = await db.execute_query("SELECT id FROM properties", {"a": 1})
        assert rows == [{"id": 1}, {"id": 2}]
        db.cursor.execute.assert_awaited_once_with("SELECT id FROM properties", {"a": 1})

    @pytest.mark.asyncio
    async def test_execute_scalar(self):
        db = connected(row={"id": "abc"})
        assert await db.execute_scalar("SELECT id FROM properties LIMIT 1") == "abc"

    @pytest.mark.asyncio
    async def test_execute_scalar_no_row(self):
        db = connected(row=None)
        assert await db.execute_scalar("SELECT id FROM properties LIMIT 1") is None

    @pytest.mark.asyncio
    async def test_execute_command(self):
        db = connected()
        assert await db.execute_command("INSERT INTO import_logs DEFAULT VALUES") is None
        db.cursor.fetchall.assert_not_awaited()
