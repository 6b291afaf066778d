"""Database connection management."""

import asyncio
import logging
import time
from typing import Any, Optional

import psycopg
from psycopg.rows import dict_row

from patrulha.core.config import Settings, settings
from patrulha.core.errors import APIException, ErrorCode, ErrorCategory
from patrulha.core.metrics import metrics

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Manages an autocommit PostgreSQL connection to the hosted database.

    Every statement commits on its own; the import pipeline persists one row
    at a time and never spans a transaction across rows.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        sslmode: Optional[str] = None,
        connect_timeout: int = 10,
        query_timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.sslmode = sslmode
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self._conn: Optional[psycopg.AsyncConnection] = None

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "DatabaseConnection":
        """Build an unconnected instance from application settings."""
        config = config or settings
        return cls(
            host=config.db_host,
            port=config.db_port,
            database=config.db_name,
            user=config.db_user,
            password=config.db_password,
            sslmode=config.db_sslmode,
            connect_timeout=config.db_connect_timeout,
            query_timeout=config.query_timeout,
        )

    def _connect_kwargs(self) -> dict:
        """Build psycopg connection kwargs without embedding secrets in a DSN string."""
        kwargs = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
            "row_factory": dict_row,
            "autocommit": True,
        }
        if self.sslmode:
            kwargs["sslmode"] = self.sslmode
        return kwargs

    async def connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = await asyncio.wait_for(
                psycopg.AsyncConnection.connect(**self._connect_kwargs()),
                timeout=self.connect_timeout,
            )
            metrics.record_db_connection_attempt("success")
            logger.info(
                f"Connected to database {self.database} on {self.host}:{self.port}"
            )
        except asyncio.TimeoutError as e:
            metrics.record_db_connection_attempt("timeout")
            logger.error(
                "Database connection timed out after %s seconds",
                self.connect_timeout,
            )
            raise APIException(
                code=ErrorCode.DB_CONNECT_FAILED,
                message=(
                    "Failed to connect to database: "
                    f"connection timed out after {self.connect_timeout}s"
                ),
                category=ErrorCategory.UPSTREAM,
                status_code=503,
                retryable=True,
            ) from e
        except psycopg.Error as e:
            metrics.record_db_connection_attempt("failure")
            logger.error("Database connection failed", exc_info=True)
            raise APIException(
                code=ErrorCode.DB_CONNECT_FAILED,
                message="Failed to connect to database",
                category=ErrorCategory.UPSTREAM,
                status_code=503,
                retryable=True,
            ) from e

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "DatabaseConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    @property
    def connection(self) -> psycopg.AsyncConnection:
        """Get the connection object."""
        if not self._conn:
            raise APIException(
                code=ErrorCode.DB_UNAVAILABLE,
                message="Database connection not established",
                category=ErrorCategory.UPSTREAM,
                status_code=503,
            )
        return self._conn

    async def execute_query(
        self, query: Any, params: Optional[dict] = None, timeout: Optional[int] = None
    ) -> list[dict]:
        """
        Execute a query and return results.

        Args:
            query: SQL query string or composed statement
            params: Query parameters
            timeout: Query timeout in seconds (uses the configured query timeout if None)
        """
        if timeout is None:
            timeout = self.query_timeout
        start_time = time.time()
        async with self.connection.cursor() as cur:
            try:
                await asyncio.wait_for(cur.execute(query, params), timeout=timeout)
                return await cur.fetchall()
            except asyncio.TimeoutError:
                logger.warning(f"Query timeout after {timeout} seconds")
                raise
            except Exception:
                logger.error("execute_query failed; params: %s", params, exc_info=True)
                raise
            finally:
                metrics.record_db_query(time.time() - start_time)

    async def execute_command(
        self, query: Any, params: Optional[dict] = None, timeout: Optional[int] = None
    ) -> None:
        """
        Execute a command that returns no result set (INSERT without RETURNING, DDL).
        """
        if timeout is None:
            timeout = self.query_timeout
        start_time = time.time()
        async with self.connection.cursor() as cur:
            try:
                await asyncio.wait_for(cur.execute(query, params), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Command timeout after {timeout} seconds")
                raise
            finally:
                metrics.record_db_query(time.time() - start_time)

    def _first_value(self, row: Optional[dict]) -> Optional[Any]:
        """Get the first value from a dict row (row_factory=dict_row)."""
        if not row:
            return None
        values = list(row.values())
        return values[0] if values else None

    async def execute_scalar(
        self, query: Any, params: Optional[dict] = None, timeout: Optional[int] = None
    ) -> Optional[Any]:
        """Execute a query and return a single scalar value."""
        if timeout is None:
            timeout = self.query_timeout
        start_time = time.time()
        async with self.connection.cursor() as cur:
            try:
                await asyncio.wait_for(cur.execute(query, params), timeout=timeout)
                result = await cur.fetchone()
                return self._first_value(result)
            finally:
                metrics.record_db_query(time.time() - start_time)
