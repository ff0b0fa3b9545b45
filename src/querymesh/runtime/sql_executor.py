"""
SQL executors - run a step's SQL against its service.

Implementations of the SqlExecutor protocol:
- PooledSqlExecutor: direct database access through SQLAlchemy async engines,
  one engine per service, held by an explicit ConnectionPool
- HttpSqlExecutor: POST /internal/sql to a service that runs the query itself
- RoutingSqlExecutor: per-service dispatch to either of the above

The core performs no retries; timeouts belong to the engine or HTTP client.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..core.errors import ConfigError, ServiceError
from ..core.plan_types import Row

logger = logging.getLogger(__name__)


class SqlExecutor(Protocol):
    """Runs SQL text against one service and returns rows as dicts."""

    async def execute(self, service: str, sql: str) -> list[Row]:
        ...


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


# =============================================================================
# SQLAlchemy
# =============================================================================


class ConnectionPool:
    """
    Per-service SQLAlchemy async engines, created lazily from DSNs.

    Usage:
        pool = ConnectionPool({"wallet": "postgresql+asyncpg://..."})
        engine = pool.get_engine("wallet")
        ...
        await pool.dispose()
    """

    def __init__(self, dsns: dict[str, str], echo: bool = False, timeout: Optional[float] = None):
        """
        Initialize pool.

        Args:
            dsns: Service name -> SQLAlchemy DSN
            echo: Log SQL statements (SQLAlchemy echo)
            timeout: Per-statement timeout in seconds, passed to asyncpg
        """
        self.dsns = dict(dsns)
        self.echo = echo
        self.timeout = timeout
        self._engines: dict[str, AsyncEngine] = {}

    @property
    def services(self) -> list[str]:
        return list(self.dsns)

    def get_engine(self, service: str) -> AsyncEngine:
        """Get or create the engine for a service."""
        engine = self._engines.get(service)
        if engine is not None:
            return engine

        dsn = self.dsns.get(service)
        if not dsn:
            raise ConfigError(f"No database DSN configured for service '{service}'")

        connect_args: dict[str, Any] = {}
        if self.timeout and dsn.startswith("postgresql+asyncpg"):
            connect_args["command_timeout"] = self.timeout

        engine = create_async_engine(dsn, echo=self.echo, pool_pre_ping=True, connect_args=connect_args)
        self._engines[service] = engine
        logger.info(f"Created database engine for service {service}")
        return engine

    def is_connected(self, service: str) -> bool:
        return service in self._engines

    async def dispose(self):
        """Close all engines."""
        for service, engine in self._engines.items():
            await engine.dispose()
            logger.debug(f"Disposed database engine for service {service}")
        self._engines.clear()


class PooledSqlExecutor:
    """
    Executes SQL through a ConnectionPool.

    Usage:
        executor = PooledSqlExecutor(pool)
        rows = await executor.execute("wallet", 'SELECT * FROM "Transaction"')
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def execute(self, service: str, sql: str) -> list[Row]:
        """
        Run a statement and return rows as plain dicts.

        Decimal values are converted to float.

        Raises:
            ServiceError: If the database rejects the statement
            ConfigError: If the service has no DSN
        """
        engine = self.pool.get_engine(service)
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text(sql))
                if not result.returns_rows:
                    return []
                return [
                    {key: _normalize_value(value) for key, value in row._mapping.items()}
                    for row in result
                ]
        except SQLAlchemyError as e:
            raise ServiceError(service=service, status_code=0, message=str(e)) from e

    async def close(self):
        await self.pool.dispose()


# =============================================================================
# HTTP
# =============================================================================


class HttpSqlExecutor:
    """
    Executes SQL by calling POST {service_url}/internal/sql.

    Request:  {"sql": "SELECT ..."}
    Response: {"rows": [{...}, ...]}
    """

    def __init__(self, service_urls: dict[str, str], timeout: float = 30.0):
        """
        Initialize executor.

        Args:
            service_urls: Service name -> base URL (e.g. "http://wallet:8001")
            timeout: HTTP request timeout in seconds
        """
        self.service_urls = dict(service_urls)
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute(self, service: str, sql: str) -> list[Row]:
        """
        Run SQL on a service over HTTP.

        Raises:
            ServiceError: On non-200 responses, transport errors and
                malformed payloads
        """
        service_url = self.service_urls.get(service)
        if not service_url:
            raise ServiceError(service=service, status_code=0, message="Service URL not configured")

        client = await self._get_client()
        url = f"{service_url.rstrip('/')}/internal/sql"

        try:
            response = await client.post(url, json={"sql": sql})
        except httpx.RequestError as e:
            raise ServiceError(service=service, status_code=0, message=str(e))

        if response.status_code != 200:
            raise ServiceError(
                service=service,
                status_code=response.status_code,
                message=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceError(service=service, status_code=response.status_code, message=f"Invalid JSON: {e}")
        rows = data.get("rows") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise ServiceError(service=service, status_code=response.status_code, message="Response has no rows list")
        return rows


# =============================================================================
# Routing
# =============================================================================


class RoutingSqlExecutor:
    """
    Dispatches each service to its own executor.

    Used when some services are reached directly by DSN and others over HTTP.
    """

    def __init__(self, routes: dict[str, SqlExecutor]):
        self.routes = dict(routes)

    async def execute(self, service: str, sql: str) -> list[Row]:
        executor = self.routes.get(service)
        if executor is None:
            raise ServiceError(service=service, status_code=0, message="No executor configured for service")
        return await executor.execute(service, sql)

    async def close(self):
        closed: set[int] = set()
        for executor in self.routes.values():
            if id(executor) in closed:
                continue
            closed.add(id(executor))
            close = getattr(executor, "close", None)
            if close is not None:
                await close()
