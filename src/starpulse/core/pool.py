"""
Async PostgreSQL connection pool built on asyncpg.

Wraps ``asyncpg.Pool`` with pydantic configuration, retry with backoff on
connect, per-query retry on dropped connections, and a JSONB codec so tag
arrays round-trip as Python lists.

Connection-level failures surface as
[ConnectionPoolError][starpulse.core.exceptions.ConnectionPoolError]. Query
errors (bad SQL, constraint violations) propagate as asyncpg exceptions and
are wrapped by [EventStore][starpulse.core.event_store.EventStore].

Examples:
    ```python
    pool = Pool(PoolConfig.model_validate({"database": {"host": "db"}}))

    async with pool:
        count = await pool.fetchval("SELECT count(*) FROM event")
    ```
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Literal, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .exceptions import ConnectionPoolError
from .logger import Logger


DEFAULT_PASSWORD_ENV = "DB_PASSWORD"  # pragma: allowlist secret

_TRANSIENT_ERRORS = (
    asyncpg.InterfaceError,
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.CannotConnectNowError,
    asyncio.TimeoutError,
    OSError,
)


def _json_encode(value: Any) -> str:
    # Pre-serialized strings (Event.to_db_params) pass through unchanged
    if isinstance(value, str):
        return value
    return json.dumps(value)


async def _init_connection(conn: asyncpg.Connection[asyncpg.Record]) -> None:
    """Register the JSONB codec on every new pool connection."""
    await conn.set_type_codec(
        "jsonb",
        encoder=_json_encode,
        decoder=json.loads,
        schema="pg_catalog",
    )


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters.

    The password is never read from configuration files: it is loaded from
    the environment variable named by ``password_env`` (``DB_PASSWORD`` by
    default) and held as a ``SecretStr``.
    """

    host: str = Field(default="localhost", min_length=1, description="Database hostname")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    database: str = Field(default="starpulse", min_length=1, description="Database name")
    user: str = Field(default="starpulse", min_length=1, description="Database user")
    password_env: str = Field(
        default=DEFAULT_PASSWORD_ENV,
        min_length=1,
        description="Environment variable name for database password",
    )
    password: SecretStr = Field(description="Database password (loaded from password_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        if isinstance(data, dict) and "password" not in data:
            env_var = data.get("password_env", DEFAULT_PASSWORD_ENV)
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "password": SecretStr(value)}
        return data


class PoolLimitsConfig(BaseModel):
    """Connection pool size and recycling limits."""

    min_size: int = Field(default=1, ge=1, le=100, description="Minimum connections")
    max_size: int = Field(default=10, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle timeout (seconds)"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Timeout settings for pool operations (in seconds)."""

    acquisition: float = Field(default=10.0, ge=0.1, description="Connection acquisition timeout")


class PoolRetryConfig(BaseModel):
    """Backoff between connection attempts.

    Exponential: ``initial_delay * 2**attempt``; linear:
    ``initial_delay * (attempt + 1)``. Both are capped at ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Max retry attempts")
    initial_delay: float = Field(default=1.0, ge=0.1, description="Initial retry delay")
    max_delay: float = Field(default=10.0, ge=0.1, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number *attempt* (zero based)."""
        if self.exponential_backoff:
            value = self.initial_delay * (2**attempt)
        else:
            value = self.initial_delay * (attempt + 1)
        return float(min(value, self.max_delay))


class ServerSettingsConfig(BaseModel):
    """PostgreSQL session settings applied to every pool connection.

    ``statement_timeout`` is in milliseconds (PostgreSQL convention); 0
    disables it.
    """

    application_name: str = Field(default="starpulse", description="Application name")
    timezone: str = Field(default="UTC", description="Timezone")
    statement_timeout: int = Field(
        default=30_000, ge=0, description="Max query execution time in milliseconds (0=unlimited)"
    )


class PoolConfig(BaseModel):
    """Aggregate configuration for the connection pool."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async PostgreSQL connection pool manager.

    Created disconnected; call [connect()][starpulse.core.pool.Pool.connect]
    or use ``async with``. Every query acquires a connection, runs in
    autocommit mode and releases it, so a successful ``execute`` has been
    committed when it returns.

    Note:
        Services never use ``Pool`` directly; the
        [EventStore][starpulse.core.event_store.EventStore] owns one.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff.

        Idempotent and guarded by a lock against concurrent callers.

        Raises:
            ConnectionPoolError: If every attempt fails.
        """
        async with self._connection_lock:
            if self._pool is not None:
                return

            db = self._config.database
            retry = self._config.retry
            self._logger.info("connection_starting", host=db.host, port=db.port, database=db.database)

            for attempt in range(retry.max_attempts):
                try:
                    self._pool = await asyncpg.create_pool(
                        host=db.host,
                        port=db.port,
                        database=db.database,
                        user=db.user,
                        password=db.password.get_secret_value(),
                        min_size=self._config.limits.min_size,
                        max_size=self._config.limits.max_size,
                        max_queries=self._config.limits.max_queries,
                        max_inactive_connection_lifetime=self._config.limits.max_inactive_connection_lifetime,
                        timeout=self._config.timeouts.acquisition,
                        init=_init_connection,
                        server_settings={
                            "application_name": self._config.server_settings.application_name,
                            "timezone": self._config.server_settings.timezone,
                            "statement_timeout": str(self._config.server_settings.statement_timeout),
                        },
                    )
                except (asyncpg.PostgresError, *_TRANSIENT_ERRORS) as e:
                    if attempt + 1 >= retry.max_attempts:
                        self._logger.error("connection_failed", attempts=attempt + 1, error=str(e))
                        raise ConnectionPoolError(
                            f"Failed to connect after {attempt + 1} attempts: {e}"
                        ) from e
                    delay = retry.delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    self._logger.info("connection_established")
                    return

    async def close(self) -> None:
        """Close the pool and release all connections. Idempotent."""
        async with self._connection_lock:
            if self._pool is None:
                return
            try:
                await self._pool.close()
                self._logger.info("connection_closed")
            finally:
                self._pool = None

    # -------------------------------------------------------------------------
    # Query Methods (with retry for dropped connections)
    # -------------------------------------------------------------------------

    async def _run(
        self,
        operation: Literal["fetch", "fetchrow", "fetchval", "execute"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
    ) -> Any:
        """Run one asyncpg operation on a fresh connection.

        Only connection-level failures are retried, each time on a newly
        acquired connection. Query-level errors propagate on the first
        attempt.

        Raises:
            RuntimeError: If the pool is not connected.
            ConnectionPoolError: If every attempt hits a connection failure.
        """
        if self._pool is None:
            raise RuntimeError("Pool not connected. Call connect() first.")

        retry = self._config.retry
        for attempt in range(retry.max_attempts):
            try:
                async with self._pool.acquire(timeout=self._config.timeouts.acquisition) as conn:
                    return await getattr(conn, operation)(query, *args, timeout=timeout)
            except _TRANSIENT_ERRORS as e:
                if attempt + 1 >= retry.max_attempts:
                    self._logger.error(
                        "query_failed", operation=operation, attempts=attempt + 1, error=str(e)
                    )
                    raise ConnectionPoolError(
                        f"{operation} failed after {attempt + 1} attempts: {e}"
                    ) from e
                delay = retry.delay(attempt)
                self._logger.warning(
                    "query_retry", operation=operation, attempt=attempt + 1, delay_s=delay, error=str(e)
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Return every row of *query*."""
        return cast("list[asyncpg.Record]", await self._run("fetch", query, args, timeout))

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        """Return the first row of *query*, or None."""
        return cast("asyncpg.Record | None", await self._run("fetchrow", query, args, timeout))

    async def fetchval(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        """Return the first column of the first row, or None."""
        return await self._run("fetchval", query, args, timeout)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Run *query* and return the command status tag (e.g. ``INSERT 0 1``)."""
        return cast("str", await self._run("execute", query, args, timeout))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def config(self) -> PoolConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self.is_connected})"
