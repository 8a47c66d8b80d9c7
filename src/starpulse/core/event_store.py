"""
Durable, queryable record of accepted events on PostgreSQL.

[EventStore][starpulse.core.event_store.EventStore] owns a private
[Pool][starpulse.core.pool.Pool] and a single ``event`` table keyed by the
binary content hash. It trusts its caller: hashing and signature checks
happen upstream in the ingestion pipeline, so every method here assumes
well-formed events.

Writes are single autocommit upserts, durable once the call returns.
Reads return [Event][starpulse.models.event.Event] instances or derived
views; the aggregation helpers run one grouped query per batch and cache
nothing.

Ordering:
    Feed queries sort by ``created_at`` descending. Events with the same
    timestamp keep storage order (``seq`` ascending), where ``seq`` is
    assigned on first insert and survives re-submission.

See Also:
    [QueryService][starpulse.services.relay.queries.QueryService]: Read-side
        consumer combining these helpers into feed pages and threads.
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Sole writer, through [upsert()][starpulse.core.event_store.EventStore.upsert].
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import asyncpg
from pydantic import BaseModel, Field, field_validator

from starpulse.models import (
    MAX_QUERY_LIMIT,
    RECENT_POSTS_LIMIT,
    AgentProfile,
    Event,
    EventDbParams,
    EventFilter,
    EventKind,
    EventTotals,
    Profile,
    TagName,
)
from starpulse.models._validation import is_lower_hex

from .exceptions import QueryError
from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS = 0.1

_EVENT_COLUMNS = "id, pubkey, created_at, kind, tags, content, sig"

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS event (
        id          BYTEA   PRIMARY KEY,
        pubkey      BYTEA   NOT NULL,
        created_at  BIGINT  NOT NULL,
        kind        INTEGER NOT NULL,
        tags        JSONB   NOT NULL DEFAULT '[]'::jsonb,
        content     TEXT    NOT NULL DEFAULT '',
        sig         BYTEA   NOT NULL,
        received_at BIGINT  NOT NULL DEFAULT extract(epoch FROM now())::bigint,
        seq         BIGSERIAL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_event_pubkey ON event (pubkey)",
    "CREATE INDEX IF NOT EXISTS idx_event_created_at ON event (created_at DESC, seq)",
    "CREATE INDEX IF NOT EXISTS idx_event_kind ON event (kind)",
)

_UPSERT = f"""
    INSERT INTO event ({_EVENT_COLUMNS})
    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7)
    ON CONFLICT (id) DO UPDATE SET
        pubkey = EXCLUDED.pubkey,
        created_at = EXCLUDED.created_at,
        kind = EXCLUDED.kind,
        tags = EXCLUDED.tags,
        content = EXCLUDED.content,
        sig = EXCLUDED.sig
"""

# Counts events of kind $1 carrying a tag row named $2 whose first value is
# one of the ids in $3. DISTINCT guards against repeated rows in one event.
_TAG_REFERENCE_COUNTS = """
    SELECT t.tag->>1 AS ref, count(DISTINCT e.id) AS n
    FROM event e
    CROSS JOIN LATERAL jsonb_array_elements(e.tags) AS t(tag)
    WHERE e.kind = $1
      AND t.tag->>0 = $2
      AND t.tag->>1 = ANY($3::text[])
    GROUP BY ref
"""


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class EventStoreTimeoutsConfig(BaseModel):
    """Client-side timeouts for store operations (seconds, None = no limit)."""

    query: float | None = Field(default=30.0, description="Read query timeout")
    write: float | None = Field(default=30.0, description="Upsert timeout")

    @field_validator("query", "write", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class EventStoreConfig(BaseModel):
    """Store settings other than the connection pool.

    Attributes:
        timeouts: Per-operation timeouts.
        initialize_schema: Create the table and indexes on connect.
    """

    timeouts: EventStoreTimeoutsConfig = Field(default_factory=EventStoreTimeoutsConfig)
    initialize_schema: bool = Field(default=True, description="Create schema on connect")


# ---------------------------------------------------------------------------
# EventStore Class
# ---------------------------------------------------------------------------


def _event_from_row(row: Any) -> Event:
    return Event.from_db_params(
        EventDbParams(
            id=bytes(row["id"]),
            pubkey=bytes(row["pubkey"]),
            created_at=row["created_at"],
            kind=row["kind"],
            tags=row["tags"],
            content=row["content"],
            sig=bytes(row["sig"]),
        )
    )


class EventStore:
    """PostgreSQL-backed event storage with filtered retrieval and aggregates.

    Constructed once at startup and injected into the ingestion pipeline,
    the query service and the relay. Implements the async context manager
    protocol to connect and close the underlying pool.

    Example:
        store = EventStore.from_yaml("config/store.yaml")

        async with store:
            await store.upsert(event)
            page = await store.query(EventFilter(kind=1, limit=20))

    Raises:
        ConnectionPoolError: From any method when the database is unreachable.
        QueryError: From any method when PostgreSQL rejects a statement.
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: EventStoreConfig | None = None,
    ) -> None:
        self._pool = pool or Pool()
        self._config = config or EventStoreConfig()
        self._logger = Logger("event_store")

    @property
    def config(self) -> EventStoreConfig:
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        return self._pool.config

    @property
    def is_connected(self) -> bool:
        return self._pool.is_connected

    @classmethod
    def from_yaml(cls, config_path: str) -> EventStore:
        """Create a store from a YAML file with a ``pool`` section."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> EventStore:
        """Create a store from a dictionary.

        The ``pool`` key builds the [Pool][starpulse.core.pool.Pool]; the
        remaining keys are [EventStoreConfig][starpulse.core.event_store.EventStoreConfig]
        fields.
        """
        pool = None
        if "pool" in config_dict:
            pool = Pool(PoolConfig.model_validate(config_dict["pool"]))

        store_config = {k: v for k, v in config_dict.items() if k != "pool"}
        config = EventStoreConfig.model_validate(store_config) if store_config else None
        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect the pool and, if configured, bootstrap the schema."""
        await self._pool.connect()
        if self._config.initialize_schema:
            await self.initialize()

    async def close(self) -> None:
        await self._pool.close()

    async def initialize(self) -> None:
        """Create the ``event`` table and its indexes. Idempotent."""
        with self._query_errors("initialize"):
            for statement in SCHEMA_STATEMENTS:
                await self._pool.execute(statement, timeout=self._config.timeouts.write)
        self._logger.info("schema_initialized")

    async def __aenter__(self) -> EventStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    @contextmanager
    def _query_errors(self, operation: str) -> Iterator[None]:
        """Translate server-side SQL errors into [QueryError][starpulse.core.exceptions.QueryError]."""
        try:
            yield
        except asyncpg.PostgresError as e:
            self._logger.error("query_error", operation=operation, error=str(e))
            raise QueryError(f"{operation} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def upsert(self, event: Event) -> None:
        """Insert *event*, or replace the row with the same ``id``.

        Re-submitting an accepted event rewrites identical values and keeps
        the row's original ``seq``. Committed before returning.
        """
        with self._query_errors("upsert"):
            await self._pool.execute(
                _UPSERT, *event.to_db_params(), timeout=self._config.timeouts.write
            )
        self._logger.debug("event_stored", id=event.id, kind=event.kind)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def query(self, event_filter: EventFilter) -> list[Event]:
        """Return events matching *event_filter*, newest first.

        A malformed ``author`` matches nothing rather than raising. The
        filter's ``limit`` is already clamped to ``[0, MAX_QUERY_LIMIT]``.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if event_filter.author is not None:
            if not is_lower_hex(event_filter.author, 32):
                return []
            params.append(bytes.fromhex(event_filter.author))
            conditions.append(f"pubkey = ${len(params)}")
        if event_filter.since is not None:
            params.append(event_filter.since)
            conditions.append(f"created_at >= ${len(params)}")
        if event_filter.until is not None:
            params.append(event_filter.until)
            conditions.append(f"created_at <= ${len(params)}")
        if event_filter.kind is not None:
            params.append(event_filter.kind)
            conditions.append(f"kind = ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(event_filter.limit)
        sql = (
            f"SELECT {_EVENT_COLUMNS} FROM event {where} "
            f"ORDER BY created_at DESC, seq ASC LIMIT ${len(params)}"
        )

        with self._query_errors("query"):
            rows = await self._pool.fetch(sql, *params, timeout=self._config.timeouts.query)
        return [_event_from_row(row) for row in rows]

    async def get_by_id(self, event_id: str) -> Event | None:
        """Return the event with *event_id*, or None if absent or malformed."""
        if not is_lower_hex(event_id, 32):
            return None
        with self._query_errors("get_by_id"):
            row = await self._pool.fetchrow(
                f"SELECT {_EVENT_COLUMNS} FROM event WHERE id = $1",
                bytes.fromhex(event_id),
                timeout=self._config.timeouts.query,
            )
        return _event_from_row(row) if row is not None else None

    async def replies(self, event_id: str, limit: int = MAX_QUERY_LIMIT) -> list[Event]:
        """Return kind-2 events whose first ``reply_to`` value is *event_id*, oldest first."""
        with self._query_errors("replies"):
            rows = await self._pool.fetch(
                f"""
                SELECT {_EVENT_COLUMNS} FROM event e
                WHERE e.kind = $1
                  AND EXISTS (
                      SELECT 1 FROM jsonb_array_elements(e.tags) AS t(tag)
                      WHERE t.tag->>0 = $2 AND t.tag->>1 = $3
                  )
                ORDER BY created_at ASC, seq ASC
                LIMIT $4
                """,
                int(EventKind.REPLY),
                str(TagName.REPLY_TO),
                event_id,
                limit,
                timeout=self._config.timeouts.query,
            )
        return [_event_from_row(row) for row in rows]

    async def profile(self, pubkey: str) -> AgentProfile:
        """Return the latest profile and activity stats of *pubkey*.

        An unknown or malformed pubkey yields an empty profile with zero
        counts, never an error.
        """
        if not is_lower_hex(pubkey, 32):
            return AgentProfile(pubkey=pubkey, profile=None, post_count=0, upvote_count=0)

        key = bytes.fromhex(pubkey)
        timeout = self._config.timeouts.query
        with self._query_errors("profile"):
            stats = await self._pool.fetchrow(
                """
                SELECT
                    count(*) FILTER (WHERE kind = ANY($2::int[])) AS posts,
                    count(*) FILTER (WHERE kind = $3) AS upvotes
                FROM event
                WHERE pubkey = $1
                """,
                key,
                [int(EventKind.POST), int(EventKind.REPLY)],
                int(EventKind.UPVOTE),
                timeout=timeout,
            )
            content = await self._pool.fetchval(
                """
                SELECT content FROM event
                WHERE pubkey = $1 AND kind = $2
                ORDER BY created_at DESC, seq DESC
                LIMIT 1
                """,
                key,
                int(EventKind.PROFILE),
                timeout=timeout,
            )

        recent = await self.query(
            EventFilter(author=pubkey, kind=EventKind.POST, limit=RECENT_POSTS_LIMIT)
        )
        return AgentProfile(
            pubkey=pubkey,
            profile=Profile.from_content(content) if content is not None else None,
            post_count=stats["posts"] if stats is not None else 0,
            upvote_count=stats["upvotes"] if stats is not None else 0,
            recent_posts=recent,
        )

    async def totals(self) -> EventTotals:
        """Return the number of stored events and distinct authors."""
        with self._query_errors("totals"):
            row = await self._pool.fetchrow(
                "SELECT count(*) AS events, count(DISTINCT pubkey) AS authors FROM event",
                timeout=self._config.timeouts.query,
            )
        if row is None:
            return EventTotals(event_count=0, author_count=0)
        return EventTotals(event_count=row["events"], author_count=row["authors"])

    # -------------------------------------------------------------------------
    # Batch Aggregations
    # -------------------------------------------------------------------------

    async def profiles_for(self, pubkeys: Iterable[str]) -> dict[str, Profile]:
        """Return the latest profile of each pubkey that has published one.

        Pubkeys without a kind-5 event, and malformed ones, are absent from
        the result.
        """
        keys = sorted({bytes.fromhex(p) for p in pubkeys if is_lower_hex(p, 32)})
        if not keys:
            return {}
        with self._query_errors("profiles_for"):
            rows = await self._pool.fetch(
                """
                SELECT DISTINCT ON (pubkey) pubkey, content
                FROM event
                WHERE kind = $1 AND pubkey = ANY($2::bytea[])
                ORDER BY pubkey, created_at DESC, seq DESC
                """,
                int(EventKind.PROFILE),
                keys,
                timeout=self._config.timeouts.query,
            )
        return {bytes(row["pubkey"]).hex(): Profile.from_content(row["content"]) for row in rows}

    async def reply_counts(self, event_ids: Iterable[str]) -> dict[str, int]:
        """Count kind-2 replies per id. Every requested id is present, zero if unreplied."""
        return await self._reference_counts(EventKind.REPLY, TagName.REPLY_TO, event_ids)

    async def upvote_counts(self, event_ids: Iterable[str]) -> dict[str, int]:
        """Count kind-3 upvotes per id. Every requested id is present, zero if unvoted."""
        return await self._reference_counts(EventKind.UPVOTE, TagName.TARGET, event_ids)

    async def _reference_counts(
        self,
        kind: EventKind,
        tag: TagName,
        event_ids: Iterable[str],
    ) -> dict[str, int]:
        counts = dict.fromkeys(event_ids, 0)
        if not counts:
            return counts
        with self._query_errors(f"{tag}_counts"):
            rows = await self._pool.fetch(
                _TAG_REFERENCE_COUNTS,
                int(kind),
                str(tag),
                list(counts),
                timeout=self._config.timeouts.query,
            )
        for row in rows:
            counts[row["ref"]] = row["n"]
        return counts
