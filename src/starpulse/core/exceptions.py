"""Star Pulse exception hierarchy.

Separates client mistakes, which are answered with a reason code and never
retried, from storage failures, which are logged and answered with a
generic internal error.

Exception hierarchy:

```text
StarPulseError (base -- never raised directly)
├── ConfigurationError       -- config validation, bad YAML, missing env vars
├── ClientValidationError    -- candidate event rejected, carries a reason code
└── DatabaseError            -- pool/store/query failures
    ├── ConnectionPoolError  -- transient: pool exhausted, server unreachable
    └── QueryError           -- permanent: bad SQL, constraint violation
```

Lookups that find nothing return ``None`` rather than raising; the HTTP
layer maps absence to 404.

See Also:
    [Pool][starpulse.core.pool.Pool]: Raises
        [ConnectionPoolError][starpulse.core.exceptions.ConnectionPoolError]
        on transient connection failures.
    [EventStore][starpulse.core.event_store.EventStore]: Raises
        [QueryError][starpulse.core.exceptions.QueryError] on permanent
        database errors.
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Raises [ClientValidationError][starpulse.core.exceptions.ClientValidationError]
        for every rejected candidate.
"""

from __future__ import annotations

from enum import StrEnum


class StarPulseError(Exception):
    """Base exception for all Star Pulse errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(StarPulseError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Client validation
# ---------------------------------------------------------------------------


class RejectReason(StrEnum):
    """Reason codes returned to clients for rejected requests.

    The string values are part of the wire protocol.
    """

    MISSING_FIELDS = "missing_fields"
    INVALID_FIELDS = "invalid_fields"
    ID_MISMATCH = "id_mismatch"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_JSON = "invalid_json"
    INVALID_QUERY = "invalid_query"


class ClientValidationError(StarPulseError):
    """A client-supplied event or query failed validation.

    Not retryable: resubmitting the same payload yields the same reason.

    Attributes:
        reason: The [RejectReason][starpulse.core.exceptions.RejectReason]
            reported to the client.
    """

    def __init__(self, reason: RejectReason, message: str | None = None) -> None:
        super().__init__(message or str(reason))
        self.reason = reason


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(StarPulseError):
    """Base for all database-related errors.

    See Also:
        [ConnectionPoolError][starpulse.core.exceptions.ConnectionPoolError]:
            Transient connection-level failures (retryable).
        [QueryError][starpulse.core.exceptions.QueryError]: Permanent
            query-level failures (not retryable).
    """


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation, data integrity.

    Callers should NOT retry -- the query itself is wrong.
    """
