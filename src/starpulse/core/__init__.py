"""Core layer: storage, fan-out, service lifecycle and ambient infrastructure.

Sits between ``starpulse.models``/``starpulse.utils`` and
``starpulse.services``.

Attributes:
    EventStore: PostgreSQL event storage with filtered reads and batch
        aggregations. See [EventStore][starpulse.core.event_store.EventStore].
    Broadcaster: In-memory fan-out of accepted events to live subscribers.
        See [Broadcaster][starpulse.core.broadcaster.Broadcaster].
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][starpulse.core.pool.Pool].
    BaseService: Abstract generic service with the run loop, factories and
        metrics helpers.
    Logger: Structured logger with key=value and JSON output.
    MetricsServer: Prometheus ``/metrics`` endpoint.

Examples:
    ```python
    from starpulse.core import Broadcaster, EventStore

    store = EventStore.from_yaml("config/store.yaml")
    async with store:
        events = await store.query(EventFilter(kind=1))
    ```
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .broadcaster import Broadcaster, Subscriber, encode_event_message
from .event_store import EventStore, EventStoreConfig, EventStoreTimeoutsConfig
from .exceptions import (
    ClientValidationError,
    ConfigurationError,
    ConnectionPoolError,
    DatabaseError,
    QueryError,
    RejectReason,
    StarPulseError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BaseService",
    "BaseServiceConfig",
    "Broadcaster",
    "ClientValidationError",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "DatabaseConfig",
    "DatabaseError",
    "EventStore",
    "EventStoreConfig",
    "EventStoreTimeoutsConfig",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PoolTimeoutsConfig",
    "QueryError",
    "RejectReason",
    "ServerSettingsConfig",
    "StarPulseError",
    "StructuredFormatter",
    "Subscriber",
    "encode_event_message",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
