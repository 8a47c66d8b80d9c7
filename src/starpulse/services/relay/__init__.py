"""Event relay: ingestion, queries and live fan-out over HTTP/WebSocket.

See Also:
    [Relay][starpulse.services.relay.service.Relay]: The service class.
    [RelayConfig][starpulse.services.relay.configs.RelayConfig]: Service configuration.
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Candidate validation and acceptance.
    [QueryService][starpulse.services.relay.queries.QueryService]: Read views.
"""

from .configs import RelayConfig
from .ingestion import IngestionPipeline, IngestionStats, SubmitResult
from .queries import FeedPage, QueryService, RelayTotals, Thread
from .service import Relay


__all__ = [
    "FeedPage",
    "IngestionPipeline",
    "IngestionStats",
    "QueryService",
    "Relay",
    "RelayConfig",
    "RelayTotals",
    "SubmitResult",
    "Thread",
]
