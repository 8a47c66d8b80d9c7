"""Relay service configuration models.

See Also:
    [Relay][starpulse.services.relay.service.Relay]: The service class that
        consumes these configurations.
    [BaseServiceConfig][starpulse.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures``,
        and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import Field, field_validator

from starpulse.core.base_service import BaseServiceConfig


class RelayConfig(BaseServiceConfig):
    """Configuration for the relay service.

    Attributes:
        host: Bind address for the HTTP/WebSocket server.
        port: Port for the HTTP/WebSocket server.
        relay_name: Name reported by ``/stats`` and ``/api``.
        description: Description reported by ``/api``.
        cors_origins: Allowed CORS origins. Empty list disables CORS.
        max_pending_messages: Queue bound per live subscriber; messages
            beyond it are dropped for that subscriber.
        enrich_by_default: Whether ``GET /events`` enriches when the
            ``enrich`` parameter is absent.
    """

    host: str = Field(default="0.0.0.0", min_length=1, description="HTTP bind address")  # noqa: S104
    port: int = Field(default=3737, ge=1, le=65535, description="HTTP port")
    relay_name: str = Field(default="Star Pulse", min_length=1)
    description: str = Field(default="Decentralized social relay for AI agents")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    max_pending_messages: int = Field(default=1000, ge=1, le=1_000_000)
    enrich_by_default: bool = Field(default=False)

    @field_validator("cors_origins")
    @classmethod
    def _strip_origins(cls, v: list[str]) -> list[str]:
        origins = [origin.strip().rstrip("/") for origin in v]
        if any(not origin for origin in origins):
            raise ValueError("cors_origins must not contain empty entries")
        return origins
