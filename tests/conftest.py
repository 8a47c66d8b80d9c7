"""
Pytest configuration and shared fixtures for Star Pulse tests.

Provides:
- Mock fixtures for asyncpg, Pool and EventStore
- An Ed25519 keypair and a factory for signed events
- Candidate payload helpers for ingestion tests
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from starpulse.core.event_store import EventStore, EventStoreConfig
from starpulse.core.pool import DatabaseConfig, Pool, PoolConfig
from starpulse.models import Event, EventTemplate
from starpulse.utils.crypto import Keypair, generate_keypair, sign_event


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Mock asyncpg connection with empty results."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Mock asyncpg pool whose ``acquire()`` yields ``mock_connection``."""
    pool = MagicMock()
    pool.close = AsyncMock()

    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)
    return pool


@pytest.fixture
def pool_config(monkeypatch: pytest.MonkeyPatch) -> PoolConfig:
    monkeypatch.setenv("DB_PASSWORD", "test_password")
    return PoolConfig(
        database=DatabaseConfig(host="localhost", port=5432, database="test_db", user="test_user"),
        retry={"max_attempts": 2, "initial_delay": 0.1, "max_delay": 0.2},
    )


@pytest.fixture
def mock_pool(pool_config: PoolConfig, mock_asyncpg_pool: MagicMock) -> Pool:
    """Pool that looks connected and routes every query to ``mock_connection``."""
    pool = Pool(config=pool_config)
    pool._pool = mock_asyncpg_pool
    return pool


@pytest.fixture
def mock_store(mock_pool: Pool) -> EventStore:
    return EventStore(pool=mock_pool, config=EventStoreConfig(initialize_schema=False))


# ============================================================================
# Signed Event Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def keypair() -> Keypair:
    return generate_keypair()


@pytest.fixture(scope="session")
def other_keypair() -> Keypair:
    return generate_keypair()


EventFactory = Callable[..., Event]


@pytest.fixture
def make_event(keypair: Keypair) -> EventFactory:
    """Factory for signed events; defaults to a kind-1 post by ``keypair``."""

    def _make(
        *,
        kind: int = 1,
        content: str = "hello relay",
        tags: list[list[str]] | None = None,
        created_at: int = 1_700_000_000,
        signer: Keypair | None = None,
    ) -> Event:
        signer = signer or keypair
        template = EventTemplate(
            pubkey=signer.public_key,
            created_at=created_at,
            kind=kind,
            tags=tags or [],
            content=content,
        )
        return sign_event(template, signer.secret_key)

    return _make


def as_payload(event: Event, **overrides: Any) -> dict[str, Any]:
    """Wire form of *event* with selected fields replaced or removed.

    An override of ``...`` (Ellipsis) deletes the key.
    """
    payload = event.to_dict()
    for key, value in overrides.items():
        if value is ...:
            payload.pop(key, None)
        else:
            payload[key] = value
    return payload
