"""Shared fixtures for the services.relay test package.

Provides ``MemoryEventStore``, an in-process stand-in for
[EventStore][starpulse.core.event_store.EventStore] with the same read and
write methods, so the ingestion pipeline, query service and HTTP layer can
be exercised end to end without PostgreSQL.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterable

import pytest

from starpulse.core.broadcaster import Broadcaster
from starpulse.models import (
    MAX_QUERY_LIMIT,
    RECENT_POSTS_LIMIT,
    AgentProfile,
    Event,
    EventFilter,
    EventKind,
    EventTotals,
    Profile,
    TagName,
)
from starpulse.services.relay import IngestionPipeline, QueryService, Relay, RelayConfig


class MemoryEventStore:
    """Dictionary-backed event store with the EventStore read/write surface."""

    def __init__(self) -> None:
        self._rows: dict[str, tuple[int, Event]] = {}
        self._seq = itertools.count()
        self.upserts = 0
        self.fail_with: Exception | None = None

    def __len__(self) -> int:
        return len(self._rows)

    async def upsert(self, event: Event) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.upserts += 1
        seq = self._rows[event.id][0] if event.id in self._rows else next(self._seq)
        self._rows[event.id] = (seq, event)

    def _ordered(self) -> list[Event]:
        rows = sorted(self._rows.values(), key=lambda row: (-row[1].created_at, row[0]))
        return [event for _, event in rows]

    async def query(self, event_filter: EventFilter) -> list[Event]:
        matches = [
            event
            for event in self._ordered()
            if (event_filter.author is None or event.pubkey == event_filter.author)
            and (event_filter.since is None or event.created_at >= event_filter.since)
            and (event_filter.until is None or event.created_at <= event_filter.until)
            and (event_filter.kind is None or event.kind == event_filter.kind)
        ]
        return matches[: event_filter.limit]

    async def get_by_id(self, event_id: str) -> Event | None:
        row = self._rows.get(event_id)
        return row[1] if row is not None else None

    async def replies(self, event_id: str, limit: int = MAX_QUERY_LIMIT) -> list[Event]:
        found = [
            event
            for event in reversed(self._ordered())
            if event.kind == EventKind.REPLY and event_id in event.tag_values(TagName.REPLY_TO)
        ]
        return found[:limit]

    def _latest_profile(self, pubkey: str) -> Profile | None:
        for event in self._ordered():
            if event.pubkey == pubkey and event.kind == EventKind.PROFILE:
                return Profile.from_content(event.content)
        return None

    async def profile(self, pubkey: str) -> AgentProfile:
        events = [event for event in self._ordered() if event.pubkey == pubkey]
        return AgentProfile(
            pubkey=pubkey,
            profile=self._latest_profile(pubkey),
            post_count=sum(1 for e in events if e.kind in (EventKind.POST, EventKind.REPLY)),
            upvote_count=sum(1 for e in events if e.kind == EventKind.UPVOTE),
            recent_posts=await self.query(
                EventFilter(author=pubkey, kind=EventKind.POST, limit=RECENT_POSTS_LIMIT)
            ),
        )

    async def totals(self) -> EventTotals:
        events = self._ordered()
        return EventTotals(
            event_count=len(events), author_count=len({event.pubkey for event in events})
        )

    async def profiles_for(self, pubkeys: Iterable[str]) -> dict[str, Profile]:
        result = {}
        for pubkey in set(pubkeys):
            profile = self._latest_profile(pubkey)
            if profile is not None:
                result[pubkey] = profile
        return result

    def _counts(self, kind: int, tag: str, event_ids: Iterable[str]) -> dict[str, int]:
        counts = dict.fromkeys(event_ids, 0)
        for event in self._ordered():
            if event.kind != kind:
                continue
            for ref in set(event.tag_values(tag)):
                if ref in counts:
                    counts[ref] += 1
        return counts

    async def reply_counts(self, event_ids: Iterable[str]) -> dict[str, int]:
        return self._counts(EventKind.REPLY, TagName.REPLY_TO, event_ids)

    async def upvote_counts(self, event_ids: Iterable[str]) -> dict[str, int]:
        return self._counts(EventKind.UPVOTE, TagName.TARGET, event_ids)


@pytest.fixture
def memory_store() -> MemoryEventStore:
    return MemoryEventStore()


@pytest.fixture
def broadcaster() -> Broadcaster:
    return Broadcaster(max_pending=10)


@pytest.fixture
def pipeline(memory_store: MemoryEventStore, broadcaster: Broadcaster) -> IngestionPipeline:
    return IngestionPipeline(memory_store, broadcaster)  # type: ignore[arg-type]


@pytest.fixture
def queries(memory_store: MemoryEventStore, broadcaster: Broadcaster) -> QueryService:
    return QueryService(memory_store, broadcaster)  # type: ignore[arg-type]


@pytest.fixture
def relay_config() -> RelayConfig:
    """Relay config bound to loopback with metrics disabled."""
    return RelayConfig(interval=60.0, host="127.0.0.1", port=9999, max_pending_messages=10)


@pytest.fixture
def relay(memory_store: MemoryEventStore, relay_config: RelayConfig) -> Relay:
    return Relay(store=memory_store, config=relay_config)  # type: ignore[arg-type]
