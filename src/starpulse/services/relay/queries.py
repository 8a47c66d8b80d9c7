"""Read-only views over the event store.

[QueryService][starpulse.services.relay.queries.QueryService] combines the
[EventStore][starpulse.core.event_store.EventStore] primitives into the
shapes served by the HTTP layer: feed pages with optional enrichment,
single events, reply threads, agent profiles and relay totals. It holds no
state and caches nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from starpulse.models import AgentProfile, Event, EventKind, Profile


if TYPE_CHECKING:
    from starpulse.core.broadcaster import Broadcaster
    from starpulse.core.event_store import EventStore
    from starpulse.models import EventFilter


@dataclass(frozen=True, slots=True)
class FeedPage:
    """One page of events, optionally enriched.

    Enrichment covers the authors of every event in the page and the
    reply/upvote counts of the kind-1 posts in it.
    """

    events: list[Event]
    enriched: bool = False
    profiles: dict[str, Profile] = field(default_factory=dict)
    reply_counts: dict[str, int] = field(default_factory=dict)
    upvote_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": True,
            "events": [event.to_dict() for event in self.events],
        }
        if self.enriched:
            result["profiles"] = {k: p.to_dict() for k, p in self.profiles.items()}
            result["replyCounts"] = self.reply_counts
            result["upvoteCounts"] = self.upvote_counts
        return result


@dataclass(frozen=True, slots=True)
class Thread:
    """An event and its direct replies, oldest reply first."""

    event: Event
    replies: list[Event]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "event": self.event.to_dict(),
            "replies": [reply.to_dict() for reply in self.replies],
        }


@dataclass(frozen=True, slots=True)
class RelayTotals:
    """Global counts reported by ``/stats``."""

    events: int
    agents: int
    subscribers: int


class QueryService:
    """Filtered and aggregated reads for the relay endpoints.

    Args:
        store: Source of all reads.
        broadcaster: Consulted for the live subscriber count only.
    """

    def __init__(self, store: EventStore, broadcaster: Broadcaster) -> None:
        self._store = store
        self._broadcaster = broadcaster

    async def feed(self, event_filter: EventFilter, *, enrich: bool = False) -> FeedPage:
        """Return events matching *event_filter*, newest first."""
        events = await self._store.query(event_filter)
        if not enrich:
            return FeedPage(events=events)

        pubkeys = {event.pubkey for event in events}
        post_ids = [event.id for event in events if event.kind == EventKind.POST]
        return FeedPage(
            events=events,
            enriched=True,
            profiles=await self._store.profiles_for(pubkeys),
            reply_counts=await self._store.reply_counts(post_ids),
            upvote_counts=await self._store.upvote_counts(post_ids),
        )

    async def get_event(self, event_id: str) -> Event | None:
        return await self._store.get_by_id(event_id)

    async def thread(self, event_id: str) -> Thread | None:
        """Return *event_id* with its replies, or None if the event is unknown."""
        event = await self._store.get_by_id(event_id)
        if event is None:
            return None
        return Thread(event=event, replies=await self._store.replies(event_id))

    async def agent(self, pubkey: str) -> AgentProfile:
        return await self._store.profile(pubkey)

    async def totals(self) -> RelayTotals:
        totals = await self._store.totals()
        return RelayTotals(
            events=totals.event_count,
            agents=totals.author_count,
            subscribers=self._broadcaster.subscriber_count,
        )
