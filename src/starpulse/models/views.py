"""Derived read models computed per query, never stored."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .event import Event  # noqa: TC001
from .profile import Profile  # noqa: TC001


@dataclass(frozen=True, slots=True)
class AgentProfile:
    """An author's latest profile with activity statistics.

    Attributes:
        pubkey: The author.
        profile: Latest kind-5 payload, or None if never published.
        post_count: Events of kind 1 or 2 by the author.
        upvote_count: Kind-3 events cast by the author (votes given, not received).
        recent_posts: Latest kind-1 events by the author, newest first.
    """

    pubkey: str
    profile: Profile | None
    post_count: int
    upvote_count: int
    recent_posts: list[Event] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "profile": self.profile.to_dict() if self.profile is not None else None,
            "stats": {"posts": self.post_count, "upvotes": self.upvote_count},
            "recentPosts": [event.to_dict() for event in self.recent_posts],
        }


@dataclass(frozen=True, slots=True)
class EventTotals:
    """Global counts over the whole store."""

    event_count: int
    author_count: int
