"""Pure frozen dataclasses with zero I/O for relay events and their views.

The models layer sits at the bottom of the dependency graph and imports
only the standard library. Every model is a ``@dataclass(frozen=True,
slots=True)`` validated in ``__post_init__``, so invalid instances never
escape the constructor.

Attributes:
    Event: Signed, content-addressed event with database conversion.
    EventTemplate: The five signed fields, input to hashing and signing.
    EventFilter: Feed query criteria with limit clamping.
    Profile: Typed view over a kind-5 payload.
    AgentProfile: Author profile plus activity statistics.
    EventTotals: Global event and author counts.
    EventKind: Known event kinds.
    TagName: Known tag row names.
"""

from .constants import (
    DEFAULT_QUERY_LIMIT,
    EVENT_KIND_MAX,
    MAX_QUERY_LIMIT,
    RECENT_POSTS_LIMIT,
    TIMESTAMP_MAX,
    EventKind,
    ServiceName,
    TagName,
)
from .event import Event, EventDbParams, EventTemplate
from .filter import EventFilter
from .profile import Profile
from .views import AgentProfile, EventTotals


__all__ = [
    "DEFAULT_QUERY_LIMIT",
    "EVENT_KIND_MAX",
    "MAX_QUERY_LIMIT",
    "RECENT_POSTS_LIMIT",
    "TIMESTAMP_MAX",
    "AgentProfile",
    "Event",
    "EventDbParams",
    "EventFilter",
    "EventKind",
    "EventTemplate",
    "EventTotals",
    "Profile",
    "ServiceName",
    "TagName",
]
