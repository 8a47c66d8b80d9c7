"""Feed query filter with server-side limit clamping."""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import validate_instance, validate_int_range
from .constants import DEFAULT_QUERY_LIMIT, EVENT_KIND_MAX, MAX_QUERY_LIMIT, TIMESTAMP_MAX


@dataclass(frozen=True, slots=True)
class EventFilter:
    """Criteria for [EventStore.query()][starpulse.core.event_store.EventStore.query].

    All criteria are optional and combined with AND. ``since`` and
    ``until`` are inclusive bounds on ``created_at``.

    ``limit`` is clamped into ``[0, MAX_QUERY_LIMIT]`` on construction, so
    a filter asking for 10000 rows holds 200.

    Raises:
        TypeError: If a criterion has the wrong type.
        ValueError: If ``kind`` is out of range.
    """

    author: str | None = None
    since: int | None = None
    until: int | None = None
    kind: int | None = None
    limit: int = DEFAULT_QUERY_LIMIT

    def __post_init__(self) -> None:
        if self.author is not None:
            validate_instance(self.author, str, "author")
        for name in ("since", "until"):
            value = getattr(self, name)
            if value is not None:
                validate_int_range(value, name, high=TIMESTAMP_MAX)
        if self.kind is not None:
            validate_int_range(self.kind, "kind", high=EVENT_KIND_MAX)
        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise TypeError(f"limit must be an int, got {type(self.limit).__name__}")
        object.__setattr__(self, "limit", max(0, min(self.limit, MAX_QUERY_LIMIT)))
