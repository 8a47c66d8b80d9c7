"""
Immutable relay events and their database serialization.

[EventTemplate][starpulse.models.event.EventTemplate] holds the five signed
fields; [Event][starpulse.models.event.Event] adds the content hash ``id``
and the signature ``sig``. Both validate eagerly in ``__post_init__`` so a
constructed instance is always storable: tags are normalized to nested
tuples, content and tag values are checked for null bytes.

Hashing and signature checks live in [starpulse.utils.crypto][]; this module
is pure data.

See Also:
    [EventStore][starpulse.core.event_store.EventStore]: Persists events via
        [to_db_params()][starpulse.models.event.Event.to_db_params].
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Builds events from untrusted JSON payloads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from ._validation import normalize_tags, validate_instance, validate_int_range, validate_text
from .constants import EVENT_KIND_MAX, TIMESTAMP_MAX, TagName


class EventDbParams(NamedTuple):
    """Positional parameters for the ``event`` upsert statement.

    Attributes:
        id: Content hash as 32-byte binary.
        pubkey: Author public key as 32-byte binary.
        created_at: Author-supplied Unix timestamp.
        kind: Integer event kind.
        tags: JSON-encoded array of tag rows.
        content: Raw content string.
        sig: Signature as 64-byte binary.
    """

    id: bytes
    pubkey: bytes
    created_at: int
    kind: int
    tags: str
    content: str
    sig: bytes


def _validate_signed_fields(obj: EventTemplate | Event) -> None:
    validate_instance(obj.pubkey, str, "pubkey")
    validate_int_range(obj.created_at, "created_at", high=TIMESTAMP_MAX)
    validate_int_range(obj.kind, "kind", high=EVENT_KIND_MAX)
    validate_text(obj.content, "content")
    object.__setattr__(obj, "tags", normalize_tags(obj.tags))


def _tag_values(tags: tuple[tuple[str, ...], ...], name: str) -> list[str]:
    return [row[1] for row in tags if len(row) > 1 and row[0] == name]


@dataclass(frozen=True, slots=True)
class EventTemplate:
    """The signed portion of an event, before ``id`` and ``sig`` exist.

    Args:
        pubkey: Author public key, lowercase hex.
        created_at: Unix timestamp in seconds.
        kind: Event kind (see [EventKind][starpulse.models.constants.EventKind]).
        tags: Tag rows; any sequence of string sequences.
        content: Free-form content.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a field is out of range or contains null bytes.
    """

    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...] = ()
    content: str = ""

    def __post_init__(self) -> None:
        _validate_signed_fields(self)


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable, signed, content-addressed event.

    Field types are checked at construction time but the hex fields are
    not: whether ``id``, ``pubkey`` and ``sig`` are well formed is decided
    by [verify_event()][starpulse.utils.crypto.verify_event], which fails
    closed on malformed input.

    Examples:
        ```python
        event = Event(
            id="ab...", pubkey="cd...", created_at=1700000000, kind=1,
            tags=[["reply_to", "ef..."]], content="hello", sig="01...",
        )
        event.reply_to     # "ef..."
        event.to_dict()    # wire form
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str
    sig: str
    _db_params: EventDbParams | None = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        hash=False,
    )

    def __post_init__(self) -> None:
        validate_instance(self.id, str, "id")
        validate_instance(self.sig, str, "sig")
        _validate_signed_fields(self)

    @property
    def template(self) -> EventTemplate:
        """The signed fields of this event."""
        return EventTemplate(
            pubkey=self.pubkey,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
        )

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag row named *name*, in order."""
        return _tag_values(self.tags, name)

    @property
    def reply_to(self) -> str | None:
        """Id referenced by the first ``reply_to`` row, if any."""
        values = self.tag_values(TagName.REPLY_TO)
        return values[0] if values else None

    @property
    def target(self) -> str | None:
        """Id or pubkey referenced by the first ``target`` row, if any."""
        values = self.tag_values(TagName.TARGET)
        return values[0] if values else None

    def to_dict(self) -> dict[str, Any]:
        """Return the canonical wire form (tags as lists of lists)."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(row) for row in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_db_params(self) -> EventDbParams:
        """Return positional parameters for the upsert statement.

        Computed on first call and cached on the frozen instance.

        Raises:
            ValueError: If ``id``, ``pubkey`` or ``sig`` is not valid hex.
                Only verified events reach the store, so this signals a
                caller bug rather than bad client input.
        """
        if self._db_params is None:
            params = EventDbParams(
                id=bytes.fromhex(self.id),
                pubkey=bytes.fromhex(self.pubkey),
                created_at=self.created_at,
                kind=self.kind,
                tags=json.dumps([list(row) for row in self.tags]),
                content=self.content,
                sig=bytes.fromhex(self.sig),
            )
            object.__setattr__(self, "_db_params", params)
        return self._db_params  # type: ignore[return-value]

    @classmethod
    def from_db_params(cls, params: EventDbParams) -> Event:
        """Rebuild an event from stored column values."""
        tags = json.loads(params.tags) if isinstance(params.tags, str) else params.tags
        return cls(
            id=params.id.hex(),
            pubkey=params.pubkey.hex(),
            created_at=params.created_at,
            kind=params.kind,
            tags=tags,
            content=params.content,
            sig=params.sig.hex(),
        )
