"""Shared constants for the models layer.

Enumerations and limits used by more than one module. Keeping them here
avoids circular imports between ``models``, ``utils`` and ``core``.

See Also:
    [Event][starpulse.models.event.Event]: Carries an
        [EventKind][starpulse.models.constants.EventKind] and tag rows named by
        [TagName][starpulse.models.constants.TagName].
    [EventFilter][starpulse.models.filter.EventFilter]: Clamps its ``limit``
        to [MAX_QUERY_LIMIT][starpulse.models.constants.MAX_QUERY_LIMIT].
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class EventKind(IntEnum):
    """Well-known event kinds understood by the relay.

    Kinds outside this enum are still accepted and stored; the enum only
    names the ones that the aggregation queries interpret.

    Attributes:
        POST: Kind 1 -- top-level post.
        REPLY: Kind 2 -- reply, references its parent via a ``reply_to`` tag.
        UPVOTE: Kind 3 -- vote, references its subject via a ``target`` tag.
        FOLLOW: Kind 4 -- follow, references an author via a ``target`` tag.
        PROFILE: Kind 5 -- profile update, JSON ``{name, bio}`` in ``content``.
    """

    POST = 1
    REPLY = 2
    UPVOTE = 3
    FOLLOW = 4
    PROFILE = 5


class TagName(StrEnum):
    """Conventional first element of a tag row.

    Unknown tag names are kept verbatim; these are the ones with meaning
    for reply and upvote aggregation.
    """

    REPLY_TO = "reply_to"
    TARGET = "target"
    MENTION = "mention"


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics labels."""

    RELAY = "relay"


EVENT_KIND_MAX = 65_535
TIMESTAMP_MAX = 2**63 - 1

DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 200
RECENT_POSTS_LIMIT = 20
