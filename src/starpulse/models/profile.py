"""Typed view over kind-5 profile payloads.

A profile event carries a JSON object in its ``content``. ``name`` and
``bio`` are exposed as typed fields; any other keys are kept in ``extra``
so newer clients can add fields without the relay dropping them.
Content that is not a JSON object is treated as a bare bio.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True, slots=True)
class Profile:
    """Parsed profile of an author.

    Attributes:
        name: Display name, if present and a string.
        bio: Free-form description, if present and a string.
        extra: Every other key of the original object, read-only.
    """

    name: str | None = None
    bio: str | None = None
    extra: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_content(cls, content: str) -> Profile:
        """Parse the ``content`` of a kind-5 event.

        Falls back to ``Profile(bio=content)`` when the content is not
        valid JSON or is valid JSON but not an object. Scalars such as
        ``"null"`` or ``"42"`` therefore become a bio rather than being
        returned as parsed, so callers always receive an object.
        """
        try:
            data = json.loads(content)
        except (ValueError, TypeError):
            return cls(bio=content)
        if not isinstance(data, dict):
            return cls(bio=content)

        extra = dict(data)
        name = extra.pop("name") if isinstance(data.get("name"), str) else None
        bio = extra.pop("bio") if isinstance(data.get("bio"), str) else None
        return cls(name=name, bio=bio, extra=MappingProxyType(extra))

    def to_dict(self) -> dict[str, Any]:
        """Return the profile as a plain JSON object."""
        result: dict[str, Any] = dict(self.extra)
        if self.name is not None:
            result["name"] = self.name
        if self.bio is not None:
            result["bio"] = self.bio
        return result
