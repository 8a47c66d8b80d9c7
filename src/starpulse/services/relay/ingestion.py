"""Validation, persistence and fan-out of candidate events.

A candidate is untrusted JSON. [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]
moves it through fixed stages, stopping at the first failure:

```text
Received -> FieldsValid -> IdVerified -> SignatureVerified -> Stored -> Broadcast
    |            |              |                 |              |
missing_fields invalid_fields id_mismatch  invalid_signature  internal_error
```

Rejections are [ClientValidationError][starpulse.core.exceptions.ClientValidationError]
with a [RejectReason][starpulse.core.exceptions.RejectReason]. Storage
failures are not rejections: [submit()][starpulse.services.relay.ingestion.IngestionPipeline.submit]
logs them and answers ``internal_error`` without exposing details.
Broadcasting never fails a submission.

See Also:
    [verify_event()][starpulse.utils.crypto.verify_event]: Signature check.
    [EventStore.upsert()][starpulse.core.event_store.EventStore.upsert]:
        Idempotent write.
    [Broadcaster.publish()][starpulse.core.broadcaster.Broadcaster.publish]:
        Synchronous fan-out to live subscribers.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from starpulse.core.exceptions import ClientValidationError, DatabaseError, RejectReason
from starpulse.core.logger import Logger
from starpulse.models import Event, EventTemplate
from starpulse.utils.crypto import compute_event_id, verify_event


if TYPE_CHECKING:
    from collections.abc import Mapping

    from starpulse.core.broadcaster import Broadcaster
    from starpulse.core.event_store import EventStore


REQUIRED_FIELDS = ("pubkey", "created_at", "kind", "sig")
INTERNAL_ERROR = "internal_error"


class IngestionStage(StrEnum):
    """Pipeline stage reached by a submission, used in log fields."""

    RECEIVED = "received"
    FIELDS_VALID = "fields_valid"
    ID_VERIFIED = "id_verified"
    SIGNATURE_VERIFIED = "signature_verified"
    STORED = "stored"
    BROADCAST = "broadcast"


# Last stage completed before each rejection
_REJECTED_AFTER = {
    RejectReason.MISSING_FIELDS: IngestionStage.RECEIVED,
    RejectReason.INVALID_FIELDS: IngestionStage.RECEIVED,
    RejectReason.ID_MISMATCH: IngestionStage.FIELDS_VALID,
    RejectReason.INVALID_SIGNATURE: IngestionStage.ID_VERIFIED,
}


@dataclass(frozen=True, slots=True)
class SubmitResult:
    """Outcome of [submit()][starpulse.services.relay.ingestion.IngestionPipeline.submit].

    Attributes:
        success: Whether the event was stored.
        id: Canonical event id when accepted.
        error: Reason code when not accepted.
    """

    success: bool
    id: str | None = None
    error: str | None = None

    @property
    def status_code(self) -> int:
        if self.success:
            return 200
        return 500 if self.error == INTERNAL_ERROR else 400

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "id": self.id}
        return {"success": False, "error": self.error}


@dataclass(slots=True)
class IngestionStats:
    """Submission outcomes since the last reset."""

    accepted: int = 0
    rejected: Counter[str] = field(default_factory=Counter)
    internal_errors: int = 0

    @property
    def total(self) -> int:
        return self.accepted + sum(self.rejected.values()) + self.internal_errors


def _parse_candidate(payload: Any) -> Event:
    """Build an unverified event from *payload* with its id recomputed.

    Raises:
        ClientValidationError: ``missing_fields``, ``invalid_fields`` or
            ``id_mismatch``.
    """
    if not isinstance(payload, dict):
        raise ClientValidationError(
            RejectReason.INVALID_FIELDS, f"event must be an object, got {type(payload).__name__}"
        )

    missing = [name for name in REQUIRED_FIELDS if payload.get(name) is None]
    if missing:
        raise ClientValidationError(
            RejectReason.MISSING_FIELDS, f"missing: {', '.join(missing)}"
        )

    tags = payload.get("tags")
    content = payload.get("content")
    try:
        template = EventTemplate(
            pubkey=payload["pubkey"],
            created_at=payload["created_at"],
            kind=payload["kind"],
            tags=tags if tags is not None else [],
            content=content if content is not None else "",
        )
    except (TypeError, ValueError) as e:
        raise ClientValidationError(RejectReason.INVALID_FIELDS, str(e)) from e

    supplied_id = payload.get("id")
    if supplied_id is not None and not isinstance(supplied_id, str):
        raise ClientValidationError(RejectReason.INVALID_FIELDS, "id must be a string")
    if not isinstance(payload["sig"], str):
        raise ClientValidationError(RejectReason.INVALID_FIELDS, "sig must be a string")

    expected_id = compute_event_id(template)
    if supplied_id and supplied_id != expected_id:
        raise ClientValidationError(RejectReason.ID_MISMATCH)

    return Event(
        id=expected_id,
        pubkey=template.pubkey,
        created_at=template.created_at,
        kind=template.kind,
        tags=template.tags,
        content=template.content,
        sig=payload["sig"],
    )


class IngestionPipeline:
    """Validate, store and broadcast candidate events.

    Args:
        store: Destination of accepted events.
        broadcaster: Fan-out target for accepted events.
    """

    def __init__(self, store: EventStore, broadcaster: Broadcaster) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self._stats = IngestionStats()
        self._logger = Logger("ingestion")

    @property
    def stats(self) -> IngestionStats:
        return self._stats

    def reset_stats(self) -> IngestionStats:
        """Return the current outcome counts and start new ones."""
        stats, self._stats = self._stats, IngestionStats()
        return stats

    async def ingest(self, payload: Mapping[str, Any] | Any) -> Event:
        """Run *payload* through every stage and return the accepted event.

        Re-submitting an accepted event succeeds again, rewrites the same
        row and broadcasts it again.

        Raises:
            ClientValidationError: If the candidate is rejected.
            DatabaseError: If the store fails; nothing is broadcast.
        """
        try:
            event = _parse_candidate(payload)
            if not verify_event(event):
                raise ClientValidationError(RejectReason.INVALID_SIGNATURE)
        except ClientValidationError as e:
            self._stats.rejected[e.reason] += 1
            self._logger.info(
                "event_rejected",
                reason=e.reason,
                stage=_REJECTED_AFTER.get(e.reason, IngestionStage.RECEIVED),
                detail=str(e),
            )
            raise

        await self._store.upsert(event)
        delivered = self._broadcaster.publish(event)

        self._stats.accepted += 1
        self._logger.info(
            "event_accepted",
            id=event.id,
            kind=event.kind,
            pubkey=event.pubkey,
            delivered=delivered,
        )
        return event

    async def submit(self, payload: Any) -> SubmitResult:
        """Boundary form of [ingest()][starpulse.services.relay.ingestion.IngestionPipeline.ingest].

        Never raises for client input or storage failures.
        """
        try:
            event = await self.ingest(payload)
        except ClientValidationError as e:
            return SubmitResult(success=False, error=str(e.reason))
        except DatabaseError as e:
            self._stats.internal_errors += 1
            self._logger.error(
                "event_store_failed",
                stage=IngestionStage.SIGNATURE_VERIFIED,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SubmitResult(success=False, error=INTERNAL_ERROR)
        return SubmitResult(success=True, id=event.id)

    async def submit_json(self, body: bytes | str) -> SubmitResult:
        """Decode a raw request body and [submit()][starpulse.services.relay.ingestion.IngestionPipeline.submit] it.

        A body that is not valid UTF-8 JSON is rejected ``invalid_json``.
        """
        try:
            payload = json.loads(body)
        except ValueError as e:
            self._stats.rejected[RejectReason.INVALID_JSON] += 1
            self._logger.info(
                "event_rejected",
                reason=RejectReason.INVALID_JSON,
                stage=IngestionStage.RECEIVED,
                detail=str(e),
            )
            return SubmitResult(success=False, error=str(RejectReason.INVALID_JSON))
        return await self.submit(payload)
