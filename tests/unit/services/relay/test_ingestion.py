"""
Unit tests for services.relay.ingestion module.

Tests:
- Accept path: store, broadcast, canonical id
- Rejections and their reason codes, in stage order
- Idempotent re-submission
- Storage failures answered as internal_error
- Raw body decoding and submission statistics
"""

import json

import pytest

from starpulse.core.broadcaster import encode_event_message
from starpulse.core.exceptions import ClientValidationError, ConnectionPoolError, RejectReason
from starpulse.services.relay.ingestion import INTERNAL_ERROR, SubmitResult
from tests.conftest import as_payload


class TestSubmitResult:
    def test_success(self):
        result = SubmitResult(success=True, id="ab" * 32)
        assert result.status_code == 200
        assert result.to_dict() == {"success": True, "id": "ab" * 32}

    def test_rejected(self):
        result = SubmitResult(success=False, error="id_mismatch")
        assert result.status_code == 400
        assert result.to_dict() == {"success": False, "error": "id_mismatch"}

    def test_internal_error(self):
        assert SubmitResult(success=False, error=INTERNAL_ERROR).status_code == 500


class TestAccept:
    """Valid candidates are stored, broadcast and acknowledged."""

    async def test_store_and_lookup(self, pipeline, memory_store, make_event):
        event = make_event(content="hello")

        result = await pipeline.submit(as_payload(event))

        assert result == SubmitResult(success=True, id=event.id)
        assert await memory_store.get_by_id(event.id) == event

    async def test_broadcast_after_store(self, pipeline, broadcaster, make_event):
        subscriber = broadcaster.subscribe()
        event = make_event()

        await pipeline.submit(as_payload(event))

        assert subscriber.pending == 1
        assert await anext(subscriber) == encode_event_message(event)

    async def test_id_may_be_omitted(self, pipeline, make_event):
        event = make_event()
        assert (await pipeline.submit(as_payload(event, id=...))).id == event.id

    async def test_empty_id_treated_as_absent(self, pipeline, make_event):
        event = make_event()
        assert (await pipeline.submit(as_payload(event, id=""))).id == event.id

    async def test_tags_and_content_default(self, pipeline, make_event):
        event = make_event(content="", tags=[])
        result = await pipeline.submit(as_payload(event, tags=..., content=None))
        assert result.success
        assert result.id == event.id

    async def test_resubmission_is_idempotent(self, pipeline, memory_store, broadcaster, make_event):
        subscriber = broadcaster.subscribe()
        event = make_event()

        first = await pipeline.submit(as_payload(event))
        second = await pipeline.submit(as_payload(event))

        assert first == second
        assert len(memory_store) == 1
        assert memory_store.upserts == 2
        assert subscriber.pending == 2

    async def test_unknown_kind_and_tags_accepted(self, pipeline, make_event):
        event = make_event(kind=42, tags=[["custom", "x", "y"], []])
        assert (await pipeline.submit(as_payload(event))).success

    async def test_reference_to_unknown_event_accepted(self, pipeline, make_event):
        event = make_event(kind=2, tags=[["reply_to", "00" * 32]])
        assert (await pipeline.submit(as_payload(event))).success

    async def test_ingest_returns_event(self, pipeline, make_event):
        event = make_event()
        assert await pipeline.ingest(as_payload(event)) == event


class TestReject:
    """Rejected candidates are neither stored nor broadcast."""

    @pytest.fixture
    def subscriber(self, broadcaster):
        return broadcaster.subscribe()

    async def _assert_rejected(self, pipeline, memory_store, subscriber, payload, reason):
        result = await pipeline.submit(payload)
        assert result == SubmitResult(success=False, error=reason)
        assert len(memory_store) == 0
        assert subscriber.pending == 0

    @pytest.mark.parametrize("field", ["pubkey", "created_at", "kind", "sig"])
    async def test_missing_field(self, pipeline, memory_store, subscriber, make_event, field):
        payload = as_payload(make_event(), **{field: ...})
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "missing_fields")

    async def test_null_field_is_missing(self, pipeline, memory_store, subscriber, make_event):
        payload = as_payload(make_event(), sig=None)
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "missing_fields")

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("created_at", "1700000000"),
            ("created_at", -5),
            ("kind", 1.5),
            ("kind", 70_000),
            ("tags", "reply_to"),
            ("tags", [["reply_to", 7]]),
            ("content", {"text": "hi"}),
            ("content", "nul\x00"),
            ("pubkey", 12),
            ("sig", 12),
            ("id", 12),
        ],
    )
    async def test_invalid_field(
        self, pipeline, memory_store, subscriber, make_event, field, value
    ):
        payload = as_payload(make_event(), **{field: value})
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "invalid_fields")

    @pytest.mark.parametrize("payload", [[], "event", 42, None])
    async def test_non_object(self, pipeline, memory_store, subscriber, payload):
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "invalid_fields")

    async def test_id_mismatch(self, pipeline, memory_store, subscriber, make_event):
        # Valid signature over the real id, but a different id supplied
        event = make_event()
        payload = as_payload(event, id="00" * 32)
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "id_mismatch")

    async def test_tampered_content_is_id_mismatch(
        self, pipeline, memory_store, subscriber, make_event
    ):
        payload = as_payload(make_event(content="original"), content="tampered")
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "id_mismatch")

    async def test_swapped_pubkey_is_id_mismatch(
        self, pipeline, memory_store, subscriber, make_event, other_keypair
    ):
        payload = as_payload(make_event(), pubkey=other_keypair.public_key)
        await self._assert_rejected(pipeline, memory_store, subscriber, payload, "id_mismatch")

    async def test_tampered_content_without_id(
        self, pipeline, memory_store, subscriber, make_event
    ):
        payload = as_payload(make_event(content="original"), content="tampered", id=...)
        await self._assert_rejected(
            pipeline, memory_store, subscriber, payload, "invalid_signature"
        )

    async def test_wrong_signer(
        self, pipeline, memory_store, subscriber, make_event, other_keypair
    ):
        forged = make_event(signer=other_keypair)
        genuine = make_event()
        payload = as_payload(genuine, sig=forged.sig)
        await self._assert_rejected(
            pipeline, memory_store, subscriber, payload, "invalid_signature"
        )

    @pytest.mark.parametrize(
        ("field", "value"),
        [("sig", "zz" * 64), ("sig", "ab"), ("pubkey", "not-a-key")],
    )
    async def test_malformed_hex_is_invalid_signature(
        self, pipeline, memory_store, subscriber, make_event, field, value
    ):
        payload = as_payload(make_event(), id=..., **{field: value})
        await self._assert_rejected(
            pipeline, memory_store, subscriber, payload, "invalid_signature"
        )

    async def test_ingest_raises_with_reason(self, pipeline, make_event):
        with pytest.raises(ClientValidationError) as exc_info:
            await pipeline.ingest(as_payload(make_event(), id="00" * 32))
        assert exc_info.value.reason is RejectReason.ID_MISMATCH


class TestStorageFailure:
    async def test_internal_error(self, pipeline, memory_store, broadcaster, make_event):
        subscriber = broadcaster.subscribe()
        memory_store.fail_with = ConnectionPoolError("database unreachable")

        result = await pipeline.submit(as_payload(make_event()))

        assert result == SubmitResult(success=False, error="internal_error")
        assert subscriber.pending == 0
        assert pipeline.stats.internal_errors == 1

    async def test_ingest_propagates(self, pipeline, memory_store, make_event):
        memory_store.fail_with = ConnectionPoolError("database unreachable")
        with pytest.raises(ConnectionPoolError):
            await pipeline.ingest(as_payload(make_event()))


class TestSubmitJson:
    async def test_valid_body(self, pipeline, make_event):
        event = make_event()
        result = await pipeline.submit_json(json.dumps(as_payload(event)).encode())
        assert result.id == event.id

    @pytest.mark.parametrize("body", [b"{not json", b"", b"\xff\xfe"])
    async def test_invalid_json(self, pipeline, body):
        result = await pipeline.submit_json(body)
        assert result == SubmitResult(success=False, error="invalid_json")
        assert pipeline.stats.rejected["invalid_json"] == 1


class TestStats:
    async def test_counts_and_reset(self, pipeline, make_event):
        event = make_event()
        await pipeline.submit(as_payload(event))
        await pipeline.submit(as_payload(event, id="00" * 32))
        await pipeline.submit(as_payload(event, sig=...))

        stats = pipeline.reset_stats()
        assert stats.accepted == 1
        assert stats.rejected == {"id_mismatch": 1, "missing_fields": 1}
        assert stats.total == 3
        assert pipeline.stats.total == 0
