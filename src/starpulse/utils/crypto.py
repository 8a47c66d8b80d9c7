"""Event hashing, Ed25519 key generation, signing and verification.

An event ``id`` is the SHA-256 of the canonical form
``[0, pubkey, created_at, kind, tags, content]`` serialized as compact JSON
(no whitespace, non-ASCII emitted verbatim) and encoded as UTF-8. The
signature covers the UTF-8 bytes of the lowercase hex ``id`` string, not
the raw digest.

Secret keys are 64-byte hex strings: the 32-byte seed followed by the
32-byte public key. A bare 32-byte seed is also accepted for signing.

Warning:
    Secret keys must never be logged or persisted by the relay. Only
    clients sign; the relay itself only verifies.

See Also:
    [IngestionPipeline][starpulse.services.relay.ingestion.IngestionPipeline]:
        Calls [verify_event()][starpulse.utils.crypto.verify_event] on every
        inbound candidate.

Examples:
    ```python
    keypair = generate_keypair()
    template = EventTemplate(pubkey=keypair.public_key, created_at=1700000000, kind=1)
    event = sign_event(template, keypair.secret_key)
    assert verify_event(event)
    ```
"""

from __future__ import annotations

import hashlib
import json
from typing import NamedTuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from starpulse.models._validation import is_lower_hex
from starpulse.models.event import Event, EventTemplate


KEY_SIZE = 32
SIGNATURE_SIZE = 64


class Keypair(NamedTuple):
    """Hex-encoded Ed25519 keypair.

    Attributes:
        public_key: 32-byte public key, lowercase hex.
        secret_key: 64-byte secret key (seed + public key), lowercase hex.
    """

    public_key: str
    secret_key: str


def serialize_canonical(fields: EventTemplate | Event) -> bytes:
    """Return the UTF-8 canonical form hashed into an event ``id``."""
    tags = [list(row) for row in fields.tags]
    return json.dumps(
        [0, fields.pubkey, fields.created_at, fields.kind, tags, fields.content],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_event_id(fields: EventTemplate | Event) -> str:
    """Return the lowercase hex SHA-256 of the canonical form.

    Only the five signed fields contribute; an [Event][starpulse.models.event.Event]
    passed here has its ``id`` and ``sig`` ignored.
    """
    return hashlib.sha256(serialize_canonical(fields)).hexdigest()


def generate_keypair() -> Keypair:
    """Generate a fresh Ed25519 keypair from the OS random source."""
    private_key = Ed25519PrivateKey.generate()
    seed = private_key.private_bytes_raw()
    public = private_key.public_key().public_bytes_raw()
    return Keypair(public_key=public.hex(), secret_key=(seed + public).hex())


def _load_private_key(secret_key: str) -> Ed25519PrivateKey:
    try:
        raw = bytes.fromhex(secret_key)
    except (TypeError, ValueError) as e:
        raise ValueError("secret key must be hex encoded") from e

    if len(raw) not in (KEY_SIZE, 2 * KEY_SIZE):
        raise ValueError(f"secret key must be {KEY_SIZE} or {2 * KEY_SIZE} bytes, got {len(raw)}")

    private_key = Ed25519PrivateKey.from_private_bytes(raw[:KEY_SIZE])
    if len(raw) == 2 * KEY_SIZE and private_key.public_key().public_bytes_raw() != raw[KEY_SIZE:]:
        raise ValueError("secret key public half does not match its seed")
    return private_key


def sign_event(template: EventTemplate, secret_key: str) -> Event:
    """Compute the id of *template*, sign it and return the populated event.

    The event's ``pubkey`` is taken from the template; signing with a key
    that does not match it yields an event that fails verification.

    Args:
        template: The five signed fields.
        secret_key: 64-byte (seed + public key) or 32-byte seed, hex.

    Returns:
        A new [Event][starpulse.models.event.Event] with ``id`` and ``sig`` set.

    Raises:
        ValueError: If *secret_key* is not valid hex, has the wrong length,
            or its public half disagrees with its seed.
    """
    private_key = _load_private_key(secret_key)
    event_id = compute_event_id(template)
    sig = private_key.sign(event_id.encode("utf-8"))
    return Event(
        id=event_id,
        pubkey=template.pubkey,
        created_at=template.created_at,
        kind=template.kind,
        tags=template.tags,
        content=template.content,
        sig=sig.hex(),
    )


def verify_event(event: Event) -> bool:
    """Check that *event* is content-addressed and signed by its ``pubkey``.

    Fails closed: malformed or uppercase hex, wrong lengths, an ``id`` that
    does not match the content, and an invalid signature all return False.
    Never raises.
    """
    if not (
        is_lower_hex(event.id, KEY_SIZE)
        and is_lower_hex(event.pubkey, KEY_SIZE)
        and is_lower_hex(event.sig, SIGNATURE_SIZE)
    ):
        return False

    if compute_event_id(event) != event.id:
        return False

    try:
        public_key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(event.pubkey))
        public_key.verify(bytes.fromhex(event.sig), event.id.encode("utf-8"))
    except (InvalidSignature, ValueError):
        return False
    return True
