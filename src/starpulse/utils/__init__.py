"""Event hashing and Ed25519 signing.

The utils layer sits between [starpulse.models][starpulse.models] and
[starpulse.core][starpulse.core]. It depends only on the models layer.

Attributes:
    crypto: Canonical serialization, content hashing, key generation,
        signing and fail-closed verification of events.

Examples:
    ```python
    from starpulse.utils.crypto import generate_keypair, sign_event, verify_event
    ```
"""
