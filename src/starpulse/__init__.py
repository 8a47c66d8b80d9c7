r"""Star Pulse -- a minimal federation-ready event relay.

Untrusted clients submit signed, content-addressed events (posts, replies,
votes, follows, profile updates). The relay verifies and stores them in
PostgreSQL, pushes them to live WebSocket subscribers and answers filtered
historical queries.

Imports flow strictly downward:

```text
              services         Relay service (HTTP + WebSocket)
                 |
               core            Store, broadcaster, pool, base service, logging
                 |
               utils           Hashing and Ed25519 signing
                 |
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from starpulse import Event``) use lazy loading
    and resolve on first access. For lightweight usage, import from the
    subpackages directly.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("starpulse")

__all__ = [
    "AgentProfile",
    "Broadcaster",
    "Event",
    "EventFilter",
    "EventKind",
    "EventStore",
    "EventTemplate",
    "Keypair",
    "Profile",
    "Relay",
    "RelayConfig",
    "TagName",
    "compute_event_id",
    "generate_keypair",
    "sign_event",
    "verify_event",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AgentProfile": ("starpulse.models", "AgentProfile"),
    "Event": ("starpulse.models", "Event"),
    "EventFilter": ("starpulse.models", "EventFilter"),
    "EventKind": ("starpulse.models", "EventKind"),
    "EventTemplate": ("starpulse.models", "EventTemplate"),
    "Profile": ("starpulse.models", "Profile"),
    "TagName": ("starpulse.models", "TagName"),
    "Keypair": ("starpulse.utils.crypto", "Keypair"),
    "compute_event_id": ("starpulse.utils.crypto", "compute_event_id"),
    "generate_keypair": ("starpulse.utils.crypto", "generate_keypair"),
    "sign_event": ("starpulse.utils.crypto", "sign_event"),
    "verify_event": ("starpulse.utils.crypto", "verify_event"),
    "Broadcaster": ("starpulse.core.broadcaster", "Broadcaster"),
    "EventStore": ("starpulse.core.event_store", "EventStore"),
    "Relay": ("starpulse.services.relay", "Relay"),
    "RelayConfig": ("starpulse.services.relay", "RelayConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'starpulse' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
