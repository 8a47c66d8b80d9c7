"""Long-running services built on [BaseService][starpulse.core.base_service.BaseService].

Services are the top layer, depending on [starpulse.core][starpulse.core],
[starpulse.utils][starpulse.utils] and [starpulse.models][starpulse.models].

Attributes:
    Relay: HTTP/WebSocket event relay. Validates and stores signed events,
        serves filtered queries and pushes accepted events to live
        subscribers.

Examples:
    ```python
    from starpulse.core import EventStore
    from starpulse.services import Relay

    store = EventStore.from_yaml("config/store.yaml")
    async with store:
        relay = Relay.from_yaml("config/services/relay.yaml", store=store)
        async with relay:
            await relay.run_forever()
    ```
"""

from .relay import Relay, RelayConfig


__all__ = ["Relay", "RelayConfig"]
