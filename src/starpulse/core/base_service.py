"""
Abstract base class for long-running Star Pulse services.

``BaseService[ConfigT]`` gives every service the same lifecycle: a
[Logger][starpulse.core.logger.Logger] named after the service, graceful
shutdown through an ``asyncio.Event``, an interval loop in
[run_forever()][starpulse.core.base_service.BaseService.run_forever] with a
consecutive failure limit, and Prometheus cycle metrics.

The [EventStore][starpulse.core.event_store.EventStore] is injected through
the constructor; services never open their own database connections.

See Also:
    [Relay][starpulse.services.relay.service.Relay]: The HTTP/WebSocket
        relay, the only concrete service.
    [BaseServiceConfig][starpulse.core.base_service.BaseServiceConfig]: Base
        configuration model for all services.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .yaml import load_yaml


if TYPE_CHECKING:
    from types import TracebackType

    from starpulse.models.constants import ServiceName

    from .event_store import EventStore


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Configuration shared by all services that run in a loop.

    Attributes:
        interval: Seconds between [run()][starpulse.core.base_service.BaseService.run]
            cycles.
        max_consecutive_failures: Stop after this many failed cycles in a
            row; 0 disables the limit.
        metrics: Prometheus endpoint settings.
    """

    interval: float = Field(
        default=60.0,
        ge=1.0,
        description="Seconds between run cycles",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for all Star Pulse services.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][starpulse.core.base_service.BaseService.run].

    Note:
        The lifecycle is ``async with store:``, then ``async with service:``,
        then [run_forever()][starpulse.core.base_service.BaseService.run_forever].
        Entering the service clears the shutdown event; leaving sets it.
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseServiceConfig]]

    def __init__(self, store: EventStore, config: ConfigT | None = None) -> None:
        self._store = store
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def store(self) -> EventStore:
        return self._store

    @abstractmethod
    async def run(self) -> None:
        """Execute one bounded cycle of the service's work."""
        ...

    def request_shutdown(self) -> None:
        """Ask [run_forever()][starpulse.core.base_service.BaseService.run_forever] to exit.

        Safe to call from a signal handler.
        """
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds, waking early on shutdown.

        Returns:
            True if shutdown was requested, False if the timeout elapsed.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def run_forever(self) -> None:
        """Call [run()][starpulse.core.base_service.BaseService.run] every ``interval`` seconds.

        Exits on shutdown or once ``max_consecutive_failures`` cycles have
        failed in a row. A successful cycle resets the failure streak.
        ``CancelledError``, ``KeyboardInterrupt`` and ``SystemExit`` always
        propagate.

        Metrics recorded (when enabled): ``cycles_success``,
        ``cycles_failed`` and ``errors_{ExceptionType}`` counters,
        ``consecutive_failures`` and ``last_cycle_timestamp`` gauges, and
        the cycle duration histogram.
        """
        interval = self._config.interval
        max_consecutive_failures = self._config.max_consecutive_failures
        metrics_enabled = self._config.metrics.enabled

        if metrics_enabled:
            SERVICE_INFO.info({"service": str(self.SERVICE_NAME)})

        self._logger.info(
            "run_forever_started",
            interval=interval,
            max_consecutive_failures=max_consecutive_failures,
        )

        consecutive_failures = 0

        while self.is_running:
            cycle_start = time.monotonic()

            try:
                await self.run()
            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                raise
            except Exception as e:  # Intentionally broad: top-level error boundary for run_forever
                consecutive_failures += 1
                self.inc_counter("cycles_failed")
                self.inc_counter(f"errors_{type(e).__name__}")
                self.set_gauge("consecutive_failures", consecutive_failures)
                self._logger.error(
                    "run_cycle_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    consecutive_failures=consecutive_failures,
                )
                if 0 < max_consecutive_failures <= consecutive_failures:
                    self._logger.critical(
                        "max_consecutive_failures_reached",
                        failures=consecutive_failures,
                        limit=max_consecutive_failures,
                    )
                    break
            else:
                consecutive_failures = 0
                self.inc_counter("cycles_success")
                if metrics_enabled:
                    CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                        time.monotonic() - cycle_start
                    )
                self.set_gauge("last_cycle_timestamp", time.time())
                self.set_gauge("consecutive_failures", 0)
                self._logger.debug("cycle_completed", next_cycle_s=interval)

            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, store: EventStore, **kwargs: Any) -> Self:
        """Create a service from a YAML file parsed into ``CONFIG_CLASS``."""
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: EventStore, **kwargs: Any) -> Self:
        """Create a service from a dictionary parsed into ``CONFIG_CLASS``.

        Raises:
            pydantic.ValidationError: If *data* does not match the schema.
        """
        config = cast("ConfigT", cls.CONFIG_CLASS.model_validate(data))
        return cls(store=store, config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set the ``name`` gauge of this service. No-op with metrics disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment the ``name`` counter of this service. No-op with metrics disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
