"""
Unit tests for core.base_service module.

Tests:
- BaseServiceConfig validation
- Service initialization and factory methods
- Context manager and shutdown signalling
- run_forever() cycles, failure limits and metrics helpers
"""

import asyncio
from unittest.mock import patch

import pytest
from pydantic import Field, ValidationError

from starpulse.core.base_service import BaseService, BaseServiceConfig
from starpulse.core.metrics import MetricsConfig


class ConcreteServiceConfig(BaseServiceConfig):
    """Test configuration inheriting from BaseServiceConfig."""

    batch_size: int = Field(default=10, ge=1)


class ConcreteService(BaseService[ConcreteServiceConfig]):
    """Test implementation."""

    SERVICE_NAME = "test_service"
    CONFIG_CLASS = ConcreteServiceConfig

    def __init__(self, store, config=None):
        super().__init__(store=store, config=config)
        self.run_count = 0
        self.should_fail = False
        self.fail_count = 0

    async def run(self):
        self.run_count += 1
        if self.should_fail:
            self.fail_count += 1
            raise RuntimeError("Simulated failure")


class TestBaseServiceConfig:
    def test_defaults(self):
        config = BaseServiceConfig()
        assert config.interval == 60.0
        assert config.max_consecutive_failures == 5
        assert config.metrics.enabled is False

    def test_interval_minimum(self):
        with pytest.raises(ValidationError):
            BaseServiceConfig(interval=0.5)

    def test_max_consecutive_failures_zero_allowed(self):
        assert BaseServiceConfig(max_consecutive_failures=0).max_consecutive_failures == 0


class TestInit:
    def test_with_defaults(self, mock_store):
        service = ConcreteService(store=mock_store)
        assert isinstance(service.config, ConcreteServiceConfig)
        assert service.config.batch_size == 10
        assert service.store is mock_store
        assert service.is_running

    def test_with_config(self, mock_store):
        config = ConcreteServiceConfig(interval=5.0, batch_size=3)
        assert ConcreteService(store=mock_store, config=config).config is config


class TestFactoryMethods:
    def test_from_dict(self, mock_store):
        service = ConcreteService.from_dict({"interval": 10, "batch_size": 4}, store=mock_store)
        assert service.config.interval == 10.0
        assert service.config.batch_size == 4

    def test_from_dict_invalid(self, mock_store):
        with pytest.raises(ValidationError):
            ConcreteService.from_dict({"batch_size": 0}, store=mock_store)

    def test_from_yaml(self, mock_store, tmp_path):
        path = tmp_path / "service.yaml"
        path.write_text("interval: 15\nbatch_size: 2\n")
        service = ConcreteService.from_yaml(str(path), store=mock_store)
        assert service.config.interval == 15.0

    def test_from_yaml_file_not_found(self, mock_store):
        with pytest.raises(FileNotFoundError):
            ConcreteService.from_yaml("/nonexistent/service.yaml", store=mock_store)


class TestShutdown:
    async def test_context_manager_toggles_running(self, mock_store):
        service = ConcreteService(store=mock_store)
        service.request_shutdown()
        async with service:
            assert service.is_running
        assert not service.is_running

    async def test_wait_returns_true_on_shutdown(self, mock_store):
        service = ConcreteService(store=mock_store)
        asyncio.get_running_loop().call_soon(service.request_shutdown)
        assert await service.wait(5.0) is True

    async def test_wait_returns_false_on_timeout(self, mock_store):
        service = ConcreteService(store=mock_store)
        assert await service.wait(0.01) is False


class TestRunForever:
    async def test_executes_run(self, mock_store):
        service = ConcreteService(store=mock_store)

        async def mock_wait(timeout):
            return True

        with patch.object(service, "wait", mock_wait):
            async with service:
                await service.run_forever()
        assert service.run_count == 1

    async def test_stops_on_max_failures(self, mock_store):
        config = ConcreteServiceConfig(max_consecutive_failures=3)
        service = ConcreteService(store=mock_store, config=config)
        service.should_fail = True

        async def mock_wait(timeout):
            return False

        with patch.object(service, "wait", mock_wait):
            async with service:
                await service.run_forever()
        assert service.fail_count == 3

    async def test_success_resets_failure_streak(self, mock_store):
        config = ConcreteServiceConfig(max_consecutive_failures=2)
        service = ConcreteService(store=mock_store, config=config)
        outcomes = iter([True, False, True, False, True, True])

        async def flaky_run():
            service.run_count += 1
            if next(outcomes):
                raise RuntimeError("flaky")

        async def mock_wait(timeout):
            return False

        with patch.object(service, "run", flaky_run), patch.object(service, "wait", mock_wait):
            async with service:
                await service.run_forever()
        assert service.run_count == 6

    async def test_unlimited_failures_when_zero(self, mock_store):
        config = ConcreteServiceConfig(max_consecutive_failures=0)
        service = ConcreteService(store=mock_store, config=config)
        service.should_fail = True

        async def mock_wait(timeout):
            return service.fail_count >= 10

        with patch.object(service, "wait", mock_wait):
            async with service:
                await service.run_forever()
        assert service.fail_count == 10

    async def test_passes_interval_to_wait(self, mock_store):
        service = ConcreteService(store=mock_store, config=ConcreteServiceConfig(interval=7.0))
        recorded = []

        async def mock_wait(timeout):
            recorded.append(timeout)
            return True

        with patch.object(service, "wait", mock_wait):
            async with service:
                await service.run_forever()
        assert recorded == [7.0]

    async def test_cancellation_propagates(self, mock_store):
        service = ConcreteService(store=mock_store)

        async def cancelled_run():
            raise asyncio.CancelledError

        with patch.object(service, "run", cancelled_run), pytest.raises(asyncio.CancelledError):
            await service.run_forever()


class TestMetricsHelpers:
    def test_disabled_metrics_are_noop(self, mock_store):
        service = ConcreteService(store=mock_store)
        with patch("starpulse.core.base_service.SERVICE_COUNTER") as counter:
            service.inc_counter("events_accepted")
        counter.labels.assert_not_called()

    def test_enabled_metrics_recorded(self, mock_store):
        config = ConcreteServiceConfig(metrics=MetricsConfig(enabled=True))
        service = ConcreteService(store=mock_store, config=config)
        with (
            patch("starpulse.core.base_service.SERVICE_COUNTER") as counter,
            patch("starpulse.core.base_service.SERVICE_GAUGE") as gauge,
        ):
            service.inc_counter("events_accepted", 3)
            service.set_gauge("live_subscribers", 2)

        counter.labels.assert_called_once_with(service="test_service", name="events_accepted")
        counter.labels.return_value.inc.assert_called_once_with(3)
        gauge.labels.return_value.set.assert_called_once_with(2)


class TestAbstract:
    def test_cannot_instantiate_base(self, mock_store):
        with pytest.raises(TypeError):
            BaseService(store=mock_store)

    def test_must_implement_run(self, mock_store):
        class IncompleteService(BaseService):
            SERVICE_NAME = "incomplete"
            CONFIG_CLASS = BaseServiceConfig

        with pytest.raises(TypeError):
            IncompleteService(store=mock_store)
