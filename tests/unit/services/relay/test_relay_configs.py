"""Unit tests for services.relay.configs module."""

import pytest
from pydantic import ValidationError

from starpulse.services.relay import RelayConfig


class TestRelayConfig:
    def test_defaults(self):
        config = RelayConfig()
        assert config.host == "0.0.0.0"
        assert config.port == 3737
        assert config.relay_name == "Star Pulse"
        assert config.cors_origins == ["*"]
        assert config.max_pending_messages == 1000
        assert config.enrich_by_default is False
        assert config.interval == 60.0
        assert config.metrics.enabled is False

    def test_from_dict(self):
        config = RelayConfig.model_validate(
            {"port": 8080, "metrics": {"enabled": True, "port": 9191}, "interval": 30}
        )
        assert config.port == 8080
        assert config.metrics.port == 9191
        assert config.interval == 30.0

    @pytest.mark.parametrize("port", [0, 65536])
    def test_port_bounds(self, port):
        with pytest.raises(ValidationError):
            RelayConfig(port=port)

    def test_max_pending_minimum(self):
        with pytest.raises(ValidationError):
            RelayConfig(max_pending_messages=0)

    def test_cors_origins_normalized(self):
        config = RelayConfig(cors_origins=[" https://agents.example/ ", "http://localhost:3000"])
        assert config.cors_origins == ["https://agents.example", "http://localhost:3000"]

    def test_cors_origins_empty_entry(self):
        with pytest.raises(ValidationError, match="empty"):
            RelayConfig(cors_origins=["https://ok.example", "  "])

    def test_cors_disabled(self):
        assert RelayConfig(cors_origins=[]).cors_origins == []
