from pydantic import ValidationError
import pytest

from fleet_console.config import Config
from fleet_console.kinds import PollWeight


class TestConfig:
    def test_load_from_env(self, monkeypatch):
        """Test simple env var loading"""
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")
        monkeypatch.setenv("FLEET_REDIS_URL", "redis://test-redis:6379")

        config = Config()

        assert config.api_url == "http://test-api:8000"
        assert config.redis_url == "redis://test-redis:6379"

    def test_redis_is_optional(self, monkeypatch):
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")
        monkeypatch.delenv("FLEET_REDIS_URL", raising=False)

        assert Config().redis_url is None

    def test_default_poll_intervals(self, monkeypatch):
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")

        intervals = Config().poll_intervals()

        assert intervals == {
            PollWeight.LIST: 5.0,
            PollWeight.RESOURCE: 2.0,
            PollWeight.LIVE: 1.0,
        }

    def test_poll_interval_override(self, monkeypatch):
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")
        monkeypatch.setenv("FLEET_POLL_LIVE_INTERVAL", "0.5")

        assert Config().poll_intervals()[PollWeight.LIVE] == 0.5  # noqa: PLR2004

    def test_poll_interval_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")
        monkeypatch.setenv("FLEET_POLL_LIST_INTERVAL", "0")

        with pytest.raises(ValidationError):
            Config()

    def test_missing_env(self, monkeypatch):
        """Test missing env vars raises error"""
        monkeypatch.delenv("FLEET_API_URL", raising=False)

        with pytest.raises(ValidationError):
            Config()

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("FLEET_API_URL", "http://test-api:8000")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        assert Config().log_level == "DEBUG"
