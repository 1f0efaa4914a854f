"""Tests for settings and the configuration registry."""

import pytest

from attio_sync.api.attio import AttioClient
from attio_sync.api.rate_limited import RateLimitedClient
from attio_sync.config import AttioSettings, ConfigurationRegistry, get_settings_from_env
from attio_sync.exceptions import ConfigurationError
from attio_sync.jobs.queue import SchedulerTaskQueue
from attio_sync.testing import FakeAttioClient


class TestSettingsFromEnv:
    def test_defaults(self, monkeypatch):
        for name in ("ATTIO_API_KEY", "ATTIO_SYNC_ENABLED", "ATTIO_BACKGROUND_SYNC", "ATTIO_ENV", "ATTIO_QUEUE"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings_from_env()

        assert settings.api_key is None
        assert settings.sync_enabled is True
        assert settings.background_sync is True
        assert settings.queue == "default"
        assert settings.raise_errors is False
        assert settings.is_valid() is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ATTIO_API_KEY", "env-key")
        monkeypatch.setenv("ATTIO_SYNC_ENABLED", "false")
        monkeypatch.setenv("ATTIO_ENV", "development")
        monkeypatch.setenv("ATTIO_BULK_BATCH_SIZE", "25")

        settings = get_settings_from_env()

        assert settings.api_key == "env-key"
        assert settings.sync_enabled is False
        assert settings.raise_errors is True
        assert settings.bulk_batch_size == 25
        assert settings.is_valid() is True


class TestConfigurationRegistry:
    def test_client_requires_api_key(self):
        registry = ConfigurationRegistry(settings=AttioSettings())

        with pytest.raises(ConfigurationError, match="API key"):
            registry.client

    def test_builds_rate_limited_client(self):
        registry = ConfigurationRegistry(settings=AttioSettings(api_key="key", background_sync=False))

        client = registry.client

        assert isinstance(client, RateLimitedClient)
        assert isinstance(client.client, AttioClient)
        assert client.guard.defer_to_background is False
        assert registry.client is client

    def test_plain_client_without_rate_limiting(self):
        registry = ConfigurationRegistry(settings=AttioSettings(api_key="key", enable_rate_limiting=False))

        assert isinstance(registry.client, AttioClient)

    def test_configure_drops_cached_client(self):
        registry = ConfigurationRegistry(settings=AttioSettings(api_key="key"))
        first = registry.client

        registry.configure(api_key="other")

        assert registry.client is not first
        assert registry.client.client.api_key == "other"

    def test_configure_with_mutator(self):
        registry = ConfigurationRegistry(settings=AttioSettings(api_key="key"))

        def mutate(settings):
            settings.sync_enabled = False

        registry.configure(mutate)

        assert registry.sync_enabled is False

    def test_configure_rejects_unknown_setting(self):
        registry = ConfigurationRegistry(settings=AttioSettings())

        with pytest.raises(ConfigurationError, match="Unknown setting"):
            registry.configure(not_a_setting=True)

    def test_pinned_client_survives_configure(self):
        registry = ConfigurationRegistry(settings=AttioSettings())
        fake = FakeAttioClient()
        registry.set_client(fake)

        registry.configure(max_retries=1)

        assert registry.client is fake

    def test_default_task_queue_uses_configured_executor(self):
        registry = ConfigurationRegistry(settings=AttioSettings(queue="attio"))

        queue = registry.get_task_queue()

        assert isinstance(queue, SchedulerTaskQueue)
        assert queue.executor == "attio"
        assert registry.get_task_queue() is queue
