"""
Configuration management for Attio Sync.
Settings come from environment variables and can be changed at runtime
through the registry, which rebuilds the API client on the next access.
"""

import os
from typing import Any, Callable, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from attio_sync.exceptions import ConfigurationError

load_dotenv()


class AttioSettings(BaseModel):
    """Process-wide settings for syncing with Attio."""

    # Credentials
    api_key: Optional[str] = Field(default=None, description="Attio API key")
    default_workspace_id: Optional[str] = Field(default=None, description="Default Attio workspace ID")

    # Sync behaviour
    sync_enabled: bool = Field(default=True, description="Master switch for all syncing")
    background_sync: bool = Field(default=True, description="Dispatch syncs to background jobs")
    queue: str = Field(default="default", description="APScheduler executor used for sync jobs")
    raise_on_missing_record: bool = Field(
        default=False,
        description="Raise from background jobs when the record no longer exists"
    )
    raise_errors: bool = Field(
        default=False,
        description="Strict mode: re-raise sync errors after logging (development)"
    )

    # Rate limiting and retries
    enable_rate_limiting: bool = Field(default=True, description="Wrap the client with rate limit handling")
    max_requests_per_hour: int = Field(default=1000, description="Client-side request budget per hour")
    max_retries: int = Field(default=3, description="Retries for rate-limited calls")

    # Bulk
    bulk_batch_size: int = Field(default=100, description="Records per bulk batch")
    upsert_match_attribute: str = Field(default="email", description="Attribute used to match upserts")

    def is_valid(self) -> bool:
        """Check if the minimum required configuration is present."""
        return bool(self.api_key)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def get_settings_from_env() -> AttioSettings:
    """Load settings from environment variables."""
    return AttioSettings(
        api_key=os.getenv("ATTIO_API_KEY"),
        default_workspace_id=os.getenv("ATTIO_WORKSPACE_ID"),
        sync_enabled=_env_bool("ATTIO_SYNC_ENABLED", True),
        background_sync=_env_bool("ATTIO_BACKGROUND_SYNC", True),
        queue=os.getenv("ATTIO_QUEUE", "default"),
        raise_errors=os.getenv("ATTIO_ENV", "production").lower() == "development",
        max_retries=int(os.getenv("ATTIO_MAX_RETRIES", "3")),
        bulk_batch_size=int(os.getenv("ATTIO_BULK_BATCH_SIZE", "100")),
    )


class ConfigurationRegistry:
    """
    Holds the settings, the task queue and the cached API client.

    Any change made through configure() drops the cached client; it is
    rebuilt lazily on next access.
    """

    def __init__(self, settings: Optional[AttioSettings] = None, task_queue: Any = None):
        self.settings = settings or get_settings_from_env()
        self.task_queue = task_queue
        self._client = None
        self._client_override = None

    def configure(self, mutator: Optional[Callable[[AttioSettings], None]] = None, **changes: Any) -> AttioSettings:
        """
        Change settings and invalidate the cached client.

        Args:
            mutator: Callable receiving the settings object
            **changes: Setting names and values to assign

        Returns:
            The updated settings
        """
        if mutator is not None:
            mutator(self.settings)

        for name, value in changes.items():
            if name not in AttioSettings.model_fields:
                raise ConfigurationError(f"Unknown setting: {name}")
            setattr(self.settings, name, value)

        self.reset_client()
        return self.settings

    @property
    def client(self):
        """The API client, built on first use."""
        if self._client_override is not None:
            return self._client_override

        if self._client is None:
            if not self.settings.is_valid():
                raise ConfigurationError("Attio API key not configured")
            self._client = self._build_client()
        return self._client

    def _build_client(self):
        from attio_sync.api.attio import AttioClient
        from attio_sync.api.rate_limited import RateLimitedClient

        base_client = AttioClient(self.settings.api_key)
        if not self.settings.enable_rate_limiting:
            return base_client

        return RateLimitedClient(
            base_client,
            max_retries=self.settings.max_retries,
            defer_to_background=self.settings.background_sync,
            max_requests_per_hour=self.settings.max_requests_per_hour,
        )

    def set_client(self, client: Any) -> None:
        """Pin a client instance (survives configure()). Pass None to unpin."""
        self._client_override = client

    @property
    def pinned_client(self):
        """The client pinned with set_client(), if any."""
        return self._client_override

    def reset_client(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    def get_task_queue(self):
        """The task queue for deferred syncs; an APScheduler queue by default."""
        if self.task_queue is None:
            from attio_sync.jobs.queue import SchedulerTaskQueue
            self.task_queue = SchedulerTaskQueue(executor=self.settings.queue)
        return self.task_queue

    @property
    def sync_enabled(self) -> bool:
        return self.settings.sync_enabled

    @property
    def background_sync(self) -> bool:
        return self.settings.background_sync


registry = ConfigurationRegistry()


def configure(mutator: Optional[Callable[[AttioSettings], None]] = None, **changes: Any) -> AttioSettings:
    """Configure the process-wide registry."""
    return registry.configure(mutator, **changes)


def get_client():
    """Get the process-wide API client."""
    return registry.client


def reset_client() -> None:
    registry.reset_client()
