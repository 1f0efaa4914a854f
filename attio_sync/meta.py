"""
API meta information for Attio Sync: token status, workspace info and
client-side rate limit usage.
"""

from typing import Any, Dict, Optional

from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.utils.cache import ExpiringCache
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

WORKSPACE_TTL = 3600
STATUS_TTL = 60


class MetaInfo:
    """
    Cached views of the API state.

    Rate limit figures come from the client-side request window, so they
    are only available when rate limiting is enabled.
    """

    def __init__(self, registry: Optional[ConfigurationRegistry] = None, cache: Optional[ExpiringCache] = None):
        self.registry = registry or default_registry
        self.cache = cache or ExpiringCache()

    @property
    def client(self):
        return self.registry.client

    def workspace_info(self) -> Dict[str, Any]:
        return self.cache.fetch("attio:meta:workspace", WORKSPACE_TTL, self.client.identify)

    def api_status(self) -> Dict[str, Any]:
        """Token status, cached for a minute."""
        return self.cache.fetch("attio:meta:status", STATUS_TTL, self.client.identify)

    def rate_limit_status(self) -> Optional[Dict[str, Any]]:
        if not hasattr(self.client, "rate_limit_status"):
            return None
        return self.client.rate_limit_status()

    def rate_limit_remaining(self) -> Optional[int]:
        status = self.rate_limit_status()
        return status.get("remaining_requests") if status else None

    def near_rate_limit(self, threshold: float = 0.1) -> bool:
        """True when the remaining share of the request window is at or below threshold."""
        status = self.rate_limit_status()
        if not status or not status.get("max_requests"):
            return False
        return status["remaining_requests"] / status["max_requests"] <= threshold

    def validate_api_key(self) -> bool:
        try:
            return self.client.identify().get("active") is True
        except Exception as e:
            logger.error("API key validation failed", error=str(e))
            return False

    def healthy(self) -> bool:
        try:
            return self.api_status().get("active") is True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    def clear_meta_cache(self) -> None:
        self.cache.delete_matched("attio:meta:")

    def log_usage_metrics(self) -> None:
        status = self.rate_limit_status()
        if not status:
            return

        logger.info(
            "Attio usage metrics",
            current_usage=status["current_usage"],
            remaining_requests=status["remaining_requests"],
            max_requests=status["max_requests"],
            reset_time=round(status["reset_time"], 1),
        )
