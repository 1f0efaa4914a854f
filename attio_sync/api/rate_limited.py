"""
Rate-limit aware wrapper around the Attio client.

Every outbound call goes through a client-side request window and a
bounded retry loop that honours the server's Retry-After hint.
"""

import threading
import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from attio_sync.api.base import RateLimitError
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER = 60


class RateLimitGuard:
    """
    Bounded retry loop for rate-limited calls.

    A RateLimitError is retried after its retry_after (default 60s) up to
    max_retries times, then re-raised. Any other error propagates at once.
    When defer_to_background is set, rate limits are not retried here:
    the background job retry policy owns them instead.
    """

    def __init__(
        self,
        max_retries: int = 3,
        defer_to_background: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
    ):
        self.max_retries = max_retries
        self.defer_to_background = defer_to_background
        self.default_retry_after = default_retry_after
        self._sleep = sleep

    def _should_retry(self, error: BaseException) -> bool:
        return isinstance(error, RateLimitError) and not self.defer_to_background

    def _wait(self, retry_state: RetryCallState) -> float:
        retry_after = getattr(retry_state.outcome.exception(), "retry_after", None)
        return self.default_retry_after if retry_after is None else retry_after

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "Rate limit exceeded, retrying",
            retry_after=retry_state.next_action.sleep,
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
        )

    def execute(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run fn, retrying on rate limits."""
        retrying = Retrying(
            retry=retry_if_exception(self._should_retry),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)


class RequestWindow:
    """
    Client-side sliding window of requests.

    Raises RateLimitError before a request would exceed max_requests within
    window_seconds, with retry_after set to when the oldest request expires.
    """

    def __init__(
        self,
        max_requests: int = 1000,
        window_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: deque = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    def acquire(self) -> None:
        """Record one request, or raise if the window is full."""
        with self._lock:
            now = self._clock()
            self._prune(now)

            if len(self._timestamps) >= self.max_requests:
                retry_after = self.window_seconds - (now - self._timestamps[0])
                raise RateLimitError(
                    message="Client-side request limit reached",
                    retry_after=max(retry_after, 0),
                )

            self._timestamps.append(now)

    @property
    def current_usage(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._timestamps)

    @property
    def remaining_requests(self) -> int:
        return max(self.max_requests - self.current_usage, 0)

    @property
    def reset_time(self) -> float:
        """Seconds until the oldest request leaves the window."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if not self._timestamps:
                return 0.0
            return self.window_seconds - (now - self._timestamps[0])

    def status(self) -> Dict[str, Any]:
        return {
            "remaining_requests": self.remaining_requests,
            "reset_time": self.reset_time,
            "current_usage": self.current_usage,
            "max_requests": self.max_requests,
        }


class RateLimitedClient:
    """
    Decorator over an Attio client.

    Exposes the same operations as the wrapped client and routes each one
    through the request window and RateLimitGuard.
    """

    def __init__(
        self,
        client: Any,
        max_retries: int = 3,
        defer_to_background: bool = False,
        max_requests_per_hour: int = 1000,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.request_window = RequestWindow(max_requests=max_requests_per_hour, window_seconds=3600)
        self.guard = RateLimitGuard(
            max_retries=max_retries,
            defer_to_background=defer_to_background,
            sleep=sleep,
        )

    @property
    def supports_bulk(self) -> bool:
        return bool(getattr(self.client, "supports_bulk", False))

    def supports(self, operation: str) -> bool:
        """Whether the wrapped client implements an optional operation."""
        return hasattr(self.client, operation)

    def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        method = getattr(self.client, operation)

        def attempt():
            self.request_window.acquire()
            return method(*args, **kwargs)

        return self.guard.execute(attempt)

    # Records

    def create_record(self, object_type: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("create_record", object_type, values)

    def update_record(self, object_type: str, record_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("update_record", object_type, record_id, values)

    def delete_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        return self._call("delete_record", object_type, record_id)

    def get_record(self, object_type: str, record_id: str) -> Dict[str, Any]:
        return self._call("get_record", object_type, record_id)

    def list_records(
        self,
        object_type: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return self._call("list_records", object_type, filter=filter, limit=limit)

    # Bulk

    def bulk_create_records(self, object_type: str, records: List[Dict[str, Any]], partial_success: bool = True):
        return self._call("bulk_create_records", object_type, records, partial_success=partial_success)

    def bulk_update_records(self, object_type: str, updates: List[Dict[str, Any]], partial_success: bool = True):
        return self._call("bulk_update_records", object_type, updates, partial_success=partial_success)

    def bulk_upsert_records(
        self,
        object_type: str,
        records: List[Dict[str, Any]],
        match_attribute: str,
        partial_success: bool = True,
    ):
        return self._call(
            "bulk_upsert_records",
            object_type,
            records,
            match_attribute=match_attribute,
            partial_success=partial_success,
        )

    def bulk_delete_records(self, object_type: str, ids: List[str]):
        return self._call("bulk_delete_records", object_type, ids)

    # Meta and workspace

    def identify(self) -> Dict[str, Any]:
        return self._call("identify")

    def list_workspace_members(self) -> List[Dict[str, Any]]:
        return self._call("list_workspace_members")

    def get_workspace_member(self, member_id: str) -> Dict[str, Any]:
        return self._call("get_workspace_member", member_id)

    def invite_workspace_member(self, email: str, role: str = "member") -> Dict[str, Any]:
        return self._call("invite_workspace_member", email, role=role)

    def update_workspace_member(self, member_id: str, role: str) -> Dict[str, Any]:
        return self._call("update_workspace_member", member_id, role=role)

    def remove_workspace_member(self, member_id: str) -> Dict[str, Any]:
        return self._call("remove_workspace_member", member_id)

    def rate_limit_status(self) -> Dict[str, Any]:
        return self.request_window.status()

    def healthy(self) -> bool:
        """True when the token introspection endpoint reports an active token."""
        try:
            return bool(self.client.identify().get("active"))
        except Exception as e:
            logger.error("Attio health check failed", error=str(e))
            return False

    def close(self) -> None:
        if hasattr(self.client, "close"):
            self.client.close()
