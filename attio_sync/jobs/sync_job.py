"""
Background sync job.

Runs one deferred action for one record and applies the retry policy:
rate limits are resubmitted after the server's retry_after, server errors
with polynomial backoff, validation errors are dropped, authentication
and unexpected errors fail the job.
"""

from typing import Any, Optional

from attio_sync.api.base import AuthenticationError, RateLimitError, ServerError, ValidationError
from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.db.records import find_record
from attio_sync.db.syncable import get_deal_spec, get_model, get_sync_spec
from attio_sync.sync.bulk import BulkSync
from attio_sync.sync.deals import DealSync, should_sync_deal
from attio_sync.sync.executor import SyncExecutor
from attio_sync.sync.models import BatchOptions
from attio_sync.sync.policy import should_sync
from attio_sync.utils.logging import get_logger, sync_context

logger = get_logger(__name__)

RATE_LIMIT_ATTEMPTS = 3
SERVER_ERROR_ATTEMPTS = 5
DEFAULT_RETRY_AFTER = 60

BATCH_ACTIONS = ("batch_create", "batch_update", "batch_upsert", "batch_delete")


def server_error_backoff(attempt: int) -> int:
    """Seconds to wait before retry number ``attempt`` after a server error."""
    return attempt ** 4 + 2


def perform_sync_job(
    model_name: str,
    model_id: Any,
    action: str,
    attempt: int = 1,
    registry: Optional[ConfigurationRegistry] = None,
    **options: Any,
) -> Any:
    """
    Entry point for scheduled sync jobs.

    Args:
        model_name: Name of a model registered with syncs_with_attio
        model_id: Primary key of the record
        action: sync, delete, sync_deal, delete_deal or batch_*
        attempt: 1 for the first run, incremented on each resubmission
        registry: Configuration registry (process-wide by default)
        **options: Action options (remote_id, object_type, batch options)

    Returns:
        The action's result, or None when nothing was done
    """
    registry = registry or default_registry
    if not registry.sync_enabled:
        return None

    model = get_model(model_name)
    if model is None:
        logger.warning("Discarding Attio job for unknown model", model_name=model_name, action=action)
        return None

    try:
        with sync_context(model_name=model_name, model_id=model_id, action=action, attempt=attempt):
            return _perform(registry, model, model_id, action, options)

    except RateLimitError as e:
        delay = DEFAULT_RETRY_AFTER if e.retry_after is None else e.retry_after
        _resubmit(registry, e, RATE_LIMIT_ATTEMPTS, delay, model_name, model_id, action, attempt, options)

    except ServerError as e:
        delay = server_error_backoff(attempt)
        _resubmit(registry, e, SERVER_ERROR_ATTEMPTS, delay, model_name, model_id, action, attempt, options)

    except AuthenticationError as e:
        logger.error("Attio authentication failed", model_name=model_name, model_id=model_id, error=e.message)
        raise

    except ValidationError as e:
        logger.error("Attio validation error", model_name=model_name, model_id=model_id, error=e.message)

    except Exception as e:
        logger.error("Attio sync failed", model_name=model_name, model_id=model_id, action=action, error=str(e))
        raise

    return None


def _resubmit(
    registry: ConfigurationRegistry,
    error: Exception,
    max_attempts: int,
    delay: float,
    model_name: str,
    model_id: Any,
    action: str,
    attempt: int,
    options: dict,
) -> None:
    if attempt >= max_attempts:
        logger.error(
            "Attio job retries exhausted",
            model_name=model_name,
            model_id=model_id,
            action=action,
            attempts=attempt,
            error=str(error),
        )
        raise error

    logger.warning(
        "Retrying Attio job",
        model_name=model_name,
        model_id=model_id,
        action=action,
        attempt=attempt + 1,
        delay=delay,
        error=str(error),
    )
    registry.get_task_queue().submit(
        action,
        {**options, "model_name": model_name, "model_id": model_id, "attempt": attempt + 1},
        delay=delay,
    )


def _find(registry: ConfigurationRegistry, model: Any, model_id: Any) -> Any:
    return find_record(model, model_id, raise_missing=registry.settings.raise_on_missing_record)


def _perform(registry: ConfigurationRegistry, model: Any, model_id: Any, action: str, options: dict) -> Any:
    if action == "sync":
        record = _find(registry, model, model_id)
        spec = get_sync_spec(model)
        if record is None or not should_sync(record, spec, registry.settings):
            return None
        return SyncExecutor(registry).sync(record, spec, raise_errors=True)

    if action == "delete":
        spec = get_sync_spec(model)
        remote_id = options.get("remote_id")
        if not remote_id or not spec.object_type:
            return None
        return SyncExecutor(registry).delete_remote(spec.object_type, remote_id)

    if action == "sync_deal":
        record = _find(registry, model, model_id)
        spec = get_deal_spec(model)
        if record is None or not should_sync_deal(record, spec, registry.settings):
            return None
        return DealSync(registry).sync(record, spec, raise_errors=True)

    if action == "delete_deal":
        spec = get_deal_spec(model)
        remote_id = options.get("remote_id")
        if not remote_id:
            return None
        return DealSync(registry).delete_remote(spec.object_type, remote_id)

    if action in BATCH_ACTIONS:
        record = _find(registry, model, model_id)
        if record is None:
            return None

        batch_options = dict(options)
        object_type = batch_options.pop("object_type", None) or _object_type(model)
        batch_options = {key: value for key, value in batch_options.items() if value is not None}
        operation = action[len("batch_"):]

        return BulkSync(
            [record],
            object_type,
            BatchOptions(operation=operation, **batch_options),
            registry=registry,
        ).perform()

    logger.error("Unknown Attio sync action", action=action)
    return None


def _object_type(model: Any) -> Optional[str]:
    spec = get_sync_spec(model) or get_deal_spec(model)
    return spec.object_type if spec is not None else None
