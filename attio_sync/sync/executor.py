"""
Single-record sync executor for Attio Sync.

Pushes one entity to Attio (create or update), removes it, or hands the
work to a background job depending on configuration.
"""

from typing import Any, Dict, Optional

from attio_sync.api.attio import extract_record_id
from attio_sync.api.base import AuthenticationError, NotFoundError
from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.db.records import write_column
from attio_sync.sync.mapper import transformed_attributes
from attio_sync.sync.models import ErrorInfo, SyncResult, SyncSpec, SyncStatus
from attio_sync.sync.policy import local_id_of, remote_id_of
from attio_sync.sync.rules import invoke_callback
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)


def job_payload(entity: Any, **extra: Any) -> Dict[str, Any]:
    """Arguments identifying an entity for a background job."""
    return {
        "model_name": type(entity).__name__,
        "model_id": local_id_of(entity),
        **extra,
    }


class SyncExecutor:
    """
    Executes syncs and removals for single entities.

    Responsibilities:
    - Run before/after hooks around the remote call
    - Create or update the Attio record and store the new record ID
    - Route failures through the model's error handler, or log them
    - Choose between inline execution and a background job
    """

    sync_action = "sync"
    delete_action = "delete"

    def __init__(self, registry: Optional[ConfigurationRegistry] = None):
        self.registry = registry or default_registry

    @property
    def settings(self):
        return self.registry.settings

    @property
    def client(self):
        return self.registry.client

    def dispatch_sync(self, entity: Any, spec: SyncSpec) -> SyncResult:
        """
        Sync an entity now or enqueue a job for it.

        In background mode the job re-loads the entity and re-checks
        should_sync before syncing.
        """
        if not self.registry.background_sync:
            return self.sync(entity, spec)

        try:
            self.registry.get_task_queue().submit(self.sync_action, job_payload(entity))
        except Exception as e:
            return self._handle_error(e, entity, spec, "Failed to enqueue Attio sync")

        return SyncResult(status=SyncStatus.ENQUEUED)

    def sync(self, entity: Any, spec: SyncSpec, raise_errors: Optional[bool] = None) -> SyncResult:
        """
        Push an entity to Attio.

        Args:
            entity: Record to sync
            spec: Sync configuration of the record's model
            raise_errors: Override strict mode for unhandled errors

        Returns:
            SyncResult (FAILED if the error was handled or suppressed)
        """
        try:
            if spec.before_sync is not None:
                invoke_callback(spec.before_sync, entity)

            values = transformed_attributes(entity, spec)
            remote_id = remote_id_of(entity, spec)

            if remote_id:
                response = self.client.update_record(spec.object_type, remote_id, values)
                result = SyncResult(
                    status=SyncStatus.UPDATED,
                    remote_id=str(remote_id),
                    response=response,
                )
            else:
                response = self.client.create_record(spec.object_type, values)
                new_id = extract_record_id(response)
                if new_id and hasattr(entity, spec.remote_id_field):
                    write_column(entity, spec.remote_id_field, new_id)
                result = SyncResult(
                    status=SyncStatus.CREATED,
                    remote_id=new_id,
                    response=response,
                )

            if spec.after_sync is not None:
                invoke_callback(spec.after_sync, entity, result)

            logger.info(
                "Synced to Attio",
                object_type=spec.object_type,
                model=type(entity).__name__,
                entity_id=local_id_of(entity),
                status=result.status.value,
                remote_id=result.remote_id,
            )
            return result

        except Exception as e:
            return self._handle_error(e, entity, spec, "Failed to sync to Attio", raise_errors)

    def dispatch_remove(self, entity: Any, spec: SyncSpec) -> SyncResult:
        """Remove an entity from Attio now or enqueue a delete job."""
        if not self.registry.background_sync:
            return self.remove(entity, spec)

        remote_id = remote_id_of(entity, spec)
        try:
            self.registry.get_task_queue().submit(
                self.delete_action,
                job_payload(entity, remote_id=remote_id),
            )
        except Exception as e:
            return self._handle_error(e, entity, spec, "Failed to enqueue Attio removal")

        return SyncResult(status=SyncStatus.ENQUEUED, remote_id=remote_id)

    def remove(self, entity: Any, spec: SyncSpec, raise_errors: Optional[bool] = None) -> SyncResult:
        """Delete the entity's Attio record. Missing remote records count as removed."""
        remote_id = remote_id_of(entity, spec)
        if not remote_id:
            return SyncResult(status=SyncStatus.SKIPPED)

        try:
            return self.delete_remote(spec.object_type, remote_id)
        except Exception as e:
            return self._handle_error(e, entity, spec, "Failed to remove from Attio", raise_errors)

    def delete_remote(self, object_type: str, remote_id: str) -> SyncResult:
        """
        Delete a record by Attio ID.

        Raises:
            APIError: Any remote failure other than NotFound
        """
        try:
            response = self.client.delete_record(object_type, remote_id)
        except NotFoundError:
            logger.info("Attio record already deleted", object_type=object_type, remote_id=remote_id)
            return SyncResult(status=SyncStatus.DELETED, remote_id=remote_id)

        logger.info("Deleted Attio record", object_type=object_type, remote_id=remote_id)
        return SyncResult(status=SyncStatus.DELETED, remote_id=remote_id, response=response)

    def _handle_error(
        self,
        error: Exception,
        entity: Any,
        spec: SyncSpec,
        message: str,
        raise_errors: Optional[bool] = None,
    ) -> SyncResult:
        """
        Route a failure.

        A configured error handler owns the error; anything it raises
        propagates. Without one the error is logged, then re-raised in
        strict mode (and always for authentication failures).
        """
        failed = SyncResult(status=SyncStatus.FAILED, error=ErrorInfo.from_exception(error))

        if spec.error_handler is not None:
            invoke_callback(spec.error_handler, entity, error)
            return failed

        logger.error(
            message,
            object_type=spec.object_type,
            model=type(entity).__name__,
            entity_id=local_id_of(entity),
            error=str(error),
        )

        strict = self.settings.raise_errors if raise_errors is None else raise_errors
        if strict or isinstance(error, AuthenticationError):
            raise error

        return failed
