"""
Bulk sync for Attio Sync.

Splits a set of entities into batches and pushes each batch to Attio,
either through the client's bulk endpoints or one record at a time,
and accounts for every entity as successful, failed or partial.
"""

import math
import time
import uuid
from itertools import islice
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Query

from attio_sync.api.attio import extract_record_id
from attio_sync.api.base import NotFoundError, RateLimitError
from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.exceptions import BulkSyncError
from attio_sync.sync.executor import job_payload
from attio_sync.sync.models import BatchOperation, BatchOptions, BatchResult, FailedRecord
from attio_sync.sync.policy import local_id_of
from attio_sync.sync.rules import invoke_callback
from attio_sync.utils.logging import get_logger, sync_context

logger = get_logger(__name__)

DEFAULT_RETRY_AFTER = 60


def raw_attributes(entity: Any) -> Dict[str, Any]:
    """Column values of a mapped instance, or the public instance attributes."""
    try:
        mapper = sa_inspect(entity).mapper
    except NoInspectionAvailable:
        return {key: value for key, value in vars(entity).items() if not key.startswith("_")}
    return {attr.key: getattr(entity, attr.key) for attr in mapper.column_attrs}


def _chunks(entities: Any, size: int) -> Iterator[List[Any]]:
    if isinstance(entities, Query):
        iterator = iter(entities.yield_per(size))
    else:
        iterator = iter(entities)

    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def _count(entities: Any) -> int:
    if isinstance(entities, Query):
        return entities.count()
    return len(entities)


def _message(error: Any) -> Optional[str]:
    return None if error is None else str(error)


class BulkSync:
    """
    Runs one bulk operation over many entities.

    Batches are processed strictly in order. A batch-level rate limit
    either defers every entity in the batch to a background job (async
    mode) or sleeps for the advertised retry_after and retries the batch
    once. Any other batch error marks the whole batch failed.
    """

    def __init__(
        self,
        entities: Iterable[Any],
        object_type: str,
        options: Optional[BatchOptions] = None,
        registry: Optional[ConfigurationRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not isinstance(entities, Query) and not hasattr(entities, "__len__"):
            entities = list(entities)

        self.entities = entities
        self.object_type = object_type
        self.options = options or BatchOptions()
        self.registry = registry or default_registry
        self.results = BatchResult()
        self.run_id = str(uuid.uuid4())[:8]
        self.logger = logger.bind(object_type=object_type, operation=self.options.operation.value)
        self._sleep = sleep
        self._client = None

    @property
    def operation(self) -> BatchOperation:
        return self.options.operation

    @property
    def client(self):
        if self._client is None:
            self._client = self.registry.client
        return self._client

    def perform(self) -> BatchResult:
        """
        Run the bulk operation.

        Returns:
            BatchResult with successful, failed and partial entities

        Raises:
            BulkSyncError: raise_on_failure is set and nothing succeeded
        """
        total = _count(self.entities)
        if total == 0:
            return self.results

        batch_size = self.options.batch_size or self.registry.settings.bulk_batch_size or 100
        total_batches = math.ceil(total / batch_size)

        with sync_context(bulk_run_id=self.run_id):
            for index, batch in enumerate(_chunks(self.entities, batch_size), start=1):
                self.logger.info("Processing batch", batch=index, total_batches=total_batches)

                self._process_batch(batch)

                if self.options.progress_callback is not None:
                    self.options.progress_callback(index, total_batches, self.results)

            self._handle_results()
        return self.results

    def _process_batch(self, batch: List[Any], retry_on_rate_limit: bool = True) -> None:
        try:
            if self.operation == BatchOperation.CREATE:
                self._create_batch(batch)
            elif self.operation == BatchOperation.UPDATE:
                self._update_batch(batch)
            elif self.operation == BatchOperation.UPSERT:
                self._upsert_batch(batch)
            else:
                self._delete_batch(batch)
        except RateLimitError as e:
            if retry_on_rate_limit:
                self._handle_rate_limit(e, batch)
            else:
                self._handle_batch_error(e, batch)
        except Exception as e:
            self._handle_batch_error(e, batch)

    # Operations

    def _create_batch(self, batch: List[Any]) -> None:
        records = [self.transform(entity) for entity in batch]

        if self.client.supports_bulk:
            response = self.client.bulk_create_records(
                self.object_type,
                records,
                partial_success=self.options.partial_success,
            )
        else:
            self._one_by_one(
                batch,
                lambda index, entity: self.client.create_record(self.object_type, records[index]),
            )
            return

        self._process_response(response, batch)

    def _update_batch(self, batch: List[Any]) -> None:
        updates = [
            {"id": self.remote_id(entity), "data": self.transform(entity)}
            for entity in batch
        ]

        if self.client.supports_bulk:
            response = self.client.bulk_update_records(
                self.object_type,
                updates,
                partial_success=self.options.partial_success,
            )
        else:
            self._one_by_one(
                batch,
                lambda index, entity: self.client.update_record(
                    self.object_type, updates[index]["id"], updates[index]["data"]
                ),
            )
            return

        self._process_response(response, batch)

    def _upsert_batch(self, batch: List[Any]) -> None:
        match_attribute = (
            self.options.match_attribute
            or self.registry.settings.upsert_match_attribute
            or "email"
        )
        records = [self.transform(entity) for entity in batch]

        if self.client.supports_bulk:
            response = self.client.bulk_upsert_records(
                self.object_type,
                records,
                match_attribute=match_attribute,
                partial_success=self.options.partial_success,
            )
        else:
            self._one_by_one(
                batch,
                lambda index, entity: self._upsert_one(records[index], match_attribute),
            )
            return

        self._process_response(response, batch)

    def _upsert_one(self, data: Dict[str, Any], match_attribute: str) -> Dict[str, Any]:
        existing = self.client.list_records(
            self.object_type,
            filter={match_attribute: data.get(match_attribute)},
        )
        if existing:
            record_id = extract_record_id({"data": existing[0]})
            return self.client.update_record(self.object_type, record_id, data)
        return self.client.create_record(self.object_type, data)

    def _delete_batch(self, batch: List[Any]) -> None:
        # Entities never synced have nothing to delete and are not accounted
        batch = [entity for entity in batch if self.remote_id(entity)]
        if not batch:
            return

        ids = [self.remote_id(entity) for entity in batch]

        if self.client.supports_bulk:
            response = self.client.bulk_delete_records(self.object_type, ids)
        else:
            self._one_by_one(
                batch,
                lambda index, entity: self._delete_one(ids[index]),
            )
            return

        self._process_response(response, batch)

    def _delete_one(self, remote_id: str) -> None:
        try:
            self.client.delete_record(self.object_type, remote_id)
        except NotFoundError:
            self.logger.info("Attio record already deleted", remote_id=remote_id)

    def _one_by_one(self, batch: List[Any], call: Callable[[int, Any], Any]) -> None:
        """Issue single-record calls in order; each entity is classified by its own call."""
        for index, entity in enumerate(batch):
            try:
                call(index, entity)
            except Exception as e:
                self.results.failed.append(FailedRecord(entity, str(e)))
            else:
                self.results.successful.append(entity)

    # Helpers

    def transform(self, entity: Any) -> Dict[str, Any]:
        """Payload for one entity: explicit transform, to_attio(), or raw columns."""
        if self.options.transform is not None:
            return invoke_callback(self.options.transform, entity)
        if hasattr(entity, "to_attio"):
            return entity.to_attio()
        return raw_attributes(entity)

    def remote_id(self, entity: Any) -> Optional[str]:
        if hasattr(entity, "attio_id"):
            return entity.attio_id
        return getattr(entity, self.options.remote_id_field, None)

    def _process_response(self, response: Dict[str, Any], batch: List[Any]) -> None:
        response = response or {}

        if response.get("success"):
            self.results.successful.extend(batch)
            return

        errors = response.get("errors") or {}

        if response.get("partial_success"):
            successful_ids = list(response.get("successful_ids") or [])
            failed_ids = list(response.get("failed_ids") or [])

            for entity in batch:
                entity_id = local_id_of(entity)
                if entity_id in successful_ids:
                    self.results.successful.append(entity)
                elif entity_id in failed_ids:
                    self.results.failed.append(FailedRecord(entity, _message(errors.get(entity_id))))
                else:
                    self.results.partial.append(entity)
            return

        for entity in batch:
            error = errors.get(local_id_of(entity), response.get("error"))
            self.results.failed.append(FailedRecord(entity, _message(error)))

    def _handle_rate_limit(self, error: RateLimitError, batch: List[Any]) -> None:
        retry_after = DEFAULT_RETRY_AFTER if error.retry_after is None else error.retry_after
        self.logger.warning(
            "Rate limit hit during bulk sync",
            retry_after=retry_after,
            async_mode=self.options.async_mode,
        )

        task_queue = self.registry.get_task_queue() if self.options.async_mode else None

        if task_queue is not None:
            for entity in batch:
                task_queue.submit(
                    f"batch_{self.operation.value}",
                    job_payload(entity, object_type=self.object_type, **self._job_options()),
                    delay=retry_after,
                )
            self.results.partial.extend(batch)
        else:
            self._sleep(retry_after)
            self._process_batch(batch, retry_on_rate_limit=False)

    def _job_options(self) -> Dict[str, Any]:
        return {
            "batch_size": self.options.batch_size,
            "transform": self.options.transform,
            "match_attribute": self.options.match_attribute,
            "partial_success": self.options.partial_success,
            "remote_id_field": self.options.remote_id_field,
        }

    def _handle_batch_error(self, error: Exception, batch: List[Any]) -> None:
        self.logger.error("Batch sync error", error=str(error))

        if self.options.on_error is not None:
            self.options.on_error(error, batch)

        for entity in batch:
            self.results.failed.append(FailedRecord(entity, str(error)))

    def _handle_results(self) -> None:
        self.logger.info(
            "Bulk sync completed",
            successful=len(self.results.successful),
            total=self.results.total,
        )

        if self.results.failed:
            self.logger.error("Failed records", count=len(self.results.failed))
            if self.options.raise_on_failure and not self.results.successful:
                raise BulkSyncError("All records failed to sync")

        if self.options.on_complete is not None:
            self.options.on_complete(self.results)


def bulk_sync(
    entities: Iterable[Any],
    object_type: str,
    registry: Optional[ConfigurationRegistry] = None,
    **options: Any,
) -> BatchResult:
    """Run a bulk operation; keyword options are BatchOptions fields."""
    return BulkSync(entities, object_type, BatchOptions(**options), registry=registry).perform()
