"""
Data models for sync operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from attio_sync.sync.rules import MappingRule, coerce_rule

# A callable, or the name of a method on the entity.
Callback = Union[str, Callable[..., Any]]


class SyncStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    ENQUEUED = "enqueued"
    SKIPPED = "skipped"
    FAILED = "failed"


class BatchOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass
class ErrorInfo:
    """Serializable description of a failure."""
    kind: str
    message: str

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        return cls(kind=type(error).__name__, message=str(error))


@dataclass
class SyncResult:
    """Result of a sync attempt for a single entity."""
    status: SyncStatus
    remote_id: Optional[str] = None
    error: Optional[ErrorInfo] = None
    response: Optional[Dict[str, Any]] = None

    # Timing
    synced_at: datetime = None

    def __post_init__(self):
        if self.synced_at is None:
            self.synced_at = datetime.utcnow()

    @property
    def success(self) -> bool:
        return self.status not in (SyncStatus.FAILED, SyncStatus.SKIPPED)


@dataclass
class SyncSpec:
    """
    Per-model sync configuration.

    Set once when a model is declared syncable and not changed afterwards.
    Mapping values are coerced to MappingRule objects on construction.
    """
    object_type: str
    attribute_mapping: Dict[str, Any] = field(default_factory=dict)
    condition: Any = None
    identifier_field: str = "id"
    remote_id_field: str = "attio_record_id"
    transform: Optional[Callback] = None
    error_handler: Optional[Callback] = None
    before_sync: Optional[Callback] = None
    after_sync: Optional[Callback] = None
    bulk_sync_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.attribute_mapping = {
            key: coerce_rule(rule) for key, rule in self.attribute_mapping.items()
        }

    @property
    def rules(self) -> Dict[str, MappingRule]:
        return self.attribute_mapping


@dataclass
class FailedRecord:
    """An entity that failed in a batch, with the error message."""
    entity: Any
    error: Optional[str]


@dataclass
class BatchResult:
    """Aggregated outcome of a bulk run. Every entity lands in exactly one list."""
    successful: List[Any] = field(default_factory=list)
    failed: List[FailedRecord] = field(default_factory=list)
    partial: List[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.partial)


@dataclass
class BatchOptions:
    """Options for a bulk run."""
    operation: BatchOperation = BatchOperation.CREATE
    batch_size: Optional[int] = None
    transform: Optional[Callback] = None
    match_attribute: Optional[str] = None
    partial_success: bool = True
    remote_id_field: str = "attio_record_id"
    async_mode: bool = False
    raise_on_failure: bool = False
    on_error: Optional[Callable[[Exception, List[Any]], None]] = None
    progress_callback: Optional[Callable[[int, int, BatchResult], None]] = None
    on_complete: Optional[Callable[[BatchResult], None]] = None

    def __post_init__(self):
        # Unknown operations raise ValueError here, before any batch runs
        self.operation = BatchOperation(self.operation)
