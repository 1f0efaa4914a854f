"""
Model integration for Attio Sync.

Decorate a mapped class with ``@syncs_with_attio(...)`` (or
``@deal_syncs_with_attio(...)``) and every commit that creates, updates
or deletes one of its instances pushes the change to Attio.

Changes are collected on the session after each flush and dispatched
only after the transaction commits; a rollback discards them.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from sqlalchemy import event, inspect as sa_inspect
from sqlalchemy.orm import Session

from attio_sync.config import ConfigurationRegistry, registry as default_registry
from attio_sync.db.database import get_db_session
from attio_sync.sync.bulk import bulk_sync
from attio_sync.sync.deals import DealSpec, DealSync, should_remove_deal, should_sync_deal, to_deal_payload
from attio_sync.sync.executor import SyncExecutor
from attio_sync.sync.mapper import transformed_attributes
from attio_sync.sync.models import BatchOperation, BatchResult, Callback, SyncSpec
from attio_sync.sync.policy import should_remove, should_sync
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

SYNC_SPEC_ATTR = "__attio_sync__"
DEAL_SPEC_ATTR = "__attio_deal_sync__"
SKIP_ATTR = "__attio_sync_skipped__"
PENDING_KEY = "attio_sync_pending"

SYNC = "sync"
REMOVE = "remove"
SYNC_DEAL = "sync_deal"
REMOVE_DEAL = "remove_deal"

_models: Dict[str, Type[Any]] = {}
_hook_registry: Optional[ConfigurationRegistry] = None


def register_model(model: Type[Any]) -> None:
    _models[model.__name__] = model


def get_model(name: str) -> Optional[Type[Any]]:
    """Look up a syncable model class by name (as used in job payloads)."""
    return _models.get(name)


def _class_of(model_or_entity: Any) -> Type[Any]:
    return model_or_entity if isinstance(model_or_entity, type) else type(model_or_entity)


def get_sync_spec(model_or_entity: Any) -> Optional[SyncSpec]:
    return getattr(_class_of(model_or_entity), SYNC_SPEC_ATTR, None)


def get_deal_spec(model_or_entity: Any) -> Optional[DealSpec]:
    return getattr(_class_of(model_or_entity), DEAL_SPEC_ATTR, None)


def to_attio(entity: Any) -> Dict[str, Any]:
    """The transformed Attio values of a syncable entity."""
    return transformed_attributes(entity, get_sync_spec(entity))


def syncs_with_attio(
    object_type: str,
    mapping: Optional[Dict[str, Any]] = None,
    condition: Any = None,
    identifier: str = "id",
    transform: Optional[Callback] = None,
    on_error: Optional[Callback] = None,
    before_sync: Optional[Callback] = None,
    after_sync: Optional[Callback] = None,
    bulk_sync: Optional[Dict[str, Any]] = None,
    remote_id_field: str = "attio_record_id",
):
    """
    Class decorator that makes a mapped model sync to an Attio object.

    Args:
        object_type: Attio object slug (people, companies...)
        mapping: Attio attribute -> column name, callable or literal
        condition: Bool, callable or method name gating each sync
        identifier: Field returned by attio_identifier()
        transform: Callable(values, entity) or method name applied last
        on_error: Callable(error, entity) or method name owning sync errors
        before_sync: Callable(entity) or method name run before each sync
        after_sync: Callable(result, entity) or method name run after each sync
        bulk_sync: Default BatchOptions for bulk_sync_model()
        remote_id_field: Column storing the Attio record ID
    """
    spec = SyncSpec(
        object_type=object_type,
        attribute_mapping=mapping or {},
        condition=condition,
        identifier_field=identifier,
        remote_id_field=remote_id_field,
        transform=transform,
        error_handler=on_error,
        before_sync=before_sync,
        after_sync=after_sync,
        bulk_sync_options=bulk_sync or {},
    )

    def decorator(cls):
        setattr(cls, SYNC_SPEC_ATTR, spec)
        if not hasattr(cls, "to_attio"):
            cls.to_attio = to_attio
        register_model(cls)
        install_session_hooks()
        return cls

    return decorator


def deal_syncs_with_attio(spec: DealSpec):
    """Class decorator that makes a mapped model sync as an Attio deal."""

    def decorator(cls):
        setattr(cls, DEAL_SPEC_ATTR, spec)
        register_model(cls)
        install_session_hooks()
        return cls

    return decorator


def skip_attio_sync(model: Type[Any], skip: bool = True) -> None:
    """Disable (or re-enable) the commit hooks for a model."""
    setattr(model, SKIP_ATTR, skip)


# Session hooks

def install_session_hooks(registry: Optional[ConfigurationRegistry] = None) -> None:
    """Attach the flush/commit/rollback listeners to all sessions (idempotent)."""
    global _hook_registry
    if registry is not None:
        _hook_registry = registry

    for name, listener in (
        ("after_flush", _collect_changes),
        ("after_commit", _dispatch_changes),
        ("after_rollback", _discard_changes),
    ):
        if not event.contains(Session, name, listener):
            event.listen(Session, name, listener)


def remove_session_hooks() -> None:
    for name, listener in (
        ("after_flush", _collect_changes),
        ("after_commit", _dispatch_changes),
        ("after_rollback", _discard_changes),
    ):
        if event.contains(Session, name, listener):
            event.remove(Session, name, listener)


def _registry() -> ConfigurationRegistry:
    return _hook_registry or default_registry


def _hooked(entity: Any) -> bool:
    cls = type(entity)
    if getattr(cls, SKIP_ATTR, False):
        return False
    return get_sync_spec(cls) is not None or get_deal_spec(cls) is not None


def _queue(pending: List[Tuple[str, Any]], action: str, entity: Any) -> None:
    if not any(queued_action == action and queued is entity for queued_action, queued in pending):
        pending.append((action, entity))


def _collect_changes(session: Session, flush_context: Any) -> None:
    pending = session.info.setdefault(PENDING_KEY, [])

    for entity in list(session.new) + list(session.dirty):
        if not _hooked(entity):
            continue
        if entity in session.dirty and not session.is_modified(entity):
            continue
        if get_sync_spec(entity) is not None:
            _queue(pending, SYNC, entity)
        if get_deal_spec(entity) is not None:
            _queue(pending, SYNC_DEAL, entity)

    for entity in session.deleted:
        if not _hooked(entity):
            continue
        if get_sync_spec(entity) is not None:
            _queue(pending, REMOVE, entity)
        if get_deal_spec(entity) is not None:
            _queue(pending, REMOVE_DEAL, entity)


def _discard_changes(session: Session) -> None:
    session.info.pop(PENDING_KEY, None)


def _reloaded(session: Session, entity: Any) -> Any:
    """
    An instance with its attributes loaded.

    Instances expired by the commit are reloaded through a separate
    session, since the committing session cannot emit SQL here.
    """
    state = sa_inspect(entity)
    if not state.expired_attributes or state.identity is None:
        return entity

    with Session(bind=session.get_bind(state.mapper), expire_on_commit=False) as fresh:
        reloaded = fresh.get(state.mapper.class_, state.identity)
    return reloaded if reloaded is not None else entity


def _dispatch_changes(session: Session) -> None:
    pending = session.info.pop(PENDING_KEY, None)
    if not pending:
        return

    registry = _registry()
    settings = registry.settings

    for action, entity in pending:
        if action == SYNC:
            entity = _reloaded(session, entity)
            spec = get_sync_spec(entity)
            if should_sync(entity, spec, settings):
                SyncExecutor(registry).dispatch_sync(entity, spec)
        elif action == REMOVE:
            spec = get_sync_spec(entity)
            if should_remove(entity, spec, settings):
                SyncExecutor(registry).dispatch_remove(entity, spec)
        elif action == SYNC_DEAL:
            entity = _reloaded(session, entity)
            spec = get_deal_spec(entity)
            if should_sync_deal(entity, spec, settings):
                DealSync(registry).dispatch_sync(entity, spec)
        elif action == REMOVE_DEAL:
            spec = get_deal_spec(entity)
            if should_remove_deal(entity, spec, settings):
                DealSync(registry).dispatch_remove(entity, spec)


# Bulk helpers

def bulk_sync_model(
    model: Type[Any],
    records: Any = None,
    registry: Optional[ConfigurationRegistry] = None,
    **options: Any,
) -> BatchResult:
    """
    Bulk sync a syncable model.

    Args:
        model: Class decorated with syncs_with_attio
        records: Instances or a Query (defaults to every row)
        registry: Configuration registry to use
        **options: BatchOptions overriding the model's bulk_sync defaults

    Returns:
        BatchResult
    """
    spec = get_sync_spec(model)
    merged = {"remote_id_field": spec.remote_id_field, **spec.bulk_sync_options, **options}

    return _over_records(
        model,
        records,
        lambda rows: bulk_sync(rows, spec.object_type, registry=registry, **merged),
    )


def bulk_upsert_model(
    model: Type[Any],
    records: Any = None,
    registry: Optional[ConfigurationRegistry] = None,
    **options: Any,
) -> BatchResult:
    """bulk_sync_model with the upsert operation."""
    return bulk_sync_model(model, records, registry=registry, **{**options, "operation": BatchOperation.UPSERT})


def sync_all_deals(
    model: Type[Any],
    records: Any = None,
    registry: Optional[ConfigurationRegistry] = None,
    **options: Any,
) -> BatchResult:
    """Bulk create every deal of a model."""
    spec = get_deal_spec(model)

    return _over_records(
        model,
        records,
        lambda rows: bulk_sync(
            rows,
            spec.object_type,
            registry=registry,
            transform=lambda entity: to_deal_payload(entity, spec),
            remote_id_field=spec.remote_id_field,
            **options,
        ),
    )


def _over_records(model: Type[Any], records: Any, run: Callable[[Any], BatchResult]) -> BatchResult:
    """Run a bulk operation over the given records, or over every row in a session closed afterwards."""
    if records is not None:
        return run(records)

    with get_db_session() as session:
        return run(session.query(model))
