"""
Sync eligibility rules.
"""

from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from attio_sync.config import AttioSettings
from attio_sync.sync.models import SyncSpec
from attio_sync.sync.rules import evaluate_condition


def local_id_of(entity: Any) -> Any:
    """Primary key of a mapped instance, else its ``id`` attribute."""
    try:
        identity = sa_inspect(entity).identity
    except NoInspectionAvailable:
        identity = None

    if identity is not None and len(identity) == 1:
        return identity[0]
    return getattr(entity, "id", None)


def remote_id_of(entity: Any, spec: SyncSpec) -> Any:
    return getattr(entity, spec.remote_id_field, None)


def attio_identifier(entity: Any, spec: SyncSpec) -> Any:
    """The value of the model's configured identifier field."""
    return getattr(entity, spec.identifier_field)


def should_sync(entity: Any, spec: SyncSpec, settings: AttioSettings) -> bool:
    """
    Decide whether an entity should be pushed to Attio.

    Checks run in order and the first failing one returns False:
    sync enabled, object type set, mapping non-empty, condition truthy.
    """
    if not settings.sync_enabled:
        return False
    if not spec.object_type:
        return False
    if not spec.attribute_mapping:
        return False
    return evaluate_condition(spec.condition, entity)


def should_remove(entity: Any, spec: SyncSpec, settings: AttioSettings) -> bool:
    """An entity is removed from Attio only if it was synced and sync is enabled."""
    return bool(remote_id_of(entity, spec)) and settings.sync_enabled
