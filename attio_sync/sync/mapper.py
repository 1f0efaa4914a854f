"""
Attribute mapping for Attio Sync.

Builds the flat attribute payload sent to Attio from an entity and its
SyncSpec.
"""

from typing import Any, Dict

from attio_sync.sync.models import SyncSpec
from attio_sync.sync.rules import invoke_callback


def map_attributes(entity: Any, spec: SyncSpec) -> Dict[str, Any]:
    """
    Resolve every mapping rule against the entity.

    Keys whose resolved value is None are left out of the payload.

    Args:
        entity: Record being synced
        spec: Sync configuration of the record's model

    Returns:
        Attribute payload in mapping order
    """
    payload: Dict[str, Any] = {}

    for attio_key, rule in spec.rules.items():
        value = rule.resolve(entity)
        if value is not None:
            payload[attio_key] = value

    return payload


def apply_transform(payload: Dict[str, Any], entity: Any, transform: Any) -> Dict[str, Any]:
    """Run a transform over a payload; its return value replaces the payload."""
    if transform is None:
        return payload
    return invoke_callback(transform, entity, payload)


def transformed_attributes(entity: Any, spec: SyncSpec) -> Dict[str, Any]:
    """Mapped attributes with SyncSpec.transform applied."""
    return apply_transform(map_attributes(entity, spec), entity, spec.transform)
