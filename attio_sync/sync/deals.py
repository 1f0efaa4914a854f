"""
Deal sync for Attio Sync.

Deals are records of the ``deals`` object. Besides the full create/update
path, a synced deal can send a partial update when it hits a transition
(stage change, won, lost), and can be marked won/lost or moved to a new
stage locally and in Attio in one step.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.orm import object_session

from attio_sync.api.attio import extract_record_id
from attio_sync.config import AttioSettings
from attio_sync.db.database import get_db_session
from attio_sync.db.records import write_column
from attio_sync.sync.executor import SyncExecutor
from attio_sync.sync.models import Callback, SyncResult, SyncStatus
from attio_sync.sync.policy import local_id_of, remote_id_of
from attio_sync.sync.rules import evaluate_condition, invoke_callback
from attio_sync.utils.logging import get_logger

logger = get_logger(__name__)

DEALS_OBJECT = "deals"


def _serialize(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class TransitionRule:
    """
    A deal state that is pushed as a partial update.

    Attributes:
        name: Label used in logs
        predicate: (entity, spec) -> bool
        partial_update: (entity, spec) -> values to send
    """
    name: str
    predicate: Callable[[Any, "DealSpec"], bool]
    partial_update: Callable[[Any, "DealSpec"], Dict[str, Any]]


def _stage_changed(entity: Any, spec: "DealSpec") -> bool:
    stage_id = getattr(entity, "stage_id", None)
    current = current_stage(entity, spec)
    return current is not None and stage_id is not None and current != stage_id


def _has_status(status: str) -> Callable[[Any, "DealSpec"], bool]:
    return lambda entity, spec: getattr(entity, "status", None) == status


def default_transitions() -> List[TransitionRule]:
    return [
        TransitionRule(
            "stage_changed",
            _stage_changed,
            lambda entity, spec: {"stage_id": entity.stage_id},
        ),
        TransitionRule(
            "won",
            _has_status("won"),
            lambda entity, spec: {
                "status": "won",
                "closed_date": _serialize(getattr(entity, "closed_date", None)),
            },
        ),
        TransitionRule(
            "lost",
            _has_status("lost"),
            lambda entity, spec: {
                "status": "lost",
                "lost_reason": getattr(entity, "lost_reason", None),
            },
        ),
    ]


@dataclass
class DealSpec:
    """Per-model deal configuration."""
    pipeline_id: Optional[str] = None
    name_field: Optional[str] = None
    value_field: Optional[str] = None
    stage_field: Optional[str] = None
    company_field: Optional[str] = None
    owner_field: Optional[str] = None
    expected_close_date_field: Optional[str] = None
    condition: Any = None
    transform: Optional[Callback] = None
    error_handler: Optional[Callback] = None
    before_sync: Optional[Callback] = None
    after_sync: Optional[Callback] = None
    on_won: Optional[Callback] = None
    on_lost: Optional[Callback] = None
    on_stage_change: Optional[Callback] = None
    transitions: List[TransitionRule] = field(default_factory=default_transitions)
    object_type: str = DEALS_OBJECT
    remote_id_field: str = "attio_deal_id"


def current_stage(entity: Any, spec: DealSpec) -> Any:
    """The deal's current stage: configured stage field, then stage_id, then status."""
    if spec.stage_field and hasattr(entity, spec.stage_field):
        return getattr(entity, spec.stage_field)
    if hasattr(entity, "stage_id"):
        return entity.stage_id
    return getattr(entity, "status", None)


def deal_name(entity: Any, spec: DealSpec) -> Any:
    if spec.name_field:
        return getattr(entity, spec.name_field)
    for name in ("name", "title"):
        if hasattr(entity, name):
            return getattr(entity, name)
    return f"{type(entity).__name__} #{local_id_of(entity)}"


def deal_value(entity: Any, spec: DealSpec) -> Any:
    if spec.value_field:
        return getattr(entity, spec.value_field)
    for name in ("value", "amount"):
        if hasattr(entity, name):
            return getattr(entity, name)
    return 0


def _optional_field(entity: Any, configured: Optional[str], fallback: str) -> Any:
    return getattr(entity, configured or fallback, None)


def to_deal_payload(entity: Any, spec: DealSpec) -> Dict[str, Any]:
    """
    Build the deal values for an entity.

    Optional fields (stage, company, owner, expected close date) are only
    included when the entity has a value for them.
    """
    data: Dict[str, Any] = {
        "name": deal_name(entity, spec),
        "value": deal_value(entity, spec),
        "pipeline_id": spec.pipeline_id,
    }

    stage = current_stage(entity, spec)
    if stage:
        data["stage_id"] = stage

    optional = {
        "company_id": _optional_field(entity, spec.company_field, "company_attio_id"),
        "owner_id": _optional_field(entity, spec.owner_field, "owner_attio_id"),
        "expected_close_date": _optional_field(
            entity, spec.expected_close_date_field, "expected_close_date"
        ),
    }
    for key, value in optional.items():
        if value:
            data[key] = _serialize(value)

    if spec.transform is not None:
        return invoke_callback(spec.transform, entity, data)
    return data


def should_sync_deal(entity: Any, spec: DealSpec, settings: AttioSettings) -> bool:
    if not settings.sync_enabled:
        return False
    if not spec.pipeline_id:
        return False
    return evaluate_condition(spec.condition, entity)


def should_remove_deal(entity: Any, spec: DealSpec, settings: AttioSettings) -> bool:
    return bool(remote_id_of(entity, spec)) and settings.sync_enabled


@contextmanager
def deal_transaction(entity: Any) -> Iterator[Any]:
    """
    Commit local deal changes only if the block succeeds.

    Uses the session the entity is attached to, or a new one.
    """
    session = object_session(entity)
    if session is None:
        with get_db_session() as session:
            session.add(entity)
            yield entity
        return

    try:
        yield entity
        session.commit()
    except Exception:
        session.rollback()
        raise


class DealSync(SyncExecutor):
    """
    Syncs deal entities.

    Shares dispatch and error routing with SyncExecutor; the payload and
    the create/update decision are deal specific.
    """

    sync_action = "sync_deal"
    delete_action = "delete_deal"

    def sync(self, entity: Any, spec: DealSpec, raise_errors: Optional[bool] = None) -> SyncResult:
        """
        Push a deal to Attio.

        An existing deal matching a transition rule sends only that rule's
        values; otherwise the full payload is sent.
        """
        try:
            if spec.before_sync is not None:
                invoke_callback(spec.before_sync, entity)

            remote_id = remote_id_of(entity, spec)

            if remote_id:
                values = self._update_values(entity, spec)
                response = self.client.update_record(spec.object_type, remote_id, values)
                result = SyncResult(
                    status=SyncStatus.UPDATED,
                    remote_id=str(remote_id),
                    response=response,
                )
            else:
                response = self.client.create_record(spec.object_type, to_deal_payload(entity, spec))
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
                "Synced deal to Attio",
                model=type(entity).__name__,
                entity_id=local_id_of(entity),
                status=result.status.value,
                remote_id=result.remote_id,
            )
            return result

        except Exception as e:
            return self._handle_error(e, entity, spec, "Failed to sync deal to Attio", raise_errors)

    def _update_values(self, entity: Any, spec: DealSpec) -> Dict[str, Any]:
        for rule in spec.transitions:
            if rule.predicate(entity, spec):
                logger.debug("Deal transition", rule=rule.name, entity_id=local_id_of(entity))
                return rule.partial_update(entity, spec)
        return to_deal_payload(entity, spec)

    def mark_as_won(
        self,
        entity: Any,
        spec: DealSpec,
        won_date: Optional[datetime] = None,
        actual_value: Any = None,
    ) -> Any:
        """
        Mark a deal won locally and in Attio, then run the on_won callback.

        Local changes are rolled back if the Attio update fails.
        """
        won_date = won_date or datetime.now()

        with deal_transaction(entity) as deal:
            deal.status = "won"
            deal.closed_date = won_date

            remote_id = remote_id_of(deal, spec)
            if remote_id:
                value = deal_value(deal, spec) if actual_value is None else actual_value
                self.client.update_record(spec.object_type, remote_id, {
                    "status": "won",
                    "closed_date": _serialize(won_date),
                    "value": value,
                })

            if spec.on_won is not None:
                invoke_callback(spec.on_won, deal)

        logger.info("Deal marked as won", entity_id=local_id_of(entity), remote_id=remote_id)
        return entity

    def mark_as_lost(
        self,
        entity: Any,
        spec: DealSpec,
        lost_reason: Optional[str] = None,
        lost_date: Optional[datetime] = None,
    ) -> Any:
        """Mark a deal lost locally and in Attio, then run the on_lost callback."""
        lost_date = lost_date or datetime.now()

        with deal_transaction(entity) as deal:
            deal.status = "lost"
            deal.closed_date = lost_date
            deal.lost_reason = lost_reason

            remote_id = remote_id_of(deal, spec)
            if remote_id:
                self.client.update_record(spec.object_type, remote_id, {
                    "status": "lost",
                    "lost_reason": lost_reason,
                    "closed_date": _serialize(lost_date),
                })

            if spec.on_lost is not None:
                invoke_callback(spec.on_lost, deal)

        logger.info("Deal marked as lost", entity_id=local_id_of(entity), remote_id=remote_id)
        return entity

    def update_stage(self, entity: Any, spec: DealSpec, new_stage_id: Any) -> Any:
        """Move a deal to a new stage locally and in Attio, then run on_stage_change."""
        stage_field = spec.stage_field or "current_stage_id"

        with deal_transaction(entity) as deal:
            setattr(deal, stage_field, new_stage_id)

            remote_id = remote_id_of(deal, spec)
            if remote_id:
                self.client.update_record(spec.object_type, remote_id, {"stage_id": new_stage_id})

            if spec.on_stage_change is not None:
                invoke_callback(spec.on_stage_change, deal, new_stage_id)

        logger.info("Deal stage updated", entity_id=local_id_of(entity), stage_id=new_stage_id)
        return entity
