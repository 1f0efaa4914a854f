"""
Record access used by the sync layer: lookups for background jobs and the
direct column write that stores Attio IDs.
"""

from typing import Any, Optional, Type

from sqlalchemy import and_, inspect as sa_inspect, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm.attributes import set_committed_value

from attio_sync.db.database import get_db_session, get_engine
from attio_sync.exceptions import RecordNotFound


def find_record(model: Type[Any], record_id: Any, raise_missing: bool = False) -> Optional[Any]:
    """
    Load a record by primary key.

    Args:
        model: Mapped class
        record_id: Primary key value
        raise_missing: Raise RecordNotFound instead of returning None

    Returns:
        The record (detached, attributes loaded) or None
    """
    with get_db_session() as session:
        record = session.get(model, record_id)

    if record is None and raise_missing:
        raise RecordNotFound(f"{model.__name__} {record_id} not found")
    return record


def write_column(entity: Any, field: str, value: Any) -> None:
    """
    Store a value without validation or change tracking.

    On a mapped instance the attribute is set as already committed (so it
    does not dirty the instance or trigger flush hooks) and written with a
    direct UPDATE on its own connection. Other objects get a plain setattr.
    """
    try:
        state = sa_inspect(entity)
    except NoInspectionAvailable:
        setattr(entity, field, value)
        return

    if state.identity is None:
        # Not persisted yet; the value goes out with the pending INSERT
        setattr(entity, field, value)
        return

    mapper = state.mapper
    set_committed_value(entity, field, value)

    column = mapper.get_property(field).columns[0]
    criteria = [pk == ident for pk, ident in zip(mapper.primary_key, state.identity)]
    statement = (
        update(mapper.local_table)
        .where(and_(*criteria))
        .values({column.name: value})
    )

    bind = state.session.get_bind(mapper) if state.session is not None else get_engine()
    if isinstance(bind, Engine):
        with bind.begin() as connection:
            connection.execute(statement)
    else:
        bind.execute(statement)
