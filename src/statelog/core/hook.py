"""
Change-Capture Hook for ORM mapped base tables.

A single ``ChangeHook`` is bound to the ``after_insert`` / ``after_update`` /
``after_delete`` mapper events of every instrumented class. It classifies the
write, rebuilds the row images and hands them to the recorder registered for
the class's table. The recorder runs on the flush's own connection, so the
log row commits or rolls back together with the write.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Dict

from sqlalchemy import event, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapper

from .naming import TableRef

if TYPE_CHECKING:
    from ..persistence.registry import AssociationRegistry


class Operation(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def _current_image(mapper: Mapper, target: Any) -> Dict[str, Any]:
    state = sa_inspect(target)
    return {
        prop.columns[0].name: state.dict.get(prop.key)
        for prop in mapper.column_attrs
    }


def _previous_image(mapper: Mapper, target: Any) -> Dict[str, Any]:
    state = sa_inspect(target)
    image = {}
    for prop in mapper.column_attrs:
        hist = state.attrs[prop.key].history
        if hist.deleted:
            value = hist.deleted[0]
        elif hist.unchanged:
            value = hist.unchanged[0]
        else:
            value = None  # never loaded, previous value unknown
        image[prop.columns[0].name] = value
    return image


def _changed(mapper: Mapper, target: Any) -> bool:
    state = sa_inspect(target)
    return any(state.attrs[prop.key].history.has_changes() for prop in mapper.column_attrs)


def _stored_image(mapper: Mapper, connection: Connection, target: Any) -> Dict[str, Any]:
    """The row as the database holds it after the write, SQL-computed
    columns (``onupdate=func...``, server defaults) included."""
    table = mapper.local_table
    state = sa_inspect(target)
    criteria = [
        col == state.dict.get(mapper.get_property_by_column(col).key)
        for col in table.primary_key
    ]
    row = connection.execute(select(table).where(*criteria)).one()
    return {col.name: row._mapping[col] for col in table.c}


def _load_columns(mapper: Mapper, target: Any) -> None:
    # expired values would otherwise be missing from the images
    state = sa_inspect(target)
    for prop in mapper.column_attrs:
        if prop.key in state.unloaded:
            getattr(target, prop.key)


def _keep_old_value(target, value, oldvalue, initiator):
    return value


_OLD_IMAGE = "statelog.old_image"


class ChangeHook:
    def __init__(self, registry: "AssociationRegistry"):
        self.registry = registry

    def attach(self, cls: type) -> None:
        if event.contains(cls, "after_insert", self.on_insert):
            return
        mapper = sa_inspect(cls)
        for prop in mapper.column_attrs:
            # make plain assignment load the value it replaces
            event.listen(
                getattr(cls, prop.key), "set", _keep_old_value,
                active_history=True, retval=True,
            )
        event.listen(cls, "before_update", self.before_update)
        event.listen(cls, "before_delete", self.before_delete)
        event.listen(cls, "after_insert", self.on_insert)
        event.listen(cls, "after_update", self.on_update)
        event.listen(cls, "after_delete", self.on_delete)

    def _recorder(self, mapper: Mapper):
        return self.registry.recorder_for(TableRef.of(mapper.local_table))

    # ---- mapper event entry points -------------------------------------
    def before_update(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        # SQL-computed onupdate columns are expired once the UPDATE ran
        if self._recorder(mapper) is not None:
            _load_columns(mapper, target)
            sa_inspect(target).info[_OLD_IMAGE] = _previous_image(mapper, target)

    def before_delete(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        if self._recorder(mapper) is not None:
            _load_columns(mapper, target)

    def on_insert(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        self.capture(Operation.INSERT, mapper, connection, target)

    def on_update(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        self.capture(Operation.UPDATE, mapper, connection, target)

    def on_delete(self, mapper: Mapper, connection: Connection, target: Any) -> None:
        self.capture(Operation.DELETE, mapper, connection, target)

    def capture(
        self, op: Operation, mapper: Mapper, connection: Connection, target: Any
    ) -> None:
        state = sa_inspect(target)
        old_image = state.info.pop(_OLD_IMAGE, None)
        recorder = self._recorder(mapper)
        if recorder is None:
            return
        if op is Operation.INSERT:
            new, old = _stored_image(mapper, connection, target), None
        elif op is Operation.UPDATE:
            # after_update also fires for objects dirty only through relationships
            if not _changed(mapper, target):
                return
            if old_image is None:
                old_image = _previous_image(mapper, target)
            new, old = _stored_image(mapper, connection, target), old_image
        else:
            new, old = None, _current_image(mapper, target)
        recorder(connection, new, old)
