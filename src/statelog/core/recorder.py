"""
Recorder: one callable per instrumented base table.

``recorder(connection, new, old)`` appends a single row to the state table
and returns it as a mapping, generated ``txid`` and ``t`` included. Images are
plain dicts keyed by column name; ``None`` means "absent" and is stored as
SQL NULL.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import Table, insert
from sqlalchemy.engine import Connection, RowMapping

logger = logging.getLogger(__name__)

Image = Optional[Dict[str, Any]]

_BINARY = (bytes, bytearray, memoryview)


def _column_value(value: Any) -> Any:
    # bytea renders as "\x<hex>" in row_to_json
    if isinstance(value, _BINARY):
        return "\\x" + bytes(value).hex()
    return value


def document(image: Image) -> Any:
    """Serialize a row image the way ``row_to_json`` would."""
    if image is None:
        return None
    return to_jsonable_python(
        {k: _column_value(v) for k, v in image.items()}, fallback=str
    )


class Recorder:
    def __init__(self, table: Table, with_old: bool = False):
        self.table = table
        self.with_old = with_old

    def __call__(self, connection: Connection, new: Image, old: Image) -> RowMapping:
        values = {"new": document(new)}
        if self.with_old:
            values["old"] = document(old)
        stmt = insert(self.table).values(**values).returning(*self.table.c)
        row = connection.execute(stmt).mappings().one()
        logger.debug("recorded txid=%s into %s", row["txid"], self.table.fullname)
        return row

    def __repr__(self) -> str:
        return f"Recorder({self.table.fullname!r}, with_old={self.with_old})"
