"""
Typed state-table layout for engines without table inheritance.

Every state table shares the same leading columns (``txid``, ``t``) with the
same defaults and indexes, followed by the JSON payload column(s). Tables are
tagged with a ``VersionLogTable`` marker in ``Table.info`` so generic tooling
can tell them apart from any other table in the same ``MetaData``.
"""

from __future__ import annotations

import datetime as dt
import itertools
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Column, DateTime, MetaData, Table, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Connection

from ..core.naming import StateTarget, TableRef

MARKER = "statelog.version_log"

Document = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")

_txids = itertools.count(1)


def now_utc() -> dt.datetime:  # compact timezone‑aware timestamp
    return dt.datetime.now(tz=dt.timezone.utc)


def _forget_txid(connection: Connection) -> None:
    connection.info.pop(MARKER, None)


def transaction_id(connection: Connection) -> int:
    """Process-monotonic id, stable for the lifetime of one transaction."""
    if connection.get_transaction() is None:
        return next(_txids)
    txid = connection.info.get(MARKER)
    if txid is None:
        txid = connection.info[MARKER] = next(_txids)
        for name in ("commit", "rollback"):
            if not event.contains(connection, name, _forget_txid):
                event.listen(connection, name, _forget_txid)
    return txid


def _txid_default(context) -> int:
    return transaction_id(context.connection)


class VersionLogTable:
    """Marker attached to every generated state table."""

    def __init__(self, base: TableRef, with_old: bool):
        self.base = base
        self.with_old = with_old

    def __repr__(self) -> str:
        return f"VersionLogTable(base={self.base}, with_old={self.with_old})"


def common_columns() -> List[Column]:
    """Fresh copies of the columns every state table starts with."""
    return [
        Column("txid", BigInteger, nullable=False, index=True, default=_txid_default),
        Column("t", DateTime(timezone=True), nullable=False, index=True, default=now_utc),
    ]


def build_state_table(metadata: MetaData, target: StateTarget) -> Table:
    payload = [Column("new", Document, nullable=True)]
    if target.with_old:
        payload.append(Column("old", Document, nullable=True))

    return Table(
        target.state.name,
        metadata,
        *common_columns(),
        *payload,
        schema=target.state.namespace,
        info={MARKER: VersionLogTable(target.base, target.with_old)},
    )


def version_log(table: Table) -> Optional[VersionLogTable]:
    return table.info.get(MARKER)
