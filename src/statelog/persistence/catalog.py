"""
Association Registry over the PostgreSQL catalog.

Nothing is stored: the ``<ns>.logged`` view re-derives every
(base table ➜ state table) pair from ``pg_inherits`` and the signatures of
the ``<ns>.save`` recorders each time it is read. A base table without a
matching recorder simply does not show up.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ..config import DEFAULT_NAMESPACE
from ..core.naming import TableRef
from .codegen import PARENT, VIEW, literal, quote
from .registry import Association

_RELNAME = """
SELECT n.nspname, c.relname
  FROM pg_class AS c
  JOIN pg_namespace AS n ON n.oid = c.relnamespace
 WHERE c.oid = to_regclass(:rel)
"""


def resolve(connection: Connection, ref: TableRef) -> Optional[TableRef]:
    """Fill in the schema the way the search path would, or ``None`` if the
    table does not exist."""
    found = connection.execute(text(_RELNAME), {"rel": _regclass_text(ref)}).first()
    if found is None:
        return None
    return TableRef(namespace=found.nspname, name=found.relname)


def _regclass_text(ref: TableRef) -> str:
    if ref.namespace is None:
        return quote_all(ref.name)
    return f"{quote_all(ref.namespace)}.{quote_all(ref.name)}"


def quote_all(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def associations(
    connection: Connection, namespace: str = DEFAULT_NAMESPACE
) -> List[Association]:
    sql = f"""
    SELECT bn.nspname AS base_schema, b.relname AS base_name,
           sn.nspname AS state_schema, s.relname AS state_name
      FROM {quote(namespace)}.{quote(VIEW)} AS l
      JOIN pg_class AS b ON b.oid = l.logged
      JOIN pg_namespace AS bn ON bn.oid = b.relnamespace
      JOIN pg_class AS s ON s.oid = l.states
      JOIN pg_namespace AS sn ON sn.oid = s.relnamespace
     ORDER BY bn.nspname, b.relname
    """
    return [
        Association(
            base=TableRef(namespace=r.base_schema, name=r.base_name),
            state=TableRef(namespace=r.state_schema, name=r.state_name),
        )
        for r in connection.execute(text(sql))
    ]


def lookup(
    connection: Connection, base: TableRef, namespace: str = DEFAULT_NAMESPACE
) -> Optional[TableRef]:
    for assoc in associations(connection, namespace):
        if assoc.base == base:
            return assoc.state
    return None


def log_tables(connection: Connection, namespace: str = DEFAULT_NAMESPACE) -> List[TableRef]:
    """Every descendant of the abstract parent, recorder or not."""
    parent = f"{quote(namespace)}.{quote(PARENT)}"
    sql = f"""
    SELECT n.nspname, c.relname
      FROM pg_inherits AS i
      JOIN pg_class AS c ON c.oid = i.inhrelid
      JOIN pg_namespace AS n ON n.oid = c.relnamespace
     WHERE i.inhparent = {literal(parent)}::regclass
     ORDER BY n.nspname, c.relname
    """
    return [
        TableRef(namespace=r.nspname, name=r.relname)
        for r in connection.execute(text(sql))
    ]


def has_infrastructure(connection: Connection, namespace: str = DEFAULT_NAMESPACE) -> bool:
    parent = f"{quote(namespace)}.{quote(PARENT)}"
    return connection.execute(
        text("SELECT to_regclass(:rel) IS NOT NULL"), {"rel": parent}
    ).scalar_one()
