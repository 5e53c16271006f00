"""
Naming Resolver: where does the state table for a base table live?

* no state schema given  ➜ the base table's own schema
* same schema as base    ➜ ``"<base>/state"``
* different schema       ➜ the base table's own name
* resolved location equals the base table ➜ ConfigurationError
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import Table
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper

from ..errors import ConfigurationError

STATE_SUFFIX = "/state"


class TableRef(BaseModel):
    """Stable ``(namespace, name)`` identity of a table.

    ``namespace`` is ``None`` for engines without schemas (or when the
    default schema is meant and has not been looked up yet).
    """

    namespace: Optional[str] = None
    name: str

    model_config = {"frozen": True}

    @classmethod
    def of(cls, obj: Any) -> "TableRef":
        """Build a reference from a ``TableRef``, ``"schema.name"``,
        a SQLAlchemy ``Table`` or an ORM mapped class."""
        if isinstance(obj, TableRef):
            return obj
        if isinstance(obj, str):
            return cls.parse(obj)
        if isinstance(obj, Table):
            return cls(namespace=obj.schema, name=obj.name)
        mapper = sa_inspect(obj, raiseerr=False)
        if isinstance(mapper, Mapper) and isinstance(mapper.local_table, Table):
            return cls.of(mapper.local_table)
        raise ConfigurationError(f"Cannot use {obj!r} as a table reference")

    @classmethod
    def parse(cls, text: str) -> "TableRef":
        namespace, dot, name = text.partition(".")
        if not dot:
            return cls(name=namespace)
        return cls(namespace=namespace, name=name)

    def with_namespace(self, namespace: Optional[str]) -> "TableRef":
        if self.namespace is not None or namespace is None:
            return self
        return TableRef(namespace=namespace, name=self.name)

    def __str__(self) -> str:
        return self.name if self.namespace is None else f"{self.namespace}.{self.name}"


class StateTarget(BaseModel):
    """A base table, the resolved location of its log, and the mode flag."""

    base: TableRef
    state: TableRef
    with_old: bool = False

    model_config = {"frozen": True}


def resolve_target(
    base: TableRef,
    state_schema: Optional[str] = None,
    state_tab: Optional[str] = None,
    with_old: bool = False,
) -> StateTarget:
    if state_schema is None:
        state_schema = base.namespace
    if state_tab is None:
        state_tab = base.name + STATE_SUFFIX if state_schema == base.namespace else base.name

    state = TableRef(namespace=state_schema, name=state_tab)
    if state == base:
        raise ConfigurationError(
            f"State table {state} would have the same name and schema "
            "as the base table."
        )
    return StateTarget(base=base, state=state, with_old=with_old)
