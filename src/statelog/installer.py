"""
``install``: give a base table a state table and keep it fed.

On PostgreSQL the whole pipeline lives in the database (trigger, SQL
recorder, catalog view). Elsewhere the base table must be an ORM mapped
class; its writes are captured from the unit of work.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, List, Optional

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, InvalidRequestError
from sqlalchemy.orm import Mapper

from .config import DEFAULT_NAMESPACE
from .core.naming import TableRef, resolve_target
from .core.recorder import Recorder
from .errors import ConfigurationError, GenerationError
from .persistence import catalog
from .persistence.codegen import statements
from .persistence.models import build_state_table
from .persistence.registry import Association, AssociationRegistry
from .persistence.registry import registry as default_registry

logger = logging.getLogger(__name__)


def install(
    connection: Connection,
    base: Any,
    state_schema: Optional[str] = None,
    state_tab: Optional[str] = None,
    with_old: bool = False,
    *,
    namespace: str = DEFAULT_NAMESPACE,
    registry: Optional[AssociationRegistry] = None,
) -> Optional[TableRef]:
    """Instrument ``base`` and return the location of its new state table.

    Runs inside the caller's transaction if one is open, otherwise in its
    own. Either everything is installed or nothing is.
    """
    txn = nullcontext() if connection.in_transaction() else connection.begin()
    with txn:
        if connection.dialect.name == "postgresql":
            return _install_postgres(
                connection, base, state_schema, state_tab, with_old, namespace
            )
        return _install_portable(
            connection, base, state_schema, state_tab, with_old,
            registry if registry is not None else default_registry,
        )


def _install_postgres(connection, base, state_schema, state_tab, with_old, namespace):
    ref = catalog.resolve(connection, TableRef.of(base))
    if ref is None:
        raise ConfigurationError(f"No such table: {TableRef.of(base)}")
    target = resolve_target(ref, state_schema, state_tab, with_old)

    batch = statements(target, namespace)
    logger.debug("state-log DDL for %s:\n%s", ref, "\n".join(batch))
    try:
        for stmt in batch:
            connection.exec_driver_sql(stmt)
    except DBAPIError as exc:
        raise GenerationError(f"Could not instrument {ref}: {exc.orig}") from exc

    state = catalog.lookup(connection, ref, namespace)
    logger.info("Logging %s into %s (with_old=%s)", ref, state, with_old)
    return state


def _install_portable(connection, base, state_schema, state_tab, with_old, registry):
    mapper = sa_inspect(base, raiseerr=False)
    if not isinstance(mapper, Mapper):
        raise ConfigurationError(
            f"{connection.dialect.name} needs an ORM mapped class, got {base!r}"
        )
    ref = TableRef.of(mapper.local_table)
    target = resolve_target(ref, state_schema, state_tab, with_old)
    if ref in registry:
        raise GenerationError(f"{ref} already has a state table")

    try:
        table = build_state_table(registry.metadata, target)
    except InvalidRequestError as exc:
        raise GenerationError(f"Could not instrument {ref}: {exc}") from exc
    try:
        table.create(connection)
    except DBAPIError as exc:
        registry.metadata.remove(table)
        raise GenerationError(f"Could not instrument {ref}: {exc.orig}") from exc

    registry.register(ref, mapper.class_, table, Recorder(table, with_old))
    registry.hook.attach(mapper.class_)
    _forget_on_rollback(connection, registry, ref, table)

    state = registry.lookup(ref)
    logger.info("Logging %s into %s (with_old=%s)", ref, state, with_old)
    return state


def _forget_on_rollback(connection, registry, ref, table):
    """Registration outlives the transaction only if the transaction commits."""
    pending = [True]

    def keep(conn):
        pending.clear()

    def forget(conn):
        if pending:
            pending.clear()
            registry.discard(ref)
            registry.metadata.remove(table)
            logger.info("Installation of %s rolled back", ref)

    event.listen(connection, "commit", keep)
    event.listen(connection, "rollback", forget)


def associations(
    connection: Connection,
    *,
    namespace: str = DEFAULT_NAMESPACE,
    registry: Optional[AssociationRegistry] = None,
) -> List[Association]:
    """Every (base table, state table) pair known to this backend."""
    if connection.dialect.name == "postgresql":
        return catalog.associations(connection, namespace)
    return (registry if registry is not None else default_registry).associations()


def lookup(
    connection: Connection,
    base: Any,
    *,
    namespace: str = DEFAULT_NAMESPACE,
    registry: Optional[AssociationRegistry] = None,
) -> Optional[TableRef]:
    """The state table of ``base``, or ``None`` if it is not instrumented."""
    if connection.dialect.name == "postgresql":
        ref = catalog.resolve(connection, TableRef.of(base))
        return catalog.lookup(connection, ref, namespace) if ref is not None else None
    reg = registry if registry is not None else default_registry
    return reg.lookup(TableRef.of(base))
