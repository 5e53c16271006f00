"""
Single entry-point that installs the shared state-log infrastructure.
Call once per database, e.g. in FastAPI startup or a migration.
"""

from __future__ import annotations

import logging
from typing import Union

from sqlalchemy.engine import Connection, Engine

from .config import DEFAULT_NAMESPACE
from .persistence import catalog
from .persistence.codegen import infrastructure

logger = logging.getLogger(__name__)


def init_statelog(
    bind: Union[Engine, Connection], namespace: str = DEFAULT_NAMESPACE
) -> bool:
    """
    Create the parent state table, the generic trigger function and the
    discovery view in ``namespace``. Returns ``False`` when there was nothing
    to do: either they already exist or the engine is not PostgreSQL (the
    portable backend keeps its registry in process).
    """
    if bind.dialect.name != "postgresql":
        logger.debug("%s needs no shared infrastructure", bind.dialect.name)
        return False
    if isinstance(bind, Engine):
        with bind.begin() as conn:
            return init_statelog(conn, namespace)

    if catalog.has_infrastructure(bind, namespace):
        return False
    for stmt in infrastructure(namespace):
        bind.exec_driver_sql(stmt)
    logger.info("Installed state-log infrastructure in schema %s", namespace)
    return True
