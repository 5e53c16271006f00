"""
statelog.runtime  ──  A thin façade so services can instrument tables from
DBOS transactions without importing dbos.DBOS directly.

Usage pattern in user code
--------------------------
    from statelog.runtime import Statelog, install_table

    app = Statelog.create_app("statelog-svc", db_url="postgresql://...")

    install_table("public.orders", with_old=True)   # runs as a DBOS transaction
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Optional

from dbos import DBOS  # the only direct dbos import
from fastapi import FastAPI
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .bootstrap import init_statelog
from .config import DEFAULT_NAMESPACE
from .installer import associations, install

logger = logging.getLogger(__name__)


class Statelog(DBOS):  # inherit all decorators & queue API
    """
    Drop-in replacement for DBOS in downstream code, keeping one private
    singleton plus the engine used for catalog reads.
    """

    _singleton: ClassVar[Optional["Statelog"]] = None
    _engine: ClassVar[Optional[Engine]] = None
    namespace: ClassVar[str] = DEFAULT_NAMESPACE

    # ---------- one-shot initialiser ----------
    @classmethod
    def init(
        cls,
        *,
        name: str,
        database_url: str,
        fastapi: Optional[FastAPI] = None,
        namespace: str = DEFAULT_NAMESPACE,
        **extra_cfg: Any,
    ) -> "Statelog":
        if cls._singleton is None:
            cfg = {"name": name, "database_url": database_url, **extra_cfg}
            cls._singleton = cls(config=cfg, fastapi=fastapi)
            cls._engine = create_engine(database_url, pool_pre_ping=True)
            cls.namespace = namespace

            init_statelog(cls._engine, namespace)
        return cls._singleton

    @classmethod
    def instance(cls) -> "Statelog":
        if cls._singleton is None:
            raise RuntimeError("Statelog.init() has not been called")
        return cls._singleton

    @classmethod
    def engine(cls) -> Engine:
        if cls._engine is None:
            raise RuntimeError("Statelog.init() has not been called")
        return cls._engine

    @classmethod
    def create_app(
        cls,
        name: str,
        *,
        db_url: str,
        namespace: str = DEFAULT_NAMESPACE,
        **fastapi_kwargs: Any,
    ) -> FastAPI:
        """
        One-liner for web apps:
            app = Statelog.create_app("svc-name", db_url=URL)
        """
        app = FastAPI(**fastapi_kwargs)
        cls.init(name=name, database_url=db_url, fastapi=app, namespace=namespace)

        @app.get("/")
        def health() -> Dict[str, str]:
            return {"status": "running"}

        @app.get("/logged")
        def logged() -> List[Dict[str, str]]:
            with cls.engine().connect() as conn:
                return [
                    {"base": str(a.base), "state": str(a.state)}
                    for a in associations(conn, namespace=cls.namespace)
                ]

        return app


@DBOS.transaction()
def install_table(
    base: str,
    state_schema: Optional[str] = None,
    state_tab: Optional[str] = None,
    with_old: bool = False,
) -> Optional[str]:
    """Instrument ``base`` on the ambient DBOS session; returns the state table."""
    return install_on_session(
        DBOS.sql_session, base, state_schema, state_tab, with_old
    )


def install_on_session(
    session: Session,
    base: Any,
    state_schema: Optional[str] = None,
    state_tab: Optional[str] = None,
    with_old: bool = False,
) -> Optional[str]:
    state = install(
        session.connection(), base, state_schema, state_tab, with_old,
        namespace=Statelog.namespace,
    )
    return str(state) if state is not None else None
