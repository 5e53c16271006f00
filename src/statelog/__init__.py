"""
Public surface for statelog.
Importing this module does **not** touch the database; call
``statelog.install(connection, table)`` to instrument a table (and, on
PostgreSQL, ``statelog.init_statelog(engine)`` once beforehand).
"""

from .bootstrap import init_statelog
from .core.naming import StateTarget, TableRef, resolve_target
from .errors import ConfigurationError, GenerationError, StatelogError
from .installer import associations, install, lookup
from .persistence.codegen import codegen
from .persistence.registry import Association, AssociationRegistry, registry

__all__ = [
    "Association",
    "associations",
    "AssociationRegistry",
    "ConfigurationError",
    "GenerationError",
    "StateTarget",
    "StatelogError",
    "TableRef",
    "codegen",
    "init_statelog",
    "install",
    "lookup",
    "registry",
    "resolve_target",
]
