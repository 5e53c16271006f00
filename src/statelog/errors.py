"""
Error taxonomy for statelog.

Database errors raised by SQLAlchemy are never swallowed; generation failures
wrap them (``raise GenerationError(...) from exc``) and write-path failures
propagate untouched.
"""


class StatelogError(Exception):
    """Base class for every error raised by statelog itself."""


class ConfigurationError(StatelogError, ValueError):
    """The requested log location or base table cannot be instrumented."""


class GenerationError(StatelogError):
    """Creating the state table, recorder or hook binding failed."""
