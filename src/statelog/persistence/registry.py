"""
In-process Association Registry.

Maps a base table's identity to its state table and recorder. Entries are
only added once the state table exists, so ``log_tables()`` lists exactly the
successfully instrumented tables.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import MetaData, Table

from ..core.hook import ChangeHook
from ..core.naming import TableRef
from ..core.recorder import Recorder
from .models import version_log


class Association(BaseModel):
    base: TableRef
    state: TableRef

    model_config = {"frozen": True}


class _Entry:
    __slots__ = ("cls", "table", "recorder")

    def __init__(self, cls: type, table: Table, recorder: Recorder):
        self.cls = cls
        self.table = table
        self.recorder = recorder


class AssociationRegistry:
    def __init__(self, metadata: Optional[MetaData] = None):
        self.metadata = metadata if metadata is not None else MetaData()
        self._entries: Dict[TableRef, _Entry] = {}
        self.hook = ChangeHook(self)

    def __contains__(self, base: TableRef) -> bool:
        return base in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, base: TableRef, cls: type, table: Table, recorder: Recorder) -> None:
        if base in self._entries:
            raise KeyError(f"{base} already has a recorder")
        self._entries[base] = _Entry(cls, table, recorder)

    def discard(self, base: TableRef) -> None:
        """Forget ``base``; its hook keeps firing but no longer records."""
        self._entries.pop(base, None)

    # ---- lookups --------------------------------------------------------
    def recorder_for(self, base: TableRef) -> Optional[Recorder]:
        entry = self._entries.get(base)
        return entry.recorder if entry else None

    def table_for(self, base: TableRef) -> Optional[Table]:
        entry = self._entries.get(base)
        return entry.table if entry else None

    def lookup(self, base: TableRef) -> Optional[TableRef]:
        entry = self._entries.get(base)
        if entry is None or version_log(entry.table) is None:
            return None
        return TableRef.of(entry.table)

    def associations(self) -> List[Association]:
        return [
            Association(base=base, state=TableRef.of(entry.table))
            for base, entry in self._entries.items()
        ]

    def log_tables(self) -> List[Table]:
        """Every table in this registry's metadata carrying the log marker."""
        return [t for t in self.metadata.tables.values() if version_log(t) is not None]


# Global registry instance
registry = AssociationRegistry()
