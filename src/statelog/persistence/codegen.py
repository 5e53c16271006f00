"""
PostgreSQL DDL for state tables.

Two batches live here:

* ``infrastructure()``: created once per database by ``init_statelog``.
  The abstract parent ``<ns>.state``, the generic trigger function
  ``<ns>.save()`` and the ``<ns>.logged`` discovery view.
* ``statements()`` / ``codegen()``: created once per base table. The state
  table, its recorder ``<ns>.save(<base>, <base>)`` and the trigger binding.

Every recorder is named ``save``; PostgreSQL resolves the right one from the
row type of its arguments, so the trigger function never needs a lookup.
"""

from __future__ import annotations

import re
from textwrap import dedent
from typing import List

from sqlalchemy.dialects import postgresql

from ..config import DEFAULT_NAMESPACE
from ..core.naming import StateTarget, TableRef

PARENT = "state"
RECORDER = "save"
HOOK = "statelog"
VIEW = "logged"

_preparer = postgresql.dialect().identifier_preparer


def quote(ident: str) -> str:
    return _preparer.quote(ident)


def qualify(ref: TableRef) -> str:
    if ref.namespace is None:
        return quote(ref.name)
    return f"{quote(ref.namespace)}.{quote(ref.name)}"


def literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _clean(sql: str) -> str:
    # cosmetic: drop the template indentation and trailing blanks
    return re.sub(r"[ ]+$", "", dedent(sql).strip(), flags=re.M)


# ---- shared infrastructure ------------------------------------------------
def infrastructure(namespace: str = DEFAULT_NAMESPACE) -> List[str]:
    ns = quote(namespace)
    parent = f"{ns}.{quote(PARENT)}"
    return [
        _clean(f"CREATE SCHEMA IF NOT EXISTS {ns};"),
        _clean(
            f"""
            COMMENT ON SCHEMA {ns} IS
              'Upgrade any table with state tracking.';
            """
        ),
        _clean(
            f"""
            CREATE TABLE {parent} (
              txid      bigint NOT NULL DEFAULT txid_current(),
              t         timestamptz NOT NULL DEFAULT now(),
              CHECK (FALSE) NO INHERIT
            );
            """
        ),
        _clean(
            f"""
            COMMENT ON TABLE {parent} IS
              'Parent of all state tables.';
            """
        ),
        _clean(f'CREATE INDEX "state/txid" ON {parent} (txid);'),
        _clean(f'CREATE INDEX "state/t" ON {parent} (t);'),
        _clean(
            f"""
            CREATE FUNCTION {ns}.{RECORDER}() RETURNS trigger AS $$
            BEGIN
              CASE TG_OP
              WHEN 'INSERT' THEN PERFORM {ns}.{RECORDER}(NEW, NULL);
              WHEN 'UPDATE' THEN PERFORM {ns}.{RECORDER}(NEW, OLD);
              WHEN 'DELETE' THEN PERFORM {ns}.{RECORDER}(NULL, OLD);
              END CASE;
              RETURN NULL;
            END
            $$ LANGUAGE plpgsql;
            """
        ),
        _clean(
            f"""
            CREATE VIEW {ns}.{VIEW} AS
            SELECT logged.oid::regclass AS logged,
                   states.oid::regclass AS states
              FROM pg_class AS states
              JOIN pg_inherits ON inhrelid = states.oid
              JOIN pg_proc ON prorettype = states.reltype
              JOIN pg_class AS logged ON logged.reltype = proargtypes[1]
             WHERE inhparent = {literal(parent)}::regclass
               AND pronamespace = {literal(ns)}::regnamespace
               AND proname = {literal(RECORDER)};
            """
        ),
    ]


# ---- per base table -------------------------------------------------------
def statements(target: StateTarget, namespace: str = DEFAULT_NAMESPACE) -> List[str]:
    """Ordered DDL installing the state table, recorder and hook for
    ``target.base``. Running it twice fails on the second ``CREATE``."""
    ns = quote(namespace)
    parent = f"{ns}.{quote(PARENT)}"
    base = qualify(target.base)
    state = qualify(target.state)

    if target.with_old:
        payload = "new jsonb,\n  old jsonb"
        insert = (
            f"INSERT INTO {state} (new, old)\n"
            "  VALUES (row_to_json($1)::jsonb, row_to_json($2)::jsonb)"
        )
    else:
        # a delete has no new image, so its payload is NULL in this mode
        payload = "new jsonb"
        insert = f"INSERT INTO {state} (new) VALUES (row_to_json($1)::jsonb)"

    create_table = (
        f"CREATE TABLE {state} (\n"
        f"  LIKE {parent} INCLUDING INDEXES INCLUDING DEFAULTS,\n"
        f"  {payload}\n"
        f") INHERITS ({parent});"
    )
    create_recorder = (
        f"CREATE FUNCTION {ns}.{RECORDER}({base}, {base})\n"
        f"RETURNS {state} AS $f$\n"
        f"  {insert}\n"
        "  RETURNING *\n"
        "$f$ LANGUAGE sql;"
    )
    bind_hook = (
        f"CREATE TRIGGER {quote(HOOK)} AFTER INSERT OR UPDATE OR DELETE\n"
        f"    ON {base}\n"
        f"   FOR EACH ROW EXECUTE PROCEDURE {ns}.{RECORDER}();"
    )
    return [
        f"CREATE SCHEMA IF NOT EXISTS {quote(target.state.namespace or 'public')};",
        create_table,
        create_recorder,
        bind_hook,
    ]


def codegen(target: StateTarget, namespace: str = DEFAULT_NAMESPACE) -> str:
    """The per-table batch as one text, ready to hand to ``psql``."""
    return "\n".join(statements(target, namespace)) + "\n"
