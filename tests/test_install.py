import datetime as dt

import pytest
from sqlalchemy import (
    Column, DateTime, Integer, LargeBinary, String, func, inspect, literal_column, select,
)
from sqlalchemy.exc import OperationalError

from statelog import (
    ConfigurationError, GenerationError, TableRef, associations, install, lookup,
)

USERS = TableRef(name="users")


def _install(engine, cls, registry, **kw):
    with engine.begin() as conn:
        return install(conn, cls, registry=registry, **kw)


def _log(engine, registry, base=USERS):
    table = registry.table_for(base)
    with engine.connect() as conn:
        return conn.execute(select(table).order_by(table.c.txid)).mappings().all()


def _write_read_delete(session, User):
    user = User(id=1, name="ada", email="ada@example.com")
    session.add(user)
    session.commit()
    user.name = "grace"
    session.commit()
    session.delete(user)
    session.commit()


def test_install_reports_state_table(engine, models, registry):
    state = _install(engine, models.User, registry)

    assert state == TableRef(name="users/state")
    assert registry.lookup(USERS) == state
    assert inspect(engine).has_table("users/state")
    assert registry.associations()[0].base == USERS


def test_new_only_mode(engine, models, registry, session):
    _install(engine, models.User, registry)
    _write_read_delete(session, models.User)

    rows = _log(engine, registry)
    assert [r["new"] for r in rows] == [
        {"id": 1, "name": "ada", "email": "ada@example.com"},
        {"id": 1, "name": "grace", "email": "ada@example.com"},
        None,
    ]
    assert "old" not in rows[0]


def test_new_and_old_mode(engine, models, registry, session):
    _install(engine, models.User, registry, with_old=True)
    _write_read_delete(session, models.User)

    ada = {"id": 1, "name": "ada", "email": "ada@example.com"}
    grace = {"id": 1, "name": "grace", "email": "ada@example.com"}
    rows = _log(engine, registry)
    assert [(r["new"], r["old"]) for r in rows] == [(ada, None), (grace, ada), (None, grace)]


def test_log_rows_carry_txid_and_timestamp(engine, models, registry, session):
    _install(engine, models.User, registry)
    session.add_all([models.User(id=1, name="a"), models.User(id=2, name="b")])
    session.commit()
    session.add(models.User(id=3, name="c"))
    session.commit()

    rows = _log(engine, registry)
    assert len(rows) == 3
    assert rows[0]["txid"] == rows[1]["txid"]
    assert rows[2]["txid"] > rows[1]["txid"]
    assert all(isinstance(r["t"], dt.datetime) for r in rows)


def test_documents_are_json(engine, models, registry, session):
    _install(engine, models.Order, registry)
    placed = dt.datetime(2024, 5, 1, 12, 30)
    session.add(models.Order(id=7, item="tea", placed_at=placed))
    session.commit()

    (row,) = _log(engine, registry, TableRef(name="orders"))
    assert row["new"] == {"id": 7, "item": "tea", "placed_at": "2024-05-01T12:30:00"}


def test_no_op_update_is_not_logged(engine, models, registry, session):
    _install(engine, models.User, registry)
    user = models.User(id=1, name="ada")
    session.add(user)
    session.commit()
    user.name = "ada"
    session.commit()

    assert len(_log(engine, registry)) == 1


def test_rollback_discards_write_and_log(engine, models, registry, session):
    _install(engine, models.User, registry)
    table = registry.table_for(USERS)

    session.add(models.User(id=1, name="ada"))
    session.flush()
    assert session.connection().execute(select(func.count()).select_from(table)).scalar() == 1
    session.rollback()

    assert _log(engine, registry) == []
    assert session.query(models.User).count() == 0


def test_failed_log_write_aborts_base_write(engine, models, registry, session):
    _install(engine, models.User, registry)
    with engine.begin() as conn:
        conn.exec_driver_sql('DROP TABLE "users/state"')

    session.add(models.User(id=1, name="ada"))
    with pytest.raises(OperationalError):
        session.commit()
    session.rollback()
    assert session.query(models.User).count() == 0


def test_second_install_fails(engine, models, registry):
    _install(engine, models.User, registry)
    with pytest.raises(GenerationError):
        _install(engine, models.User, registry, with_old=True)
    with pytest.raises(GenerationError):
        _install(engine, models.User, registry, state_tab="users_log")
    assert len(registry.log_tables()) == 1


def test_existing_table_fails_generation(engine, models, registry):
    with engine.begin() as conn:
        conn.exec_driver_sql('CREATE TABLE "users/state" (x INTEGER)')

    with pytest.raises(GenerationError):
        _install(engine, models.User, registry)
    assert registry.lookup(USERS) is None
    assert registry.log_tables() == []


@pytest.mark.parametrize("with_old", [False, True])
def test_shadowing_base_table_is_rejected(engine, models, registry, with_old):
    before = set(inspect(engine).get_table_names())
    with pytest.raises(ConfigurationError):
        _install(engine, models.User, registry, state_tab="users", with_old=with_old)
    assert set(inspect(engine).get_table_names()) == before
    assert len(registry) == 0


def test_plain_table_needs_mapped_class(engine, models, registry):
    with pytest.raises(ConfigurationError):
        _install(engine, models.User.__table__, registry)


def test_every_log_table_is_discoverable(engine, models, registry):
    _install(engine, models.User, registry)
    _install(engine, models.Order, registry, with_old=True)

    assert {t.name for t in registry.log_tables()} == {"users/state", "orders/state"}
    assert len(registry.log_tables()) == len(registry.associations()) == 2


def test_uninstrumented_table_is_a_discovery_miss(engine, models, registry, session):
    assert registry.lookup(TableRef(name="orders")) is None

    _install(engine, models.User, registry)
    registry.discard(USERS)
    session.add(models.User(id=1, name="ada"))
    session.commit()

    assert registry.lookup(USERS) is None
    with engine.connect() as conn:
        assert conn.exec_driver_sql('SELECT count(*) FROM "users/state"').scalar() == 0


def test_sql_computed_columns_are_logged(engine, models, registry, session):
    class Note(models.Base):
        __tablename__ = "notes"

        id = Column(Integer, primary_key=True)
        title = Column(String)
        rev = Column(Integer, default=1, onupdate=literal_column("rev", Integer) + 1)
        updated_at = Column(DateTime, onupdate=func.current_timestamp())

    models.Base.metadata.create_all(engine)
    _install(engine, Note, registry, with_old=True)

    note = Note(id=1, title="a")
    session.add(note)
    session.commit()
    note.title = "b"
    session.commit()

    rows = _log(engine, registry, TableRef(name="notes"))
    assert rows[0]["new"] == {"id": 1, "title": "a", "rev": 1, "updated_at": None}
    updated = rows[1]["new"]
    assert updated["title"] == "b"
    assert updated["rev"] == 2
    assert updated["updated_at"] is not None
    assert rows[1]["old"] == rows[0]["new"]


def test_binary_columns_render_as_hex(engine, models, registry, session):
    class Blob(models.Base):
        __tablename__ = "blobs"

        id = Column(Integer, primary_key=True)
        data = Column(LargeBinary)

    models.Base.metadata.create_all(engine)
    _install(engine, Blob, registry)

    session.add(Blob(id=1, data=b"\xff\x00"))
    session.commit()

    (row,) = _log(engine, registry, TableRef(name="blobs"))
    assert row["new"] == {"id": 1, "data": "\\xff00"}


def test_rolled_back_install_is_forgotten(engine, models, registry):
    with engine.connect() as conn:
        conn.begin()
        assert install(conn, models.User, registry=registry) == TableRef(name="users/state")
        conn.rollback()

    assert registry.lookup(USERS) is None
    assert registry.log_tables() == []
    assert len(registry) == 0


def test_committed_install_survives_later_rollback(engine, models, registry):
    with engine.connect() as conn:
        with conn.begin():
            install(conn, models.User, registry=registry)
        conn.begin()
        conn.rollback()

    assert registry.lookup(USERS) == TableRef(name="users/state")


def test_lookup_and_associations_helpers(engine, models, registry):
    _install(engine, models.User, registry)

    with engine.connect() as conn:
        assert lookup(conn, models.User, registry=registry) == TableRef(name="users/state")
        assert lookup(conn, "orders", registry=registry) is None
        (assoc,) = associations(conn, registry=registry)
    assert (assoc.base, assoc.state) == (USERS, TableRef(name="users/state"))
