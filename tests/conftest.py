"""Pytest configuration and fixtures."""

from types import SimpleNamespace

import pytest
from sqlalchemy import Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from statelog import AssociationRegistry


@pytest.fixture(scope="function")
def engine():
    """SQLite in-memory engine shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def models(engine):
    """Freshly declared classes, so hooks never leak between tests."""
    Base = declarative_base()

    class User(Base):
        __tablename__ = "users"

        id = Column(Integer, primary_key=True)
        name = Column(String, nullable=False)
        email = Column(String)

    class Order(Base):
        __tablename__ = "orders"

        id = Column(Integer, primary_key=True)
        item = Column(String, nullable=False)
        placed_at = Column(DateTime)

    Base.metadata.create_all(engine)
    return SimpleNamespace(Base=Base, User=User, Order=Order)


@pytest.fixture
def registry():
    return AssociationRegistry()


@pytest.fixture
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False)
    with Session() as s:
        yield s
