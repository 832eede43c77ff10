from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import Base, StaffBase, upsert_staff  # noqa: E402
from policy import ensure_default_policy  # noqa: E402


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def memory_db(monkeypatch):
    """Separate in-memory catering and staff stores patched over the on-disk ones."""
    catering_engine = _memory_engine()
    staff_engine = _memory_engine()
    Base.metadata.create_all(catering_engine)
    StaffBase.metadata.create_all(staff_engine)
    session_factory = sessionmaker(bind=catering_engine, expire_on_commit=False, future=True)
    staff_factory = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)
    monkeypatch.setattr(db, "catering_engine", catering_engine)
    monkeypatch.setattr(db, "staff_engine", staff_engine)
    monkeypatch.setattr(db, "SessionLocal", session_factory)
    monkeypatch.setattr(db, "StaffSessionLocal", staff_factory)
    ensure_default_policy(session_factory)
    try:
        yield session_factory, staff_factory
    finally:
        catering_engine.dispose()
        staff_engine.dispose()


@pytest.fixture()
def add_staff(memory_db):
    _, staff_factory = memory_db

    def _add(name: str, positions, status: str = "active") -> int:
        with staff_factory() as session:
            return upsert_staff(session, {"name": name, "positions": list(positions), "status": status})

    return _add
