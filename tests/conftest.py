"""
Shared test fixtures.

Provides an in-memory SQLite database with all tables, a FastAPI test client
bound to it, and seed helpers for materials, BOMs and control plans.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.db import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from services.bom.registry import activate_revision  # noqa: E402
from services.ledger.service import create_material, receive  # noqa: E402
from services.production.service import complete_production, create_unit  # noqa: E402
from services.qms.control_plans import activate_control_plan  # noqa: E402

ACTOR = "tester"
PROD_DATE = date(2024, 3, 1)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_conn, _record):
        dbapi_conn.execute("PRAGMA foreign_keys = ON")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    """FastAPI TestClient with get_db pointed at the in-memory database."""
    from fastapi.testclient import TestClient

    from main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_material(db):
    """Create a material, optionally with opening stock in one lot."""

    def _make(code, stock=None, **kwargs):
        kwargs.setdefault("name", f"{code} part")
        m = create_material(db, code=code, actor=ACTOR, **kwargs)
        if stock:
            receive(db, m.id, stock, actor=ACTOR, entry_date=date(2024, 1, 1))
        return m

    return _make


@pytest.fixture
def make_bom(db):
    """Activate a BOM revision from (material, quantity_per_unit[, is_critical]) tuples."""

    def _make(model, *lines):
        items = []
        for line in lines:
            material, qpu = line[0], line[1]
            critical = line[2] if len(line) > 2 else False
            items.append({"material_id": material.id, "quantity_per_unit": qpu, "is_critical": critical})
        return activate_revision(db, model, items, actor=ACTOR)

    return _make


@pytest.fixture
def gearbox_a(make_material, make_bom):
    """Model A needs 3 x Z; Z has 10 in stock."""
    z = make_material("Z", stock=10)
    bom = make_bom("A", (z, 3))
    return {"material": z, "bom": bom}


@pytest.fixture
def final_plan(db, gearbox_a):
    """Final inspection plan for model A: a critical diameter, a noise limit and a visual check."""
    return activate_control_plan(
        db,
        "unit",
        "A",
        [
            {"name": "Shaft diameter", "lower_limit": "24.95", "upper_limit": "25.05", "unit": "mm", "is_critical": True},
            {"name": "Noise", "upper_limit": "70", "unit": "dB"},
            {"name": "Visual", "expected_text": "OK"},
        ],
        actor=ACTOR,
    )


@pytest.fixture
def unit_awaiting_inspection(db, gearbox_a):
    unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
    return complete_production(db, unit.id, actor=ACTOR)


def measurements(plan, *values):
    """Pair plan items (in order) with values."""
    return [{"item_id": item.id, "value": value} for item, value in zip(plan.items, values)]
