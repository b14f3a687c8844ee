"""Tests for unit creation, bulk allocation and manual kitting."""

from datetime import date
from decimal import Decimal

import pytest

from app.core.errors import GuardViolationError, InsufficientStockError, NotFoundError, ShortageError, ValidationError
from app.db.models.materials import StockLot, StockMovement
from app.db.models.production import PartMapping, Unit
from services.ledger.service import receive, reconcile
from services.production.allocation import kitting_status, map_part
from services.production.lifecycle import scrap
from services.production.service import create_unit

from conftest import ACTOR, PROD_DATE


def _lots(db, material):
    return (
        db.query(StockLot)
        .filter(StockLot.material_id == material.id)
        .order_by(StockLot.entry_date.asc(), StockLot.created_at.asc())
        .all()
    )


class TestBulkAllocation:
    def test_three_units_then_shortage(self, db, gearbox_a):
        z = gearbox_a["material"]
        units = [create_unit(db, "A", PROD_DATE, actor=ACTOR) for _ in range(3)]
        assert all(u.parts_mapping_complete for u in units)
        db.refresh(z)
        assert z.current_stock == Decimal(1)

        with pytest.raises(ShortageError) as exc:
            create_unit(db, "A", PROD_DATE, actor=ACTOR)
        [short] = exc.value.items
        assert short["material_id"] == z.id
        assert short["shortfall"] == Decimal(2)

    def test_shortage_leaves_ledger_and_units_untouched(self, db, make_material, make_bom):
        x = make_material("X", stock=1)
        y = make_material("Y", stock=10)
        w = make_material("W", stock=0)
        make_bom("B", (x, 2), (y, 5), (w, 1))
        movements_before = db.query(StockMovement).count()

        with pytest.raises(ShortageError) as exc:
            create_unit(db, "B", PROD_DATE, actor=ACTOR)

        assert {i["material_code"]: i["shortfall"] for i in exc.value.items} == {"X": Decimal(1), "W": Decimal(1)}
        assert db.query(Unit).count() == 0
        assert db.query(PartMapping).count() == 0
        assert db.query(StockMovement).count() == movements_before
        db.refresh(y)
        assert y.current_stock == Decimal(10)

    def test_failed_creation_does_not_burn_a_serial(self, db, gearbox_a):
        z = gearbox_a["material"]
        for _ in range(3):
            create_unit(db, "A", PROD_DATE, actor=ACTOR)
        with pytest.raises(ShortageError):
            create_unit(db, "A", PROD_DATE, actor=ACTOR)
        receive(db, z.id, 5, actor=ACTOR)
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        assert unit.sequence_number == 4
        assert unit.serial_number.endswith("-A-004")

    def test_consumes_oldest_lots_first(self, db, make_material, make_bom):
        g = make_material("G")
        newer = receive(db, g.id, 5, actor=ACTOR, entry_date=date(2024, 2, 1), lot_number="NEW")
        older = receive(db, g.id, 2, actor=ACTOR, entry_date=date(2024, 1, 1), lot_number="OLD")
        make_bom("C", (g, 4))

        unit = create_unit(db, "C", PROD_DATE, actor=ACTOR)
        mappings = db.query(PartMapping).filter(PartMapping.unit_id == unit.id).all()
        assert {m.lot_id: m.quantity for m in mappings} == {older.id: Decimal(2), newer.id: Decimal(2)}
        assert older.remaining_quantity == 0
        assert newer.remaining_quantity == Decimal(3)
        assert reconcile(db, g.id)["consistent"] is True

    def test_unit_is_bound_to_active_revision(self, db, gearbox_a, make_bom):
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        make_bom("A", (gearbox_a["material"], 1))
        db.refresh(unit)
        assert unit.bom_revision_id == gearbox_a["bom"].id
        assert unit.status == "producing"

    def test_no_active_bom(self, db):
        with pytest.raises(NotFoundError):
            create_unit(db, "NOPE", PROD_DATE, actor=ACTOR)

    def test_unknown_allocation_mode(self, db, gearbox_a):
        with pytest.raises(ValidationError):
            create_unit(db, "A", PROD_DATE, actor=ACTOR, allocation="magic")


@pytest.fixture
def kit(db, make_material, make_bom):
    """Model K: 2 x housing, 1 x seal; each material in one lot. Unit created for manual kitting."""
    housing = make_material("HSG", stock=5)
    seal = make_material("SEAL", stock=3)
    make_bom("K", (housing, 2), (seal, 1))
    unit = create_unit(db, "K", PROD_DATE, actor=ACTOR, allocation="manual")
    return {
        "unit": unit,
        "housing": housing,
        "seal": seal,
        "housing_lot": _lots(db, housing)[0],
        "seal_lot": _lots(db, seal)[0],
    }


class TestManualKitting:
    def test_manual_unit_consumes_nothing_up_front(self, db, kit):
        assert kit["unit"].parts_mapping_complete is False
        assert kit["housing"].current_stock == Decimal(5)

    def test_completes_only_when_every_item_is_covered(self, db, kit):
        unit = kit["unit"]
        map_part(db, unit.id, kit["housing"].id, kit["housing_lot"].id, 1, actor=ACTOR)
        map_part(db, unit.id, kit["seal"].id, kit["seal_lot"].id, 1, actor=ACTOR)
        assert unit.parts_mapping_complete is False

        map_part(db, unit.id, kit["housing"].id, kit["housing_lot"].id, 1, actor=ACTOR)
        assert unit.parts_mapping_complete is True

        status = kitting_status(db, unit.id)
        assert all(it["complete"] for it in status["items"])
        assert kit["housing"].current_stock == Decimal(3)

    def test_over_allocation_is_allowed(self, db, kit):
        unit = kit["unit"]
        map_part(db, unit.id, kit["seal"].id, kit["seal_lot"].id, 3, actor=ACTOR)
        status = {it["material_id"]: it for it in kitting_status(db, unit.id)["items"]}
        assert status[kit["seal"].id]["mapped"] == Decimal(3)

    def test_more_than_lot_remaining(self, db, kit):
        with pytest.raises(InsufficientStockError):
            map_part(db, kit["unit"].id, kit["seal"].id, kit["seal_lot"].id, 4, actor=ACTOR)
        assert db.query(PartMapping).count() == 0

    def test_material_outside_bom(self, db, kit, make_material):
        other = make_material("OTHER", stock=2)
        with pytest.raises(ValidationError):
            map_part(db, kit["unit"].id, other.id, _lots(db, other)[0].id, 1, actor=ACTOR)

    def test_lot_of_another_material(self, db, kit):
        with pytest.raises(ValidationError):
            map_part(db, kit["unit"].id, kit["seal"].id, kit["housing_lot"].id, 1, actor=ACTOR)

    def test_not_allowed_after_scrap(self, db, kit):
        scrap(db, kit["unit"].id, "dropped", actor=ACTOR)
        with pytest.raises(GuardViolationError):
            map_part(db, kit["unit"].id, kit["seal"].id, kit["seal_lot"].id, 1, actor=ACTOR)

    def test_completion_is_sticky(self, db, kit):
        unit = kit["unit"]
        map_part(db, unit.id, kit["housing"].id, kit["housing_lot"].id, 2, actor=ACTOR)
        map_part(db, unit.id, kit["seal"].id, kit["seal_lot"].id, 1, actor=ACTOR)
        assert unit.parts_mapping_complete is True
        map_part(db, unit.id, kit["seal"].id, kit["seal_lot"].id, 1, actor=ACTOR)
        db.refresh(unit)
        assert unit.parts_mapping_complete is True
