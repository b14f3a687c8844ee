"""Tests for the material ledger and receiving."""

import re
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from app.core.errors import InsufficientStockError, NotFoundError, ValidationError
from app.db.models.materials import StockLot, StockMovement
from services.ledger.receiving import list_receipts, register_receipt
from services.ledger.service import consume, create_material, low_stock, reconcile, receive
from services.quarantine.workflow import quarantine_lot

from conftest import ACTOR


def _lot_sum(db, material_id):
    return sum((lot.remaining_quantity for lot in db.query(StockLot).filter(StockLot.material_id == material_id)), Decimal(0))


@pytest.fixture
def row_locks(db):
    """Tables locked with SELECT ... FOR UPDATE, in the order the locks are taken."""
    tables = []

    def _capture(state):
        if not state.is_select:
            return
        sql = str(state.statement.compile(dialect=postgresql.dialect()))
        if "FOR UPDATE" in sql:
            tables.append(re.search(r"FROM (\w+)", sql).group(1))

    event.listen(db, "do_orm_execute", _capture)
    yield tables
    event.remove(db, "do_orm_execute", _capture)


class TestReceive:
    def test_creates_full_lot_and_raises_stock(self, db, make_material):
        m = make_material("BRG-1")
        lot = receive(db, m.id, "12.5", actor=ACTOR, lot_number="L-1", invoice_number="INV-9")
        assert lot.quantity == Decimal("12.5")
        assert lot.remaining_quantity == Decimal("12.5")
        assert m.current_stock == Decimal("12.5")
        assert lot.source == "receipt"

    def test_appends_receipt_movement(self, db, make_material):
        m = make_material("BRG-1")
        lot = receive(db, m.id, 4, actor=ACTOR)
        mv = db.query(StockMovement).filter(StockMovement.lot_id == lot.id).one()
        assert mv.movement_type == "RECEIPT"
        assert mv.quantity == Decimal(4)
        assert mv.actor == ACTOR

    @pytest.mark.parametrize("qty", [0, -1, "abc", None])
    def test_rejects_bad_quantity(self, db, make_material, qty):
        m = make_material("BRG-1")
        with pytest.raises(ValidationError):
            receive(db, m.id, qty, actor=ACTOR)
        assert reconcile(db, m.id)["lots_remaining"] == 0

    def test_unknown_material(self, db):
        with pytest.raises(NotFoundError):
            receive(db, "missing", 1, actor=ACTOR)


class TestConsume:
    def test_decrements_lot_and_aggregate(self, db, make_material):
        m = make_material("GEAR", stock=10)
        lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
        consume(db, lot.id, 4, actor=ACTOR, material_id=m.id)
        assert lot.remaining_quantity == Decimal(6)
        assert m.current_stock == Decimal(6)

    def test_more_than_remaining_is_refused(self, db, make_material):
        m = make_material("GEAR", stock=3)
        lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
        with pytest.raises(InsufficientStockError) as exc:
            consume(db, lot.id, 5, actor=ACTOR)
        assert exc.value.available == Decimal(3)
        db.refresh(lot)
        assert lot.remaining_quantity == Decimal(3)

    def test_locks_material_before_lot(self, db, make_material, row_locks):
        m = make_material("GEAR", stock=10)
        lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
        consume(db, lot.id, 4, actor=ACTOR, material_id=m.id)
        assert row_locks == ["mat_material", "mat_stock_lot"]
        assert lot.remaining_quantity == Decimal(6)

    def test_quarantine_uses_the_same_lock_order(self, db, make_material, row_locks):
        m = make_material("GEAR", stock=10)
        lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
        quarantine_lot(db, lot.id, 2, "pitting", actor=ACTOR)
        assert row_locks.index("mat_material") < row_locks.index("mat_stock_lot")

    def test_lot_must_belong_to_material(self, db, make_material):
        a = make_material("A1", stock=5)
        b = make_material("B1", stock=5)
        lot_a = db.query(StockLot).filter(StockLot.material_id == a.id).one()
        with pytest.raises(ValidationError):
            consume(db, lot_a.id, 1, actor=ACTOR, material_id=b.id)

    def test_stock_equals_lot_sum_after_mixed_sequence(self, db, make_material):
        m = make_material("SHAFT")
        l1 = receive(db, m.id, 10, actor=ACTOR, entry_date=date(2024, 1, 1))
        l2 = receive(db, m.id, "7.25", actor=ACTOR, entry_date=date(2024, 1, 2))
        consume(db, l1.id, 3, actor=ACTOR)
        consume(db, l2.id, "7.25", actor=ACTOR)
        receive(db, m.id, 1, actor=ACTOR)
        consume(db, l1.id, 7, actor=ACTOR)

        db.expire_all()
        result = reconcile(db, m.id)
        assert result["consistent"] is True
        assert Decimal(result["current_stock"]) == _lot_sum(db, m.id) == Decimal(1)


class TestQuarantineLot:
    def test_moves_stock_out_of_the_lot(self, db, make_material):
        m = make_material("SEAL", stock=8)
        lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
        item = quarantine_lot(db, lot.id, 3, "corrosion found", actor=ACTOR)
        assert item.status == "quarantined"
        assert item.lot_id == lot.id
        assert lot.remaining_quantity == Decimal(5)
        assert m.current_stock == Decimal(5)
        types = [mv.movement_type for mv in db.query(StockMovement).filter(StockMovement.lot_id == lot.id)]
        assert sorted(types) == ["QUARANTINE", "RECEIPT"]


class TestMaterials:
    def test_duplicate_code(self, db, make_material):
        make_material("DUP")
        with pytest.raises(ValidationError):
            create_material(db, code="DUP", name="again", actor=ACTOR)

    def test_unknown_unit(self, db):
        with pytest.raises(ValidationError):
            create_material(db, code="X", name="x", unit="barrel", actor=ACTOR)

    def test_low_stock_lists_critical_first(self, db, make_material):
        make_material("N1", stock=1, min_stock=5)
        make_material("C1", stock=2, min_stock=5, is_critical=True)
        make_material("OK1", stock=50, min_stock=5)
        make_material("NOMIN", stock=0)
        assert [m.code for m in low_stock(db)] == ["C1", "N1"]


class TestReceiving:
    def test_receipt_does_not_touch_stock(self, db, make_material):
        m = make_material("HOUSING")
        r = register_receipt(db, m.id, 20, actor=ACTOR, invoice_number="INV-1", lot_number="LOT-1")
        assert r.status == "received"
        assert m.current_stock == 0
        assert db.query(StockLot).filter(StockLot.material_id == m.id).count() == 0
        assert [x.id for x in list_receipts(db, status="received")] == [r.id]
