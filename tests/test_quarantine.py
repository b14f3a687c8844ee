from decimal import Decimal

import pytest

from app.core.errors import GuardViolationError, InsufficientStockError, ValidationError
from app.db.models.materials import StockLot, StockMovement
from services.ledger.service import reconcile
from services.quarantine.workflow import decide, open_item, quarantine_lot

from conftest import ACTOR


@pytest.fixture
def quarantined(db, make_material):
    m = make_material("BRG-6205", stock=20)
    lot = db.query(StockLot).filter(StockLot.material_id == m.id).one()
    item = quarantine_lot(db, lot.id, 6, "pitting on races", actor=ACTOR)
    return {"material": m, "lot": lot, "item": item}


class TestDecide:
    def test_release_creates_a_fresh_lot(self, db, quarantined):
        item = decide(db, quarantined["item"].id, "released", actor=ACTOR, note="re-measured, fine")
        assert item.status == "released"
        assert item.decided_by == ACTOR

        new_lot = db.query(StockLot).filter(StockLot.id == item.released_lot_id).one()
        assert new_lot.id != quarantined["lot"].id
        assert new_lot.remaining_quantity == Decimal(6)
        assert new_lot.source == "quarantine_release"
        assert new_lot.source_ref == item.id

        assert quarantined["lot"].remaining_quantity == Decimal(14)
        assert quarantined["material"].current_stock == Decimal(20)
        assert reconcile(db, quarantined["material"].id)["consistent"] is True

    def test_return_leaves_the_ledger_alone(self, db, quarantined):
        before = db.query(StockMovement).count()
        item = decide(db, quarantined["item"].id, "returned", actor=ACTOR)
        assert item.status == "returned"
        assert item.released_lot_id is None
        assert db.query(StockMovement).count() == before
        assert quarantined["material"].current_stock == Decimal(14)

    def test_decided_once(self, db, quarantined):
        decide(db, quarantined["item"].id, "returned", actor=ACTOR)
        with pytest.raises(GuardViolationError):
            decide(db, quarantined["item"].id, "released", actor=ACTOR)

    def test_unknown_disposition(self, db, quarantined):
        with pytest.raises(ValidationError):
            decide(db, quarantined["item"].id, "scrapped", actor=ACTOR)


class TestOpen:
    def test_reason_is_required(self, db, make_material):
        m = make_material("X")
        with pytest.raises(ValidationError):
            open_item(db, material_id=m.id, quantity=1, reason="", actor=ACTOR)

    def test_cannot_quarantine_more_than_the_lot_holds(self, db, quarantined):
        with pytest.raises(InsufficientStockError):
            quarantine_lot(db, quarantined["lot"].id, 15, "more", actor=ACTOR)
        db.refresh(quarantined["lot"])
        assert quarantined["lot"].remaining_quantity == Decimal(14)
