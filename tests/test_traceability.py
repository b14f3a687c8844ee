import pytest

from app.core.errors import NotFoundError
from app.db.models.materials import StockLot
from services.production.service import create_unit
from services.quarantine.workflow import quarantine_lot
from services.traceability.service import find_unit_by_serial, trace_lot, trace_unit

from conftest import ACTOR, PROD_DATE


def test_unit_trace_lists_lots_consumed(db, gearbox_a):
    unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
    trace = trace_unit(db, unit.id)
    assert trace["unit"]["serial_number"] == unit.serial_number
    [part] = trace["parts"]
    assert part["material_code"] == "Z"
    assert part["mode"] == "bulk"
    assert trace["shipment"] is None


def test_lot_trace_reaches_units_and_quarantine(db, gearbox_a):
    lot = db.query(StockLot).filter(StockLot.material_id == gearbox_a["material"].id).one()
    u1 = create_unit(db, "A", PROD_DATE, actor=ACTOR)
    u2 = create_unit(db, "A", PROD_DATE, actor=ACTOR)
    quarantine_lot(db, lot.id, 1, "surface rust", actor=ACTOR)

    trace = trace_lot(db, lot.id)
    assert {u["serial_number"] for u in trace["units"]} == {u1.serial_number, u2.serial_number}
    assert len(trace["quarantine"]) == 1
    assert {mv["type"] for mv in trace["movements"]} == {"RECEIPT", "CONSUMPTION", "QUARANTINE"}


def test_unknown_serial(db):
    with pytest.raises(NotFoundError):
        find_unit_by_serial(db, "20240101-A-999")
