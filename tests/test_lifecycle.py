"""Tests for the unit state machine, shipments and vehicle assembly."""

import pytest

from app.core.errors import GuardViolationError, ValidationError
from app.db.models.production import ShipmentLine
from app.db.models.security_audit import AuditLog
from app.events.outbox import OutboxEvent
from services.production.lifecycle import allowed_targets, scrap, transition
from services.production.service import create_unit, record_vehicle_assembly, ship_units
from services.qms.inspection import submit_inspection

from conftest import ACTOR, PROD_DATE, measurements


@pytest.fixture
def in_stock_unit(db, final_plan, unit_awaiting_inspection):
    submit_inspection(
        db,
        target_type="unit",
        target_id=unit_awaiting_inspection.id,
        control_plan_id=final_plan.id,
        measurements=measurements(final_plan, "25.00", "60", "OK"),
        draft=False,
        actor=ACTOR,
    )
    assert unit_awaiting_inspection.status == "in_stock"
    return unit_awaiting_inspection


class TestTransitions:
    def test_complete_production_stamps_end(self, db, unit_awaiting_inspection):
        assert unit_awaiting_inspection.status == "pending_final_inspection"
        assert unit_awaiting_inspection.production_end is not None

    def test_in_stock_cannot_go_back_to_producing(self, db, in_stock_unit):
        with pytest.raises(GuardViolationError) as exc:
            transition(db, in_stock_unit.id, "producing", actor=ACTOR)
        assert exc.value.current_state == "in_stock"
        assert exc.value.target_state == "producing"
        db.refresh(in_stock_unit)
        assert in_stock_unit.status == "in_stock"

    def test_in_stock_needs_an_ok_inspection(self, db, unit_awaiting_inspection):
        with pytest.raises(GuardViolationError):
            transition(db, unit_awaiting_inspection.id, "in_stock", actor=ACTOR)

    def test_shipped_needs_a_shipment(self, db, in_stock_unit):
        with pytest.raises(GuardViolationError):
            transition(db, in_stock_unit.id, "shipped", actor=ACTOR)

    def test_unknown_status(self, db, gearbox_a):
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        with pytest.raises(ValidationError):
            transition(db, unit.id, "lost", actor=ACTOR)

    def test_records_audit_and_event(self, db, gearbox_a):
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        transition(db, unit.id, "pending_final_inspection", actor=ACTOR)

        entry = db.query(AuditLog).filter(AuditLog.entity_id == unit.id, AuditLog.action == "UNIT_STATUS_CHANGE").one()
        assert entry.actor == ACTOR
        assert entry.payload["from"] == "producing"
        assert entry.payload["to"] == "pending_final_inspection"
        topics = [e.topic for e in db.query(OutboxEvent).order_by(OutboxEvent.created_at)]
        assert "UnitStatusChanged" in topics

    def test_allowed_targets(self):
        assert set(allowed_targets("producing")) == {"pending_final_inspection", "scrapped"}
        assert allowed_targets("installed") == []
        assert allowed_targets("scrapped") == []


class TestScrap:
    def test_requires_reason(self, db, gearbox_a):
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        with pytest.raises(ValidationError):
            scrap(db, unit.id, "  ", actor=ACTOR)

    def test_from_any_live_state(self, db, in_stock_unit):
        scrap(db, in_stock_unit.id, "housing cracked", actor=ACTOR)
        assert in_stock_unit.status == "scrapped"

    def test_records_prior_state_and_reason(self, db, in_stock_unit):
        scrap(db, in_stock_unit.id, "housing cracked", actor=ACTOR)
        entries = [
            e
            for e in db.query(AuditLog).filter(AuditLog.entity_id == in_stock_unit.id, AuditLog.action == "UNIT_STATUS_CHANGE")
            if e.payload["to"] == "scrapped"
        ]
        assert len(entries) == 1
        assert entries[0].entity_type == "Unit"
        assert entries[0].actor == ACTOR
        assert entries[0].payload == {"from": "in_stock", "to": "scrapped", "reason": "housing cracked"}

    def test_scrapped_is_terminal(self, db, gearbox_a):
        unit = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        scrap(db, unit.id, "dropped", actor=ACTOR)
        with pytest.raises(GuardViolationError):
            scrap(db, unit.id, "again", actor=ACTOR)
        with pytest.raises(GuardViolationError):
            transition(db, unit.id, "producing", actor=ACTOR)


class TestShipmentAndAssembly:
    def test_ship_then_install(self, db, in_stock_unit):
        shipment = ship_units(db, [in_stock_unit.id], customer_name="Truck Works", actor=ACTOR, waybill_number="WB-1")
        assert in_stock_unit.status == "shipped"
        assert [ln.unit_id for ln in shipment.lines] == [in_stock_unit.id]

        va = record_vehicle_assembly(db, in_stock_unit.id, vin_number="WDB9634031L123456", actor=ACTOR)
        assert va.unit_id == in_stock_unit.id
        assert in_stock_unit.status == "installed"

        with pytest.raises(GuardViolationError):
            scrap(db, in_stock_unit.id, "too late", actor=ACTOR)

    def test_batch_is_all_or_nothing(self, db, in_stock_unit, gearbox_a):
        other = create_unit(db, "A", PROD_DATE, actor=ACTOR)
        with pytest.raises(GuardViolationError):
            ship_units(db, [in_stock_unit.id, other.id], customer_name="Truck Works", actor=ACTOR)
        db.refresh(in_stock_unit)
        assert in_stock_unit.status == "in_stock"
        assert db.query(ShipmentLine).count() == 0

    def test_duplicate_unit_in_batch(self, db, in_stock_unit):
        with pytest.raises(ValidationError):
            ship_units(db, [in_stock_unit.id, in_stock_unit.id], customer_name="Truck Works", actor=ACTOR)

    def test_assembly_needs_shipped_unit(self, db, in_stock_unit):
        with pytest.raises(GuardViolationError):
            record_vehicle_assembly(db, in_stock_unit.id, vin_number="VIN1", actor=ACTOR)
