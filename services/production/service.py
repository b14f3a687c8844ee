from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.common import utcnow
from app.db.models.production import Shipment, ShipmentLine, Unit, VehicleAssembly
from app.db.session import transactional
from app.events.bus import publish
from services.bom.registry import get_active
from services.numbering import next_serial
from services.production.allocation import allocate_bulk
from services.production.lifecycle import (
    IN_STOCK,
    INSTALLED,
    PENDING_FINAL_INSPECTION,
    SHIPPED,
    get_unit,
    transition,
)

logger = get_logger(__name__)

ALLOCATION_MODES = ("bulk", "manual")


@transactional
def create_unit(
    db: Session,
    model: str,
    production_date: date,
    *,
    actor: str,
    responsible: str | None = None,
    allocation: str = "bulk",
    work_order: str | None = None,
    production_line: str | None = None,
    notes: str | None = None,
) -> Unit:
    """Start a unit on the active BOM of ``model``.

    With bulk allocation the whole BOM is consumed now; a shortage aborts the
    creation and leaves the serial counter and the ledger untouched.
    """
    if allocation not in ALLOCATION_MODES:
        raise ValidationError(f"Unknown allocation mode '{allocation}'", {"field": "allocation"})
    model = (model or "").strip()
    if not model:
        raise ValidationError("model is required", {"field": "model"})
    rev = get_active(db, model)
    if rev is None:
        raise NotFoundError("BomRevision", model)

    serial, seq = next_serial(db, production_date, model)
    unit = Unit(
        serial_number=serial,
        model=model,
        production_date=production_date,
        sequence_number=seq,
        status="producing",
        status_changed_at=utcnow(),
        bom_revision_id=rev.id,
        parts_mapping_complete=False,
        production_start=utcnow(),
        responsible_user_id=responsible,
        work_order=work_order,
        production_line=production_line,
        notes=notes,
    )
    db.add(unit)
    db.flush()

    if allocation == "bulk":
        allocate_bulk(db, unit, actor=actor)
    elif not rev.items:
        unit.parts_mapping_complete = True

    audit(
        db,
        actor=actor,
        action="UNIT_CREATE",
        entity_type="Unit",
        entity_id=unit.id,
        payload={"serial_number": serial, "model": model, "bom_revision_id": rev.id, "allocation": allocation},
    )
    publish(db, "UnitCreated", {"unit_id": unit.id, "serial_number": serial, "model": model})
    logger.info("Unit %s created on BOM %s rev %s (%s)", serial, model, rev.revision_no, allocation)
    return unit


def list_units(db: Session, *, model: str | None = None, status: str | None = None, limit: int = 200) -> list[Unit]:
    q = db.query(Unit)
    if model:
        q = q.filter(Unit.model == model)
    if status:
        q = q.filter(Unit.status == status)
    return q.order_by(Unit.production_date.desc(), Unit.sequence_number.desc()).limit(limit).all()


def complete_production(db: Session, unit_id: str, *, actor: str) -> Unit:
    """Hand a unit over to final inspection."""
    return transition(db, unit_id, PENDING_FINAL_INSPECTION, actor=actor)


@transactional
def ship_units(
    db: Session,
    unit_ids: list[str],
    *,
    customer_name: str,
    actor: str,
    shipment_date: date | None = None,
    customer_address: str | None = None,
    waybill_number: str | None = None,
    invoice_number: str | None = None,
    notes: str | None = None,
) -> Shipment:
    """Ship a batch of in-stock units. One unit out of stock aborts the whole batch."""
    if not unit_ids:
        raise ValidationError("At least one unit is required", {"field": "unit_ids"})
    if len(set(unit_ids)) != len(unit_ids):
        raise ValidationError("A unit appears twice in the shipment", {"field": "unit_ids"})
    if not (customer_name or "").strip():
        raise ValidationError("customer_name is required", {"field": "customer_name"})

    units = [get_unit(db, uid, for_update=True) for uid in unit_ids]
    for unit in units:
        if unit.status != IN_STOCK:
            raise GuardViolationError(f"Unit {unit.serial_number} is {unit.status}, not in stock", unit.status, SHIPPED)

    shipment = Shipment(
        shipment_date=shipment_date or date.today(),
        customer_name=customer_name.strip(),
        customer_address=customer_address,
        waybill_number=waybill_number,
        invoice_number=invoice_number,
        shipped_by=actor,
        notes=notes,
    )
    shipment.lines = [ShipmentLine(unit_id=u.id) for u in units]
    db.add(shipment)
    db.flush()

    for unit in units:
        transition(db, unit.id, SHIPPED, actor=actor, reason=f"shipment {shipment.id}")
    logger.info("Shipment %s to %s with %s units", shipment.id, shipment.customer_name, len(units))
    return shipment


@transactional
def record_vehicle_assembly(
    db: Session,
    unit_id: str,
    *,
    vin_number: str,
    actor: str,
    assembly_date: date | None = None,
    vehicle_plate: str | None = None,
    customer_name: str | None = None,
    notes: str | None = None,
) -> VehicleAssembly:
    if not (vin_number or "").strip():
        raise ValidationError("vin_number is required", {"field": "vin_number"})
    unit = get_unit(db, unit_id, for_update=True)
    if unit.status != SHIPPED:
        raise GuardViolationError(f"Unit {unit.serial_number} is {unit.status}, not shipped", unit.status, INSTALLED)

    va = VehicleAssembly(
        unit_id=unit.id,
        assembly_date=assembly_date or date.today(),
        vin_number=vin_number.strip(),
        vehicle_plate=vehicle_plate,
        customer_name=customer_name,
        assembled_by=actor,
        notes=notes,
    )
    db.add(va)
    db.flush()
    transition(db, unit.id, INSTALLED, actor=actor, reason=f"VIN {va.vin_number}")
    return va


def unit_out(u: Unit) -> dict:
    return {
        "id": u.id,
        "serial_number": u.serial_number,
        "model": u.model,
        "status": u.status,
        "production_date": u.production_date.isoformat(),
        "sequence_number": u.sequence_number,
        "bom_revision_id": u.bom_revision_id,
        "parts_mapping_complete": u.parts_mapping_complete,
        "production_start": u.production_start.isoformat() if u.production_start else None,
        "production_end": u.production_end.isoformat() if u.production_end else None,
        "responsible_user_id": u.responsible_user_id,
        "work_order": u.work_order,
        "production_line": u.production_line,
    }


def shipment_out(s: Shipment) -> dict:
    return {
        "id": s.id,
        "shipment_date": s.shipment_date.isoformat(),
        "customer_name": s.customer_name,
        "waybill_number": s.waybill_number,
        "invoice_number": s.invoice_number,
        "unit_ids": [ln.unit_id for ln in s.lines],
    }
