from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.db.models.materials import StockMovement
from app.db.models.production import PartMapping, ShipmentLine, Unit, VehicleAssembly
from app.db.models.quality import Inspection, NcrRecord
from app.db.models.quarantine import QuarantineItem
from services.ledger.service import get_lot
from services.production.lifecycle import get_unit


def find_unit_by_serial(db: Session, serial_number: str) -> Unit:
    unit = db.query(Unit).filter(Unit.serial_number == serial_number).first()
    if not unit:
        raise NotFoundError("Unit", serial_number)
    return unit


def trace_unit(db: Session, unit_id: str) -> dict:
    """Everything that went into a unit and everything that happened to it."""
    unit = get_unit(db, unit_id)

    mappings = (
        db.query(PartMapping)
        .filter(PartMapping.unit_id == unit.id)
        .order_by(PartMapping.created_at.asc())
        .all()
    )
    inspections = (
        db.query(Inspection)
        .filter(Inspection.unit_id == unit.id, Inspection.is_draft == False)  # noqa: E712
        .order_by(Inspection.finalized_at.asc())
        .all()
    )
    ncrs = db.query(NcrRecord).filter(NcrRecord.unit_id == unit.id).order_by(NcrRecord.created_at.asc()).all()
    line = db.query(ShipmentLine).filter(ShipmentLine.unit_id == unit.id).first()
    assembly = db.query(VehicleAssembly).filter(VehicleAssembly.unit_id == unit.id).first()

    return {
        "unit": {
            "id": unit.id,
            "serial_number": unit.serial_number,
            "model": unit.model,
            "status": unit.status,
            "bom_revision_id": unit.bom_revision_id,
            "production_date": unit.production_date.isoformat(),
        },
        "parts": [
            {
                "material_id": pm.material_id,
                "material_code": pm.material.code,
                "lot_id": pm.lot_id,
                "lot_number": pm.lot.lot_number,
                "invoice_number": pm.lot.invoice_number,
                "supplier_id": pm.lot.supplier_id,
                "entry_date": pm.lot.entry_date.isoformat(),
                "quantity": str(pm.quantity),
                "mode": pm.mode,
            }
            for pm in mappings
        ],
        "inspections": [
            {
                "id": ins.id,
                "result": ins.overall_result,
                "inspector_id": ins.inspector_id,
                "finalized_at": ins.finalized_at.isoformat() if ins.finalized_at else None,
            }
            for ins in inspections
        ],
        "ncrs": [{"id": n.id, "ncr_number": n.ncr_number, "status": n.status} for n in ncrs],
        "shipment": (
            {
                "id": line.shipment.id,
                "customer_name": line.shipment.customer_name,
                "shipment_date": line.shipment.shipment_date.isoformat(),
                "waybill_number": line.shipment.waybill_number,
            }
            if line
            else None
        ),
        "vehicle_assembly": (
            {
                "vin_number": assembly.vin_number,
                "vehicle_plate": assembly.vehicle_plate,
                "assembly_date": assembly.assembly_date.isoformat(),
                "customer_name": assembly.customer_name,
            }
            if assembly
            else None
        ),
    }


def trace_lot(db: Session, lot_id: str) -> dict:
    """Which units consumed a lot, plus its movement history."""
    lot = get_lot(db, lot_id)
    rows = (
        db.query(PartMapping, Unit)
        .join(Unit, Unit.id == PartMapping.unit_id)
        .filter(PartMapping.lot_id == lot.id)
        .order_by(PartMapping.created_at.asc())
        .all()
    )
    movements = (
        db.query(StockMovement)
        .filter(StockMovement.lot_id == lot.id)
        .order_by(StockMovement.created_at.asc())
        .all()
    )
    quarantined = db.query(QuarantineItem).filter(QuarantineItem.lot_id == lot.id).all()

    return {
        "lot": {
            "id": lot.id,
            "material_id": lot.material_id,
            "lot_number": lot.lot_number,
            "invoice_number": lot.invoice_number,
            "supplier_id": lot.supplier_id,
            "quantity": str(lot.quantity),
            "remaining_quantity": str(lot.remaining_quantity),
            "entry_date": lot.entry_date.isoformat(),
            "source": lot.source,
        },
        "units": [
            {
                "unit_id": unit.id,
                "serial_number": unit.serial_number,
                "status": unit.status,
                "quantity": str(pm.quantity),
            }
            for pm, unit in rows
        ],
        "movements": [
            {
                "type": mv.movement_type,
                "quantity": str(mv.quantity),
                "unit_id": mv.unit_id,
                "actor": mv.actor,
                "at": mv.created_at.isoformat(),
            }
            for mv in movements
        ],
        "quarantine": [
            {"id": q.id, "quantity": str(q.quantity), "status": q.status, "released_lot_id": q.released_lot_id}
            for q in quarantined
        ],
    }
