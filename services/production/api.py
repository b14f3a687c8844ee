from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from services.production.allocation import kitting_status, map_part, mapping_out
from services.production.lifecycle import allowed_targets, get_unit, scrap, transition
from services.production.service import (
    create_unit,
    list_units,
    record_vehicle_assembly,
    ship_units,
    shipment_out,
    unit_out,
)

router = APIRouter(prefix="/units", tags=["production"])


# ---- Schemas ----
class UnitIn(BaseModel):
    model: str = Field(..., max_length=16)
    production_date: date
    responsible: str | None = None
    allocation: str = "bulk"  # bulk|manual
    work_order: str | None = None
    production_line: str | None = None
    notes: str | None = None


class PartIn(BaseModel):
    material_id: str
    lot_id: str
    quantity: Decimal


class TransitionIn(BaseModel):
    to_status: str
    reason: str | None = None


class ScrapIn(BaseModel):
    reason: str


class ShipmentIn(BaseModel):
    unit_ids: list[str]
    customer_name: str = Field(..., max_length=256)
    shipment_date: date | None = None
    customer_address: str | None = None
    waybill_number: str | None = None
    invoice_number: str | None = None
    notes: str | None = None


class VehicleAssemblyIn(BaseModel):
    vin_number: str = Field(..., max_length=64)
    assembly_date: date | None = None
    vehicle_plate: str | None = None
    customer_name: str | None = None
    notes: str | None = None


# ---- Units ----
@router.post("")
def create(payload: UnitIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    data = payload.model_dump()
    unit = create_unit(db, data.pop("model"), data.pop("production_date"), **data, actor=principal.actor)
    return unit_out(unit)


@router.get("")
def list_all(model: str | None = None, status: str | None = None, limit: int = 200, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [unit_out(u) for u in list_units(db, model=model, status=status, limit=limit)]


@router.post("/shipments")
def ship(payload: ShipmentIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    data = payload.model_dump()
    s = ship_units(db, data.pop("unit_ids"), **data, actor=principal.actor)
    return shipment_out(s)


@router.get("/{unit_id}")
def get_one(unit_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    unit = get_unit(db, unit_id)
    return {**unit_out(unit), "allowed_transitions": allowed_targets(unit.status)}


@router.post("/{unit_id}/parts")
def add_part(unit_id: str, payload: PartIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    pm = map_part(db, unit_id, payload.material_id, payload.lot_id, payload.quantity, actor=principal.actor)
    return mapping_out(pm)


@router.get("/{unit_id}/kitting")
def get_kitting(unit_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    status = kitting_status(db, unit_id)
    status["items"] = [
        {**it, "required": str(it["required"]), "mapped": str(it["mapped"])} for it in status["items"]
    ]
    return status


@router.post("/{unit_id}/transitions")
def change_status(unit_id: str, payload: TransitionIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    unit = transition(db, unit_id, payload.to_status, actor=principal.actor, reason=payload.reason)
    return unit_out(unit)


@router.post("/{unit_id}/scrap")
def scrap_unit(unit_id: str, payload: ScrapIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return unit_out(scrap(db, unit_id, payload.reason, actor=principal.actor))


@router.post("/{unit_id}/vehicle-assembly")
def assemble(unit_id: str, payload: VehicleAssemblyIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    va = record_vehicle_assembly(db, unit_id, **payload.model_dump(), actor=principal.actor)
    return {
        "id": va.id,
        "unit_id": va.unit_id,
        "vin_number": va.vin_number,
        "vehicle_plate": va.vehicle_plate,
        "assembly_date": va.assembly_date.isoformat(),
    }
