from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from services.qms.control_plans import activate_control_plan, get_plan, list_plans, plan_out
from services.qms.inspection import get_inspection, inspection_out, list_inspections, submit_inspection
from services.qms.ncr import get_ncr, list_ncrs, ncr_out, open_ncr, update_ncr

router = APIRouter(prefix="/qms", tags=["qms"])


# ---- Schemas ----
class ControlPlanItemIn(BaseModel):
    name: str = Field(..., max_length=256)
    characteristic: str | None = None
    measurement_method: str | None = None
    lower_limit: Decimal | None = None
    upper_limit: Decimal | None = None
    nominal_value: Decimal | None = None
    unit: str | None = Field(default=None, max_length=16)
    expected_text: str | None = Field(default=None, max_length=128)
    is_critical: bool = False


class ControlPlanIn(BaseModel):
    target_type: str  # unit|material
    target_key: str
    name: str | None = None
    description: str | None = None
    items: list[ControlPlanItemIn] = Field(default_factory=list)


class MeasurementIn(BaseModel):
    item_id: str
    value: Any = None
    notes: str | None = None


class InspectionIn(BaseModel):
    target_type: str  # unit|receipt
    target_id: str
    control_plan_id: str
    measurements: list[MeasurementIn] = Field(default_factory=list)
    draft: bool = False
    quantity_inspected: Decimal | None = None
    comments: str | None = None


class NcrIn(BaseModel):
    description: str
    unit_id: str | None = None
    inspection_id: str | None = None
    responsible_user_id: str | None = None
    target_date: date | None = None


class NcrUpdateIn(BaseModel):
    status: str | None = None
    root_cause: str | None = None
    corrective_action: str | None = None
    responsible_user_id: str | None = None
    target_date: date | None = None


# ---- Control plans ----
@router.get("/control-plans")
def get_plans(target_type: str | None = None, target_key: str | None = None, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [plan_out(p) for p in list_plans(db, target_type=target_type, target_key=target_key)]


@router.post("/control-plans")
def create_plan(payload: ControlPlanIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    plan = activate_control_plan(
        db,
        payload.target_type,
        payload.target_key,
        [it.model_dump() for it in payload.items],
        actor=principal.actor,
        name=payload.name,
        description=payload.description,
    )
    return plan_out(plan)


@router.get("/control-plans/{plan_id}")
def get_one_plan(plan_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return plan_out(get_plan(db, plan_id))


# ---- Inspections ----
@router.post("/inspections")
def submit(payload: InspectionIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    ins = submit_inspection(
        db,
        target_type=payload.target_type,
        target_id=payload.target_id,
        control_plan_id=payload.control_plan_id,
        measurements=[m.model_dump() for m in payload.measurements],
        draft=payload.draft,
        quantity_inspected=payload.quantity_inspected,
        comments=payload.comments,
        actor=principal.actor,
    )
    return inspection_out(ins)


@router.get("/inspections")
def get_inspections(unit_id: str | None = None, receipt_id: str | None = None, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [inspection_out(i) for i in list_inspections(db, unit_id=unit_id, receipt_id=receipt_id)]


@router.get("/inspections/{inspection_id}")
def get_one_inspection(inspection_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return inspection_out(get_inspection(db, inspection_id))


# ---- NCR ----
@router.get("/ncrs")
def get_ncrs(status: str | None = None, unit_id: str | None = None, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [ncr_out(n) for n in list_ncrs(db, status=status, unit_id=unit_id)]


@router.post("/ncrs")
def create_ncr(payload: NcrIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return ncr_out(open_ncr(db, **payload.model_dump(), actor=principal.actor))


@router.get("/ncrs/{ncr_id}")
def get_one_ncr(ncr_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return ncr_out(get_ncr(db, ncr_id))


@router.patch("/ncrs/{ncr_id}")
def edit_ncr(ncr_id: str, payload: NcrUpdateIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return ncr_out(update_ncr(db, ncr_id, **payload.model_dump(), actor=principal.actor))
