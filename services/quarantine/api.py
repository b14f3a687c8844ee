from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from services.quarantine.workflow import decide, get_item, item_out, list_items, quarantine_lot

router = APIRouter(prefix="/quarantine", tags=["quarantine"])


class DecisionIn(BaseModel):
    disposition: str  # returned|released
    note: str | None = None


class QuarantineLotIn(BaseModel):
    quantity: Decimal
    reason: str


@router.get("")
def list_all(status: str | None = None, material_id: str | None = None, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [item_out(i) for i in list_items(db, status=status, material_id=material_id)]


@router.post("/lots/{lot_id}")
def hold_lot(lot_id: str, payload: QuarantineLotIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return item_out(quarantine_lot(db, lot_id, payload.quantity, payload.reason, actor=principal.actor))


@router.get("/{item_id}")
def get_one(item_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return item_out(get_item(db, item_id))


@router.post("/{item_id}/decision")
def decision(item_id: str, payload: DecisionIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return item_out(decide(db, item_id, payload.disposition, actor=principal.actor, note=payload.note))
