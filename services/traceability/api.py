from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from services.traceability.service import find_unit_by_serial, trace_lot, trace_unit

router = APIRouter(prefix="/trace", tags=["traceability"])


@router.get("/units/{unit_id}")
def unit_trace(unit_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return trace_unit(db, unit_id)


@router.get("/serials/{serial_number}")
def serial_trace(serial_number: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return trace_unit(db, find_unit_by_serial(db, serial_number).id)


@router.get("/lots/{lot_id}")
def lot_trace(lot_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return trace_lot(db, lot_id)
