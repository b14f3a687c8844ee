from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.session import get_db
from services.capacity.calculator import get_capacity

router = APIRouter(prefix="/capacity", tags=["capacity"])


@router.get("/{model}")
def capacity(model: str, extra: int = 0, db: Session = Depends(get_db), principal=Depends(get_principal)):
    cap = get_capacity(db, model, extra=extra)
    cap["per_material"] = [
        {
            **row,
            "quantity_per_unit": str(row["quantity_per_unit"]),
            "current_stock": str(row["current_stock"]),
            "needed_for_target": str(row["needed_for_target"]),
        }
        for row in cap["per_material"]
    ]
    return cap
