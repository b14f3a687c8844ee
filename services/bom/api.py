from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.core.security import get_principal
from app.db.session import get_db
from services.bom.registry import activate_revision, get_active, list_revisions, revision_out

router = APIRouter(prefix="/bom", tags=["bom"])


class BomItemIn(BaseModel):
    material_id: str
    quantity_per_unit: Decimal
    is_critical: bool = False
    notes: str | None = None


class BomRevisionIn(BaseModel):
    items: list[BomItemIn] = Field(default_factory=list)
    description: str | None = None
    effective_date: date | None = None


@router.post("/{model}/revisions")
def activate(model: str, payload: BomRevisionIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    rev = activate_revision(
        db,
        model,
        [it.model_dump() for it in payload.items],
        actor=principal.actor,
        description=payload.description,
        effective_date=payload.effective_date,
    )
    return revision_out(rev)


@router.get("/{model}/revisions")
def history(model: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [revision_out(r) for r in list_revisions(db, model)]


@router.get("/{model}")
def active(model: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    rev = get_active(db, model)
    if rev is None:
        raise NotFoundError("BomRevision", model)
    return revision_out(rev)
