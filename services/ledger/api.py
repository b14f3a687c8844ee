from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.security import get_principal
from app.db.models.materials import Material, Supplier
from app.db.session import get_db
from services.ledger import receiving
from services.ledger.service import (
    create_material,
    create_supplier,
    get_material,
    list_lots,
    list_movements,
    lot_out,
    low_stock,
    material_out,
    receipt_out,
    receive,
    reconcile,
)

router = APIRouter(prefix="/materials", tags=["materials"])


# ---- Schemas ----
class SupplierIn(BaseModel):
    name: str = Field(..., max_length=256)
    code: str | None = Field(default=None, max_length=32)
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    notes: str | None = None


class MaterialIn(BaseModel):
    code: str = Field(..., max_length=64)
    name: str = Field(..., max_length=256)
    category: str = "component"  # raw_material|component|consumable
    unit: str = "pcs"  # pcs|kg|lt|m|mm|set
    min_stock: Decimal = Decimal(0)
    target_stock: Decimal = Decimal(0)
    is_critical: bool = False
    description: str | None = None
    default_supplier_id: str | None = None
    notes: str | None = None


class ReceiveIn(BaseModel):
    quantity: Decimal
    entry_date: date | None = None
    supplier_id: str | None = None
    invoice_number: str | None = Field(default=None, max_length=64)
    lot_number: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class ReceiptIn(BaseModel):
    material_id: str
    quantity: Decimal
    supplier_id: str | None = None
    invoice_number: str | None = Field(default=None, max_length=64)
    lot_number: str | None = Field(default=None, max_length=64)
    receipt_date: date | None = None
    notes: str | None = None


# ---- Suppliers ----
@router.get("/suppliers")
def list_suppliers(db: Session = Depends(get_db), principal=Depends(get_principal)):
    rows = db.query(Supplier).order_by(Supplier.name.asc()).all()
    return [{"id": s.id, "code": s.code, "name": s.name, "is_active": s.is_active} for s in rows]


@router.post("/suppliers")
def add_supplier(payload: SupplierIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    s = create_supplier(db, **payload.model_dump(), actor=principal.actor)
    return {"id": s.id, "code": s.code, "name": s.name}


# ---- Receipts (awaiting input inspection) ----
@router.get("/receipts")
def get_receipts(status: str | None = None, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [receipt_out(r) for r in receiving.list_receipts(db, status=status)]


@router.post("/receipts")
def add_receipt(payload: ReceiptIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    data = payload.model_dump()
    r = receiving.register_receipt(db, data.pop("material_id"), data.pop("quantity"), **data, actor=principal.actor)
    return receipt_out(r)


# ---- Materials ----
@router.get("")
def list_materials(db: Session = Depends(get_db), principal=Depends(get_principal)):
    rows = db.query(Material).order_by(Material.code.asc()).all()
    return [material_out(m) for m in rows]


@router.post("")
def add_material(payload: MaterialIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    m = create_material(db, **payload.model_dump(), actor=principal.actor)
    return material_out(m)


@router.get("/low-stock")
def get_low_stock(db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [material_out(m) for m in low_stock(db)]


@router.get("/{material_id}")
def get_one(material_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return material_out(get_material(db, material_id))


@router.post("/{material_id}/lots")
def receive_lot(material_id: str, payload: ReceiveIn, db: Session = Depends(get_db), principal=Depends(get_principal)):
    data = payload.model_dump()
    lot = receive(db, material_id, data.pop("quantity"), **data, actor=principal.actor)
    return lot_out(lot)


@router.get("/{material_id}/lots")
def get_lots(material_id: str, available_only: bool = False, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [lot_out(lot) for lot in list_lots(db, material_id, available_only=available_only)]


@router.get("/{material_id}/movements")
def get_movements(material_id: str, limit: int = 200, db: Session = Depends(get_db), principal=Depends(get_principal)):
    return [
        {
            "id": mv.id,
            "movement_type": mv.movement_type,
            "lot_id": mv.lot_id,
            "unit_id": mv.unit_id,
            "quantity": str(mv.quantity),
            "actor": mv.actor,
            "notes": mv.notes,
            "created_at": mv.created_at.isoformat(),
        }
        for mv in list_movements(db, material_id, limit=limit)
    ]


@router.get("/{material_id}/reconcile")
def get_reconcile(material_id: str, db: Session = Depends(get_db), principal=Depends(get_principal)):
    r = reconcile(db, material_id)
    return {**r, "current_stock": str(r["current_stock"]), "lots_remaining": str(r["lots_remaining"])}
