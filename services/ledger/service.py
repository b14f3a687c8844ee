"""
Material ledger.

Aggregate stock on the material row plus individual lots. Every mutation
appends a StockMovement; ``current_stock`` always equals the sum of
``remaining_quantity`` over the material's lots.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import InsufficientStockError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.materials import Material, MaterialReceipt, StockLot, StockMovement, Supplier
from app.db.session import transactional

logger = get_logger(__name__)

MATERIAL_CATEGORIES = ("raw_material", "component", "consumable")
MATERIAL_UNITS = ("pcs", "kg", "lt", "m", "mm", "set")
LOT_SOURCES = ("receipt", "inspection", "quarantine_release")


def to_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Parse a strictly positive quantity."""
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", {"field": field})
    if not qty.is_finite() or qty <= 0:
        raise ValidationError(f"{field} must be positive", {"field": field, "value": str(value)})
    return qty


def _non_negative(value: Any, field: str) -> Decimal:
    try:
        qty = Decimal(str(value if value is not None else 0))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", {"field": field})
    if not qty.is_finite() or qty < 0:
        raise ValidationError(f"{field} cannot be negative", {"field": field})
    return qty


def get_material(db: Session, material_id: str, *, for_update: bool = False) -> Material:
    q = db.query(Material).filter(Material.id == material_id)
    if for_update:
        q = q.with_for_update()
    m = q.first()
    if not m:
        raise NotFoundError("Material", material_id)
    return m


def get_lot(db: Session, lot_id: str, *, for_update: bool = False) -> StockLot:
    q = db.query(StockLot).filter(StockLot.id == lot_id)
    if for_update:
        q = q.with_for_update()
    lot = q.first()
    if not lot:
        raise NotFoundError("StockLot", lot_id)
    return lot


def get_supplier(db: Session, supplier_id: str) -> Supplier:
    s = db.query(Supplier).filter(Supplier.id == supplier_id).first()
    if not s:
        raise NotFoundError("Supplier", supplier_id)
    return s


@transactional
def create_supplier(
    db: Session,
    *,
    name: str,
    code: str | None = None,
    contact_person: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
    notes: str | None = None,
    actor: str,
) -> Supplier:
    if not (name or "").strip():
        raise ValidationError("Supplier name is required", {"field": "name"})
    if code and db.query(Supplier).filter(Supplier.code == code).first():
        raise ValidationError(f"Supplier code '{code}' already exists", {"field": "code"})
    s = Supplier(
        name=name.strip(),
        code=code,
        contact_person=contact_person,
        phone=phone,
        email=email,
        address=address,
        notes=notes,
        is_active=True,
    )
    db.add(s)
    db.flush()
    audit(db, actor=actor, action="SUPPLIER_CREATE", entity_type="Supplier", entity_id=s.id, payload={"name": s.name})
    return s


@transactional
def create_material(
    db: Session,
    *,
    code: str,
    name: str,
    category: str = "component",
    unit: str = "pcs",
    min_stock: Any = 0,
    target_stock: Any = 0,
    is_critical: bool = False,
    description: str | None = None,
    default_supplier_id: str | None = None,
    notes: str | None = None,
    actor: str,
) -> Material:
    if not (code or "").strip():
        raise ValidationError("Material code is required", {"field": "code"})
    if not (name or "").strip():
        raise ValidationError("Material name is required", {"field": "name"})
    if category not in MATERIAL_CATEGORIES:
        raise ValidationError(f"Unknown category '{category}'", {"field": "category"})
    if unit not in MATERIAL_UNITS:
        raise ValidationError(f"Unknown unit '{unit}'", {"field": "unit"})
    if db.query(Material).filter(Material.code == code).first():
        raise ValidationError(f"Material code '{code}' already exists", {"field": "code"})
    if default_supplier_id:
        get_supplier(db, default_supplier_id)

    m = Material(
        code=code.strip(),
        name=name.strip(),
        category=category,
        unit=unit,
        current_stock=Decimal("0"),
        min_stock=_non_negative(min_stock, "min_stock"),
        target_stock=_non_negative(target_stock, "target_stock"),
        is_critical=is_critical,
        description=description,
        default_supplier_id=default_supplier_id,
        notes=notes,
        is_active=True,
    )
    db.add(m)
    db.flush()
    audit(db, actor=actor, action="MATERIAL_CREATE", entity_type="Material", entity_id=m.id, payload={"code": m.code})
    return m


@transactional
def receive(
    db: Session,
    material_id: str,
    quantity: Any,
    *,
    actor: str,
    entry_date: date | None = None,
    supplier_id: str | None = None,
    invoice_number: str | None = None,
    lot_number: str | None = None,
    source: str = "receipt",
    source_ref: str | None = None,
    notes: str | None = None,
) -> StockLot:
    """Create a lot with ``remaining == quantity`` and raise aggregate stock by the same amount."""
    qty = to_quantity(quantity)
    if source not in LOT_SOURCES:
        raise ValidationError(f"Unknown lot source '{source}'", {"field": "source"})
    material = get_material(db, material_id, for_update=True)
    if supplier_id:
        get_supplier(db, supplier_id)

    lot = StockLot(
        material_id=material.id,
        supplier_id=supplier_id,
        invoice_number=invoice_number,
        lot_number=lot_number,
        quantity=qty,
        remaining_quantity=qty,
        entry_date=entry_date or date.today(),
        source=source,
        source_ref=source_ref,
        created_by=actor,
        notes=notes,
    )
    db.add(lot)
    db.flush()

    material.current_stock = material.current_stock + qty
    db.add(
        StockMovement(
            movement_type="RECEIPT",
            material_id=material.id,
            lot_id=lot.id,
            quantity=qty,
            actor=actor,
            notes=notes,
            meta={"source": source, "source_ref": source_ref},
        )
    )
    db.flush()
    logger.info("Received %s %s of %s into lot %s (%s)", qty, material.unit, material.code, lot.id, source)
    return lot


@transactional
def withdraw(
    db: Session,
    lot_id: str,
    quantity: Any,
    *,
    movement_type: str,
    actor: str,
    material_id: str | None = None,
    unit_id: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    """Decrement a lot and its material's aggregate under row locks."""
    qty = to_quantity(quantity)
    # Materials are always locked before their lots, matching bulk allocation
    lot = get_lot(db, lot_id)
    if material_id is not None and lot.material_id != material_id:
        raise ValidationError(
            "Lot does not belong to material",
            {"lot_id": lot.id, "material_id": material_id, "lot_material_id": lot.material_id},
        )
    material = get_material(db, lot.material_id, for_update=True)
    db.refresh(lot, with_for_update=True)
    if qty > lot.remaining_quantity:
        logger.warning("Refused %s of %s from lot %s: only %s left", qty, material.code, lot.id, lot.remaining_quantity)
        raise InsufficientStockError(material.id, qty, lot.remaining_quantity, lot_id=lot.id)

    lot.remaining_quantity = lot.remaining_quantity - qty
    material.current_stock = material.current_stock - qty
    mv = StockMovement(
        movement_type=movement_type,
        material_id=material.id,
        lot_id=lot.id,
        unit_id=unit_id,
        quantity=qty,
        actor=actor,
        notes=notes,
        meta={},
    )
    db.add(mv)
    db.flush()
    return mv


def consume(
    db: Session,
    lot_id: str,
    quantity: Any,
    *,
    actor: str,
    material_id: str | None = None,
    unit_id: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    return withdraw(
        db,
        lot_id,
        quantity,
        movement_type="CONSUMPTION",
        actor=actor,
        material_id=material_id,
        unit_id=unit_id,
        notes=notes,
    )


def reconcile(db: Session, material_id: str) -> dict:
    material = get_material(db, material_id)
    lots_total = (
        db.query(func.coalesce(func.sum(StockLot.remaining_quantity), 0))
        .filter(StockLot.material_id == material.id)
        .scalar()
    )
    lots_total = Decimal(str(lots_total))
    return {
        "material_id": material.id,
        "material_code": material.code,
        "current_stock": material.current_stock,
        "lots_remaining": lots_total,
        "consistent": Decimal(str(material.current_stock)) == lots_total,
    }


def low_stock(db: Session) -> list[Material]:
    rows = (
        db.query(Material)
        .filter(
            Material.is_active == True,  # noqa: E712
            Material.min_stock > 0,
            Material.current_stock <= Material.min_stock,
        )
        .all()
    )
    return sorted(rows, key=lambda m: (not m.is_critical, m.code))


def list_lots(db: Session, material_id: str, *, available_only: bool = False) -> list[StockLot]:
    get_material(db, material_id)
    q = db.query(StockLot).filter(StockLot.material_id == material_id)
    if available_only:
        q = q.filter(StockLot.remaining_quantity > 0)
    return q.order_by(StockLot.entry_date.asc(), StockLot.created_at.asc(), StockLot.id.asc()).all()


def list_movements(db: Session, material_id: str, limit: int = 200) -> list[StockMovement]:
    get_material(db, material_id)
    return (
        db.query(StockMovement)
        .filter(StockMovement.material_id == material_id)
        .order_by(StockMovement.created_at.desc())
        .limit(limit)
        .all()
    )


def material_out(m: Material) -> dict:
    return {
        "id": m.id,
        "code": m.code,
        "name": m.name,
        "category": m.category,
        "unit": m.unit,
        "current_stock": str(m.current_stock),
        "min_stock": str(m.min_stock),
        "target_stock": str(m.target_stock),
        "is_critical": m.is_critical,
        "is_active": m.is_active,
    }


def lot_out(lot: StockLot) -> dict:
    return {
        "id": lot.id,
        "material_id": lot.material_id,
        "supplier_id": lot.supplier_id,
        "invoice_number": lot.invoice_number,
        "lot_number": lot.lot_number,
        "quantity": str(lot.quantity),
        "remaining_quantity": str(lot.remaining_quantity),
        "entry_date": lot.entry_date.isoformat(),
        "source": lot.source,
        "source_ref": lot.source_ref,
    }


def receipt_out(r: MaterialReceipt) -> dict:
    return {
        "id": r.id,
        "material_id": r.material_id,
        "supplier_id": r.supplier_id,
        "invoice_number": r.invoice_number,
        "lot_number": r.lot_number,
        "quantity": str(r.quantity),
        "receipt_date": r.receipt_date.isoformat(),
        "status": r.status,
        "received_by": r.received_by,
    }
