from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.db.models.materials import MaterialReceipt
from app.db.session import transactional
from services.ledger.service import get_material, get_supplier, to_quantity

logger = get_logger(__name__)


@transactional
def register_receipt(
    db: Session,
    material_id: str,
    quantity: Any,
    *,
    actor: str,
    supplier_id: str | None = None,
    invoice_number: str | None = None,
    lot_number: str | None = None,
    receipt_date: date | None = None,
    notes: str | None = None,
) -> MaterialReceipt:
    """Record delivered goods. Stock is untouched until input inspection accepts them."""
    qty = to_quantity(quantity)
    material = get_material(db, material_id)
    if supplier_id:
        get_supplier(db, supplier_id)

    r = MaterialReceipt(
        material_id=material.id,
        supplier_id=supplier_id,
        invoice_number=invoice_number,
        lot_number=lot_number,
        quantity=qty,
        receipt_date=receipt_date or date.today(),
        status="received",
        received_by=actor,
        notes=notes,
    )
    db.add(r)
    db.flush()
    audit(
        db,
        actor=actor,
        action="RECEIPT_REGISTER",
        entity_type="MaterialReceipt",
        entity_id=r.id,
        payload={"material_id": material.id, "quantity": qty, "invoice_number": invoice_number},
    )
    logger.info("Receipt %s registered: %s %s of %s", r.id, qty, material.unit, material.code)
    return r


def get_receipt(db: Session, receipt_id: str, *, for_update: bool = False) -> MaterialReceipt:
    q = db.query(MaterialReceipt).filter(MaterialReceipt.id == receipt_id)
    if for_update:
        q = q.with_for_update()
    r = q.first()
    if not r:
        raise NotFoundError("MaterialReceipt", receipt_id)
    return r


def list_receipts(db: Session, *, status: str | None = None, limit: int = 200) -> list[MaterialReceipt]:
    q = db.query(MaterialReceipt)
    if status:
        q = q.filter(MaterialReceipt.status == status)
    return q.order_by(MaterialReceipt.receipt_date.desc(), MaterialReceipt.created_at.desc()).limit(limit).all()
