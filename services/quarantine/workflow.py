"""
Quarantine workflow.

An item starts ``quarantined`` and is decided once, to ``returned`` (goods go
back to the supplier, ledger untouched) or ``released`` (a fresh lot is
received for the quarantined quantity).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.common import utcnow
from app.db.models.quarantine import QuarantineItem
from app.db.session import transactional
from app.events.bus import publish
from services.ledger.service import get_lot, get_material, receive, to_quantity, withdraw

logger = get_logger(__name__)

QUARANTINED = "quarantined"
RETURNED = "returned"
RELEASED = "released"
DISPOSITIONS = (RETURNED, RELEASED)


def get_item(db: Session, item_id: str, *, for_update: bool = False) -> QuarantineItem:
    q = db.query(QuarantineItem).filter(QuarantineItem.id == item_id)
    if for_update:
        q = q.with_for_update()
    item = q.first()
    if not item:
        raise NotFoundError("QuarantineItem", item_id)
    return item


def list_items(db: Session, *, status: str | None = None, material_id: str | None = None, limit: int = 200) -> list[QuarantineItem]:
    q = db.query(QuarantineItem)
    if status:
        q = q.filter(QuarantineItem.status == status)
    if material_id:
        q = q.filter(QuarantineItem.material_id == material_id)
    return q.order_by(QuarantineItem.created_at.desc()).limit(limit).all()


@transactional
def open_item(
    db: Session,
    *,
    material_id: str,
    quantity: Any,
    reason: str,
    actor: str,
    lot_id: str | None = None,
    receipt_id: str | None = None,
    inspection_id: str | None = None,
    supplier_id: str | None = None,
    lot_number: str | None = None,
    invoice_number: str | None = None,
) -> QuarantineItem:
    qty = to_quantity(quantity)
    if not (reason or "").strip():
        raise ValidationError("A quarantine reason is required", {"field": "reason"})
    material = get_material(db, material_id)

    item = QuarantineItem(
        material_id=material.id,
        lot_id=lot_id,
        receipt_id=receipt_id,
        inspection_id=inspection_id,
        supplier_id=supplier_id,
        lot_number=lot_number,
        invoice_number=invoice_number,
        quantity=qty,
        reason=reason.strip(),
        status=QUARANTINED,
        created_by=actor,
    )
    db.add(item)
    db.flush()
    audit(
        db,
        actor=actor,
        action="QUARANTINE_OPEN",
        entity_type="QuarantineItem",
        entity_id=item.id,
        payload={"material_id": material.id, "quantity": qty, "lot_id": lot_id, "receipt_id": receipt_id},
    )
    logger.info("Quarantined %s %s of %s: %s", qty, material.unit, material.code, item.reason)
    return item


@transactional
def quarantine_lot(db: Session, lot_id: str, quantity: Any, reason: str, *, actor: str) -> QuarantineItem:
    """Pull stock already on hand into quarantine."""
    lot = get_lot(db, lot_id)
    withdraw(db, lot.id, quantity, movement_type="QUARANTINE", actor=actor, notes=reason)
    return open_item(
        db,
        material_id=lot.material_id,
        quantity=quantity,
        reason=reason,
        actor=actor,
        lot_id=lot.id,
        supplier_id=lot.supplier_id,
        lot_number=lot.lot_number,
        invoice_number=lot.invoice_number,
    )


@transactional
def decide(db: Session, item_id: str, disposition: str, *, actor: str, note: str | None = None) -> QuarantineItem:
    if disposition not in DISPOSITIONS:
        raise ValidationError(f"Unknown disposition '{disposition}'", {"field": "disposition"})
    item = get_item(db, item_id, for_update=True)
    if item.status != QUARANTINED:
        raise GuardViolationError(f"Quarantine item is already {item.status}", item.status, disposition)

    if disposition == RELEASED:
        lot = receive(
            db,
            item.material_id,
            item.quantity,
            actor=actor,
            supplier_id=item.supplier_id,
            invoice_number=item.invoice_number,
            lot_number=item.lot_number,
            source="quarantine_release",
            source_ref=item.id,
            notes=note,
        )
        item.released_lot_id = lot.id

    item.status = disposition
    item.decision_note = note
    item.decided_by = actor
    item.decided_at = utcnow()
    db.flush()

    audit(
        db,
        actor=actor,
        action="QUARANTINE_DECIDE",
        entity_type="QuarantineItem",
        entity_id=item.id,
        payload={"disposition": disposition, "note": note, "released_lot_id": item.released_lot_id},
    )
    publish(
        db,
        "QuarantineDecided",
        {"quarantine_item_id": item.id, "material_id": item.material_id, "disposition": disposition},
    )
    logger.info("Quarantine item %s %s by %s", item.id, disposition, actor)
    return item


def item_out(item: QuarantineItem) -> dict:
    return {
        "id": item.id,
        "material_id": item.material_id,
        "lot_id": item.lot_id,
        "receipt_id": item.receipt_id,
        "supplier_id": item.supplier_id,
        "lot_number": item.lot_number,
        "invoice_number": item.invoice_number,
        "quantity": str(item.quantity),
        "reason": item.reason,
        "status": item.status,
        "decision_note": item.decision_note,
        "decided_by": item.decided_by,
        "decided_at": item.decided_at.isoformat() if item.decided_at else None,
        "released_lot_id": item.released_lot_id,
    }
