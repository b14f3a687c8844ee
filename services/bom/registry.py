"""
BOM registry.

Revisions are immutable once written. Activating a new revision deactivates
the current one in the same transaction; a partial unique index backs the
one-active-per-model rule.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.bom import BomItem, BomRevision
from app.db.models.materials import Material
from app.db.session import transactional
from app.events.bus import publish
from services.ledger.service import to_quantity

logger = get_logger(__name__)


def get_active(db: Session, model: str) -> BomRevision | None:
    return (
        db.query(BomRevision)
        .filter(BomRevision.model == model, BomRevision.is_active == True)  # noqa: E712
        .first()
    )


def get_revision(db: Session, revision_id: str) -> BomRevision:
    rev = db.query(BomRevision).filter(BomRevision.id == revision_id).first()
    if not rev:
        raise NotFoundError("BomRevision", revision_id)
    return rev


def list_revisions(db: Session, model: str) -> list[BomRevision]:
    return (
        db.query(BomRevision)
        .filter(BomRevision.model == model)
        .order_by(BomRevision.revision_no.desc())
        .all()
    )


def _validate_items(db: Session, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    out: list[dict[str, Any]] = []
    for idx, raw in enumerate(items):
        material_id = raw.get("material_id")
        if not material_id:
            raise ValidationError("material_id is required", {"index": idx})
        if material_id in seen:
            raise ValidationError(f"Material '{material_id}' appears twice in BOM", {"index": idx, "material_id": material_id})
        seen.add(material_id)
        if not db.query(Material.id).filter(Material.id == material_id).first():
            raise NotFoundError("Material", material_id)
        out.append(
            {
                "material_id": material_id,
                "quantity_per_unit": to_quantity(raw.get("quantity_per_unit"), "quantity_per_unit"),
                "is_critical": bool(raw.get("is_critical", False)),
                "notes": raw.get("notes"),
                "sort_order": idx,
            }
        )
    return out


@transactional
def activate_revision(
    db: Session,
    model: str,
    items: list[dict[str, Any]],
    *,
    actor: str,
    description: str | None = None,
    effective_date: date | None = None,
) -> BomRevision:
    """Insert revision ``max + 1`` for ``model`` and make it the only active one."""
    model = (model or "").strip()
    if not model:
        raise ValidationError("model is required", {"field": "model"})
    clean = _validate_items(db, items or [])

    # Lock every revision of the model so concurrent activations serialize
    existing = (
        db.query(BomRevision)
        .filter(BomRevision.model == model)
        .order_by(BomRevision.revision_no.asc())
        .with_for_update()
        .all()
    )
    previous = None
    for rev in existing:
        if rev.is_active:
            previous = rev
            rev.is_active = False
    next_no = (existing[-1].revision_no + 1) if existing else 1

    try:
        db.flush()
        rev = BomRevision(
            model=model,
            revision_no=next_no,
            is_active=True,
            description=description,
            effective_date=effective_date or date.today(),
            created_by=actor,
        )
        rev.items = [BomItem(**it) for it in clean]
        db.add(rev)
        db.flush()
    except IntegrityError as exc:
        raise ConcurrencyConflictError(
            f"BOM for model {model} was changed concurrently",
            {"model": model, "revision_no": next_no},
        ) from exc

    audit(
        db,
        actor=actor,
        action="BOM_ACTIVATE",
        entity_type="BomRevision",
        entity_id=rev.id,
        payload={
            "model": model,
            "revision_no": next_no,
            "previous_revision_id": previous.id if previous else None,
            "items": len(clean),
        },
    )
    publish(db, "BomRevisionActivated", {"model": model, "bom_revision_id": rev.id, "revision_no": next_no})
    logger.info("BOM %s revision %s activated with %s items", model, next_no, len(clean))
    return rev


def revision_out(rev: BomRevision) -> dict:
    return {
        "id": rev.id,
        "model": rev.model,
        "revision_no": rev.revision_no,
        "is_active": rev.is_active,
        "description": rev.description,
        "effective_date": rev.effective_date.isoformat(),
        "created_by": rev.created_by,
        "items": [
            {
                "id": it.id,
                "material_id": it.material_id,
                "material_code": it.material.code if it.material else None,
                "quantity_per_unit": str(it.quantity_per_unit),
                "is_critical": it.is_critical,
                "notes": it.notes,
            }
            for it in rev.items
        ],
    }
