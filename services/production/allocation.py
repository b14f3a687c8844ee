"""
Allocation engine: bulk consumption at unit creation and manual kitting.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, InsufficientStockError, ShortageError, ValidationError
from app.core.logging import get_logger
from app.db.models.materials import Material, StockLot
from app.db.models.production import PartMapping, Unit
from app.db.session import transactional
from services.bom.registry import get_revision
from services.ledger.service import consume, get_lot, to_quantity
from services.production.lifecycle import PRODUCING, REVISION_RETURN, get_unit

logger = get_logger(__name__)

KITTING_STATES = (PRODUCING, REVISION_RETURN)


def _fifo_lots(db: Session, material_id: str) -> list[StockLot]:
    # Oldest entry first; created_at and id break ties
    return (
        db.query(StockLot)
        .filter(StockLot.material_id == material_id, StockLot.remaining_quantity > 0)
        .order_by(StockLot.entry_date.asc(), StockLot.created_at.asc(), StockLot.id.asc())
        .with_for_update()
        .all()
    )


@transactional
def allocate_bulk(db: Session, unit: Unit, *, actor: str) -> list[PartMapping]:
    """Consume the full BOM for ``unit`` or nothing at all.

    Material rows are locked (ordered by id) before the shortage check so the
    check and the deduction see the same stock.
    """
    rev = get_revision(db, unit.bom_revision_id)
    items = list(rev.items)

    material_ids = sorted({it.material_id for it in items})
    locked = (
        db.query(Material)
        .filter(Material.id.in_(material_ids))
        .order_by(Material.id.asc())
        .with_for_update()
        .all()
    ) if material_ids else []
    materials = {m.id: m for m in locked}

    short = []
    for it in items:
        m = materials[it.material_id]
        available = Decimal(m.current_stock)
        required = Decimal(it.quantity_per_unit)
        if available < required:
            short.append(
                {
                    "material_id": m.id,
                    "material_code": m.code,
                    "required": required,
                    "available": available,
                    "shortfall": required - available,
                }
            )
    if short:
        logger.warning(
            "Shortage creating %s: %s",
            unit.serial_number,
            ", ".join(f"{s['material_code']} short {s['shortfall']}" for s in short),
        )
        raise ShortageError(short)

    mappings: list[PartMapping] = []
    for it in items:
        need = Decimal(it.quantity_per_unit)
        for lot in _fifo_lots(db, it.material_id):
            if need <= 0:
                break
            take = lot.remaining_quantity if lot.remaining_quantity <= need else need
            consume(
                db,
                lot.id,
                take,
                actor=actor,
                material_id=it.material_id,
                unit_id=unit.id,
                notes=f"bulk allocation {unit.serial_number}",
            )
            pm = PartMapping(
                unit_id=unit.id,
                material_id=it.material_id,
                lot_id=lot.id,
                quantity=take,
                mode="bulk",
                mapped_by=actor,
            )
            db.add(pm)
            mappings.append(pm)
            need -= take
        if need > 0:
            # Aggregate said yes but the lots disagree
            required = Decimal(it.quantity_per_unit)
            raise InsufficientStockError(it.material_id, required, required - need)

    unit.parts_mapping_complete = True
    db.flush()
    return mappings


def mapped_totals(db: Session, unit_id: str) -> dict[str, Decimal]:
    rows = (
        db.query(PartMapping.material_id, func.sum(PartMapping.quantity))
        .filter(PartMapping.unit_id == unit_id)
        .group_by(PartMapping.material_id)
        .all()
    )
    return {material_id: Decimal(str(total or 0)) for material_id, total in rows}


def kitting_status(db: Session, unit_id: str) -> dict:
    unit = get_unit(db, unit_id)
    rev = get_revision(db, unit.bom_revision_id)
    totals = mapped_totals(db, unit.id)
    items = []
    for it in rev.items:
        mapped = totals.get(it.material_id, Decimal(0))
        required = Decimal(it.quantity_per_unit)
        items.append(
            {
                "material_id": it.material_id,
                "material_code": it.material.code,
                "required": required,
                "mapped": mapped,
                "complete": mapped >= required,
                "is_critical": it.is_critical,
            }
        )
    return {
        "unit_id": unit.id,
        "serial_number": unit.serial_number,
        "parts_mapping_complete": unit.parts_mapping_complete,
        "items": items,
    }


@transactional
def map_part(
    db: Session,
    unit_id: str,
    material_id: str,
    lot_id: str,
    quantity: Any,
    *,
    actor: str,
) -> PartMapping:
    """Consume ``quantity`` from a chosen lot into ``unit`` (manual kitting)."""
    unit = get_unit(db, unit_id, for_update=True)
    if unit.status not in KITTING_STATES:
        raise GuardViolationError(f"Parts cannot be mapped while unit is {unit.status}", unit.status)
    qty = to_quantity(quantity)

    rev = get_revision(db, unit.bom_revision_id)
    if material_id not in {it.material_id for it in rev.items}:
        raise ValidationError(
            "Material is not part of the unit's BOM revision",
            {"material_id": material_id, "bom_revision_id": rev.id},
        )
    lot = get_lot(db, lot_id)
    if lot.material_id != material_id:
        raise ValidationError("Lot does not belong to material", {"lot_id": lot.id, "material_id": material_id})

    consume(db, lot.id, qty, actor=actor, material_id=material_id, unit_id=unit.id, notes=f"kitting {unit.serial_number}")
    pm = PartMapping(
        unit_id=unit.id,
        material_id=material_id,
        lot_id=lot.id,
        quantity=qty,
        mode="manual",
        mapped_by=actor,
    )
    db.add(pm)
    db.flush()

    # Completion is sticky; it never reverts once set
    if not unit.parts_mapping_complete:
        totals = mapped_totals(db, unit.id)
        if all(totals.get(it.material_id, Decimal(0)) >= Decimal(it.quantity_per_unit) for it in rev.items):
            unit.parts_mapping_complete = True
            logger.info("Kitting complete for unit %s", unit.serial_number)

    audit(
        db,
        actor=actor,
        action="PART_MAP",
        entity_type="Unit",
        entity_id=unit.id,
        payload={"material_id": material_id, "lot_id": lot.id, "quantity": qty},
    )
    db.flush()
    return pm


def mapping_out(pm: PartMapping) -> dict:
    return {
        "id": pm.id,
        "unit_id": pm.unit_id,
        "material_id": pm.material_id,
        "lot_id": pm.lot_id,
        "quantity": str(pm.quantity),
        "mode": pm.mode,
        "mapped_by": pm.mapped_by,
    }
