"""
Production capacity from the active BOM and current stock.

Non-authoritative: unit creation re-checks stock under locks.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from services.bom.registry import get_active

NO_BOM = "no BOM defined"


def possible_units(current_stock: Decimal, quantity_per_unit: Decimal) -> int:
    return int((Decimal(current_stock) / Decimal(quantity_per_unit)).to_integral_value(rounding=ROUND_FLOOR))


def needed_for_target(target_units: int, quantity_per_unit: Decimal, current_stock: Decimal) -> Decimal:
    """Stock to add so that ``target_units`` can be built."""
    gap = Decimal(target_units) * Decimal(quantity_per_unit) - Decimal(current_stock)
    return max(Decimal(0), gap.to_integral_value(rounding=ROUND_CEILING))


def get_capacity(db: Session, model: str, extra: int = 0) -> dict:
    if extra < 0:
        raise ValidationError("extra cannot be negative", {"field": "extra"})

    rev = get_active(db, model)
    if rev is None or not rev.items:
        return {
            "model": model,
            "bom_revision_id": rev.id if rev else None,
            "max_units": 0,
            "bottleneck": NO_BOM,
            "per_material": [],
        }

    rows = []
    max_units: int | None = None
    bottleneck = None
    for item in rev.items:
        qpu = Decimal(item.quantity_per_unit)
        if qpu <= 0:
            continue
        material = item.material
        possible = possible_units(material.current_stock, qpu)
        # Strict comparison keeps the first item on ties
        if max_units is None or possible < max_units:
            max_units = possible
            bottleneck = material
        rows.append((item, material, qpu, possible))

    if max_units is None:
        return {"model": model, "bom_revision_id": rev.id, "max_units": 0, "bottleneck": NO_BOM, "per_material": []}

    target = max_units + extra
    return {
        "model": model,
        "bom_revision_id": rev.id,
        "max_units": max_units,
        "bottleneck": {"material_id": bottleneck.id, "code": bottleneck.code, "name": bottleneck.name},
        "per_material": [
            {
                "material_id": material.id,
                "code": material.code,
                "name": material.name,
                "quantity_per_unit": qpu,
                "current_stock": Decimal(material.current_stock),
                "possible": possible,
                "is_critical": item.is_critical or material.is_critical,
                "needed_for_target": needed_for_target(target, qpu, material.current_stock),
            }
            for item, material, qpu, possible in rows
        ],
    }
