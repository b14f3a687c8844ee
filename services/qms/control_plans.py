from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.quality import ControlPlanItem, ControlPlanRevision
from app.db.session import transactional
from services.ledger.service import get_material
from services.qms.evaluator import MeasurementSpec, NumericSpec, TextualSpec

logger = get_logger(__name__)

TARGET_TYPES = ("unit", "material")


def spec_for(item: ControlPlanItem) -> MeasurementSpec:
    if item.expected_text is not None:
        return TextualSpec(expected=item.expected_text)
    return NumericSpec(
        lower=Decimal(item.lower_limit) if item.lower_limit is not None else None,
        upper=Decimal(item.upper_limit) if item.upper_limit is not None else None,
    )


def _limit(value: Any, field: str, idx: int) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        out = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", {"index": idx, "field": field})
    if not out.is_finite():
        raise ValidationError(f"{field} must be finite", {"index": idx, "field": field})
    return out


def _validate_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    out = []
    for idx, raw in enumerate(items):
        name = (raw.get("name") or "").strip()
        if not name:
            raise ValidationError("Control plan item name is required", {"index": idx})
        lower = _limit(raw.get("lower_limit"), "lower_limit", idx)
        upper = _limit(raw.get("upper_limit"), "upper_limit", idx)
        expected = raw.get("expected_text")
        expected = expected.strip() if isinstance(expected, str) and expected.strip() else None
        if expected is not None and (lower is not None or upper is not None):
            raise ValidationError("An item is either numeric or textual, not both", {"index": idx})
        if lower is not None and upper is not None and lower > upper:
            raise ValidationError("lower_limit is above upper_limit", {"index": idx})
        out.append(
            {
                "name": name,
                "characteristic": raw.get("characteristic"),
                "measurement_method": raw.get("measurement_method"),
                "lower_limit": lower,
                "upper_limit": upper,
                "nominal_value": _limit(raw.get("nominal_value"), "nominal_value", idx),
                "unit": raw.get("unit"),
                "expected_text": expected,
                "is_critical": bool(raw.get("is_critical", False)),
                "sort_order": idx,
            }
        )
    return out


def get_plan(db: Session, plan_id: str) -> ControlPlanRevision:
    p = db.query(ControlPlanRevision).filter(ControlPlanRevision.id == plan_id).first()
    if not p:
        raise NotFoundError("ControlPlan", plan_id)
    return p


def get_active_plan(db: Session, target_type: str, target_key: str) -> ControlPlanRevision | None:
    return (
        db.query(ControlPlanRevision)
        .filter(
            ControlPlanRevision.target_type == target_type,
            ControlPlanRevision.target_key == target_key,
            ControlPlanRevision.is_active == True,  # noqa: E712
        )
        .first()
    )


def list_plans(db: Session, *, target_type: str | None = None, target_key: str | None = None) -> list[ControlPlanRevision]:
    q = db.query(ControlPlanRevision)
    if target_type:
        q = q.filter(ControlPlanRevision.target_type == target_type)
    if target_key:
        q = q.filter(ControlPlanRevision.target_key == target_key)
    return q.order_by(ControlPlanRevision.target_key.asc(), ControlPlanRevision.revision_no.desc()).all()


@transactional
def activate_control_plan(
    db: Session,
    target_type: str,
    target_key: str,
    items: list[dict[str, Any]],
    *,
    actor: str,
    name: str | None = None,
    description: str | None = None,
) -> ControlPlanRevision:
    if target_type not in TARGET_TYPES:
        raise ValidationError(f"Unknown control plan target '{target_type}'", {"field": "target_type"})
    target_key = (target_key or "").strip()
    if not target_key:
        raise ValidationError("target_key is required", {"field": "target_key"})
    if target_type == "material":
        get_material(db, target_key)
    clean = _validate_items(items or [])
    if not clean:
        raise ValidationError("A control plan needs at least one item", {"field": "items"})

    existing = (
        db.query(ControlPlanRevision)
        .filter(ControlPlanRevision.target_type == target_type, ControlPlanRevision.target_key == target_key)
        .order_by(ControlPlanRevision.revision_no.asc())
        .with_for_update()
        .all()
    )
    for rev in existing:
        rev.is_active = False
    next_no = (existing[-1].revision_no + 1) if existing else 1

    try:
        db.flush()
        plan = ControlPlanRevision(
            target_type=target_type,
            target_key=target_key,
            revision_no=next_no,
            name=name,
            is_active=True,
            description=description,
            created_by=actor,
        )
        plan.items = [ControlPlanItem(**it) for it in clean]
        db.add(plan)
        db.flush()
    except IntegrityError as exc:
        raise ConcurrencyConflictError(
            f"Control plan for {target_type} {target_key} was changed concurrently",
            {"target_type": target_type, "target_key": target_key},
        ) from exc

    audit(
        db,
        actor=actor,
        action="CONTROL_PLAN_ACTIVATE",
        entity_type="ControlPlan",
        entity_id=plan.id,
        payload={"target_type": target_type, "target_key": target_key, "revision_no": next_no, "items": len(clean)},
    )
    logger.info("Control plan %s/%s revision %s activated", target_type, target_key, next_no)
    return plan


def plan_out(p: ControlPlanRevision) -> dict:
    return {
        "id": p.id,
        "target_type": p.target_type,
        "target_key": p.target_key,
        "revision_no": p.revision_no,
        "name": p.name,
        "is_active": p.is_active,
        "items": [
            {
                "id": it.id,
                "name": it.name,
                "characteristic": it.characteristic,
                "lower_limit": str(it.lower_limit) if it.lower_limit is not None else None,
                "upper_limit": str(it.upper_limit) if it.upper_limit is not None else None,
                "nominal_value": str(it.nominal_value) if it.nominal_value is not None else None,
                "unit": it.unit,
                "expected_text": it.expected_text,
                "is_critical": it.is_critical,
            }
            for it in p.items
        ],
    }
