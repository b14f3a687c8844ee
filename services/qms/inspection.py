"""
Inspection submission.

Final inspections gate units (pending_final_inspection -> in_stock or
revision_return). Input inspections gate material receipts (accepted into
stock or sent to quarantine). Drafts are saved with an overall result of
``pending`` and change nothing else.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.common import utcnow
from app.db.models.quality import Inspection, Measurement
from app.db.session import transactional
from app.events.bus import publish
from services.ledger.receiving import get_receipt
from services.ledger.service import receive, to_quantity
from services.production.lifecycle import IN_STOCK, PENDING_FINAL_INSPECTION, REVISION_RETURN, get_unit, transition
from services.qms.control_plans import get_plan, spec_for
from services.qms.evaluator import ItemOutcome, Result, Verdict, aggregate, evaluate
from services.qms.ncr import open_ncr
from services.quarantine.workflow import open_item

logger = get_logger(__name__)

TARGET_TYPES = ("unit", "receipt")


def get_inspection(db: Session, inspection_id: str) -> Inspection:
    ins = db.query(Inspection).filter(Inspection.id == inspection_id).first()
    if not ins:
        raise NotFoundError("Inspection", inspection_id)
    return ins


def list_inspections(
    db: Session,
    *,
    unit_id: str | None = None,
    receipt_id: str | None = None,
    include_drafts: bool = True,
) -> list[Inspection]:
    q = db.query(Inspection)
    if unit_id:
        q = q.filter(Inspection.unit_id == unit_id)
    if receipt_id:
        q = q.filter(Inspection.receipt_id == receipt_id)
    if not include_drafts:
        q = q.filter(Inspection.is_draft == False)  # noqa: E712
    return q.order_by(Inspection.created_at.desc()).all()


def _index_measurements(plan_item_ids: set[str], measurements: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    by_item: dict[str, dict[str, Any]] = {}
    for idx, m in enumerate(measurements):
        item_id = m.get("item_id")
        if item_id not in plan_item_ids:
            raise ValidationError("Measurement refers to an item outside the control plan", {"index": idx, "item_id": item_id})
        if item_id in by_item:
            raise ValidationError("Item measured twice", {"index": idx, "item_id": item_id})
        by_item[item_id] = m
    return by_item


def verdict_for(ins: Inspection) -> Verdict:
    return aggregate(
        ItemOutcome(item_id=m.control_plan_item_id, result=Result(m.result), is_critical=m.item.is_critical)
        for m in ins.measurements
    )


@transactional
def submit_inspection(
    db: Session,
    *,
    target_type: str,
    target_id: str,
    control_plan_id: str,
    measurements: list[dict[str, Any]],
    draft: bool,
    actor: str,
    quantity_inspected: Any = None,
    comments: str | None = None,
) -> Inspection:
    if target_type not in TARGET_TYPES:
        raise ValidationError(f"Unknown inspection target '{target_type}'", {"field": "target_type"})
    plan = get_plan(db, control_plan_id)
    if not plan.items:
        raise ValidationError("Control plan has no items", {"control_plan_id": plan.id})
    if not plan.is_active:
        raise ValidationError("Control plan revision has been superseded", {"control_plan_id": plan.id, "revision_no": plan.revision_no})

    unit = receipt = None
    if target_type == "unit":
        unit = get_unit(db, target_id, for_update=True)
        if plan.target_type != "unit" or plan.target_key != unit.model:
            raise ValidationError("Control plan does not apply to this unit's model", {"control_plan_id": plan.id, "model": unit.model})
    else:
        receipt = get_receipt(db, target_id, for_update=True)
        if plan.target_type != "material" or plan.target_key != receipt.material_id:
            raise ValidationError("Control plan does not apply to this material", {"control_plan_id": plan.id, "material_id": receipt.material_id})

    provided = _index_measurements({it.id for it in plan.items}, measurements or [])

    scored: list[tuple[Any, dict[str, Any], Result]] = []
    for item in plan.items:
        m = provided.get(item.id, {})
        try:
            result = evaluate(spec_for(item), m.get("value"))
        except ValidationError as exc:
            raise ValidationError(exc.message, {**exc.details, "item_id": item.id, "item_name": item.name})
        scored.append((item, m, result))
    verdict = aggregate(ItemOutcome(item.id, result, item.is_critical) for item, _, result in scored)

    qty = None
    if receipt is not None:
        qty = to_quantity(quantity_inspected, "quantity_inspected") if quantity_inspected is not None else Decimal(receipt.quantity)
        if qty > receipt.quantity:
            raise ValidationError("quantity_inspected exceeds the received quantity", {"field": "quantity_inspected"})

    if not draft:
        if verdict.result == Result.PENDING:
            names = [item.name for item, _, result in scored if result == Result.PENDING]
            raise ValidationError(
                "Inspection cannot be finalized while items are pending",
                {"pending_items": list(verdict.pending_items), "pending_names": names},
            )
        if unit is not None and unit.status != PENDING_FINAL_INSPECTION:
            raise GuardViolationError(f"Unit is {unit.status}, not awaiting final inspection", unit.status)
        if receipt is not None and receipt.status != "received":
            raise GuardViolationError(f"Receipt is already {receipt.status}", receipt.status)

    # One open draft per target and plan; it is updated in place and finalized later
    ins = (
        db.query(Inspection)
        .filter(
            Inspection.target_type == target_type,
            Inspection.unit_id == (unit.id if unit else None),
            Inspection.receipt_id == (receipt.id if receipt else None),
            Inspection.control_plan_id == plan.id,
            Inspection.is_draft == True,  # noqa: E712
        )
        .with_for_update()
        .first()
    )
    if ins is None:
        ins = Inspection(
            target_type=target_type,
            unit_id=unit.id if unit else None,
            receipt_id=receipt.id if receipt else None,
            control_plan_id=plan.id,
        )
        db.add(ins)

    existing = {m.control_plan_item_id: m for m in ins.measurements}
    for item, m, result in scored:
        value = m.get("value")
        row = existing.get(item.id)
        if row is None:
            row = Measurement(control_plan_item_id=item.id)
            ins.measurements.append(row)
        if item.expected_text is not None:
            row.measured_text = None if value is None else str(value).strip() or None
            row.measured_value = None
        else:
            row.measured_value = None if result == Result.PENDING else Decimal(str(value).strip())
            row.measured_text = None
        row.result = result.value
        row.notes = m.get("notes")

    ins.is_draft = draft
    ins.overall_result = Result.PENDING.value if draft else verdict.result.value
    ins.inspector_id = actor
    ins.quantity_inspected = qty
    ins.comments = comments
    ins.finalized_at = None if draft else utcnow()
    db.flush()

    audit(
        db,
        actor=actor,
        action="INSPECTION_DRAFT" if draft else "INSPECTION_FINALIZE",
        entity_type="Inspection",
        entity_id=ins.id,
        payload={
            "target_type": target_type,
            "target_id": target_id,
            "result": ins.overall_result,
            "computed": verdict.result.value,
            "critical_vetoes": list(verdict.critical_vetoes),
        },
    )
    if draft:
        return ins

    if unit is not None:
        _finalize_unit(db, ins, unit, verdict, actor)
    else:
        _finalize_receipt(db, ins, receipt, qty, verdict, actor)

    publish(
        db,
        "InspectionFinalized",
        {"inspection_id": ins.id, "target_type": target_type, "target_id": target_id, "result": ins.overall_result},
    )
    logger.info("Inspection %s on %s %s finalized: %s", ins.id, target_type, target_id, ins.overall_result)
    return ins


def _finalize_unit(db: Session, ins: Inspection, unit, verdict: Verdict, actor: str) -> None:
    if verdict.result == Result.OK:
        transition(db, unit.id, IN_STOCK, actor=actor, reason=f"final inspection {ins.id} ok")
        return

    transition(db, unit.id, REVISION_RETURN, actor=actor, reason=f"final inspection {ins.id} ret")
    failed = ", ".join(m.item.name for m in ins.measurements if m.result == Result.RET.value)
    open_ncr(
        db,
        description=f"Final inspection rejected unit {unit.serial_number}: {failed}",
        actor=actor,
        unit_id=unit.id,
        inspection_id=ins.id,
    )


def _finalize_receipt(db: Session, ins: Inspection, receipt, qty: Decimal, verdict: Verdict, actor: str) -> None:
    if verdict.result == Result.OK:
        receipt.status = "accepted"
        receive(
            db,
            receipt.material_id,
            qty,
            actor=actor,
            entry_date=receipt.receipt_date,
            supplier_id=receipt.supplier_id,
            invoice_number=receipt.invoice_number,
            lot_number=receipt.lot_number,
            source="inspection",
            source_ref=ins.id,
        )
        return

    receipt.status = "rejected"
    failed = ", ".join(m.item.name for m in ins.measurements if m.result == Result.RET.value)
    open_item(
        db,
        material_id=receipt.material_id,
        quantity=qty,
        reason=f"Input inspection rejected: {failed}",
        actor=actor,
        receipt_id=receipt.id,
        inspection_id=ins.id,
        supplier_id=receipt.supplier_id,
        lot_number=receipt.lot_number,
        invoice_number=receipt.invoice_number,
    )


def inspection_out(ins: Inspection) -> dict:
    verdict = verdict_for(ins)
    return {
        "id": ins.id,
        "target_type": ins.target_type,
        "unit_id": ins.unit_id,
        "receipt_id": ins.receipt_id,
        "control_plan_id": ins.control_plan_id,
        "overall_result": ins.overall_result,
        "computed_result": verdict.result.value,
        "critical_vetoes": list(verdict.critical_vetoes),
        "is_draft": ins.is_draft,
        "inspector_id": ins.inspector_id,
        "quantity_inspected": str(ins.quantity_inspected) if ins.quantity_inspected is not None else None,
        "finalized_at": ins.finalized_at.isoformat() if ins.finalized_at else None,
        "measurements": [
            {
                "item_id": m.control_plan_item_id,
                "measured_value": str(m.measured_value) if m.measured_value is not None else None,
                "measured_text": m.measured_text,
                "result": m.result,
            }
            for m in ins.measurements
        ],
    }
