"""
Unit lifecycle state machine.

Status only changes through :func:`transition`. Each allowed edge has an
optional guard that inspects persisted evidence (inspections, shipments,
assembly records); an edge missing from ``TRANSITIONS`` is refused.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.common import utcnow
from app.db.models.production import ShipmentLine, Unit, VehicleAssembly
from app.db.models.quality import Inspection
from app.db.session import transactional
from app.events.bus import publish

logger = get_logger(__name__)

PRODUCING = "producing"
PENDING_FINAL_INSPECTION = "pending_final_inspection"
IN_STOCK = "in_stock"
SHIPPED = "shipped"
INSTALLED = "installed"
REVISION_RETURN = "revision_return"
SCRAPPED = "scrapped"

STATES = (PRODUCING, PENDING_FINAL_INSPECTION, IN_STOCK, SHIPPED, INSTALLED, REVISION_RETURN, SCRAPPED)
TERMINAL = frozenset({INSTALLED, SCRAPPED})

# Returns None when the transition may proceed, otherwise the refusal message
Guard = Callable[[Session, Unit], "str | None"]


def latest_final_inspection(db: Session, unit_id: str, since: datetime | None = None) -> Inspection | None:
    q = db.query(Inspection).filter(
        Inspection.target_type == "unit",
        Inspection.unit_id == unit_id,
        Inspection.is_draft == False,  # noqa: E712
    )
    if since is not None:
        q = q.filter(Inspection.finalized_at >= since)
    return q.order_by(Inspection.finalized_at.desc(), Inspection.created_at.desc()).first()


def _inspection_result_is(expected: str) -> Guard:
    def guard(db: Session, unit: Unit) -> str | None:
        # Only an inspection finalized since the unit entered its current status counts
        ins = latest_final_inspection(db, unit.id, since=unit.status_changed_at)
        if ins is None:
            return f"No final inspection finalized since unit became {unit.status}"
        if ins.overall_result != expected:
            return f"Latest final inspection is '{ins.overall_result}', expected '{expected}'"
        return None

    return guard


def _on_shipment(db: Session, unit: Unit) -> str | None:
    if not db.query(ShipmentLine.id).filter(ShipmentLine.unit_id == unit.id).first():
        return "Unit is not on a shipment"
    return None


def _assembled(db: Session, unit: Unit) -> str | None:
    if not db.query(VehicleAssembly.id).filter(VehicleAssembly.unit_id == unit.id).first():
        return "No vehicle assembly recorded for unit"
    return None


TRANSITIONS: dict[tuple[str, str], Guard | None] = {
    (PRODUCING, PENDING_FINAL_INSPECTION): None,
    (PENDING_FINAL_INSPECTION, IN_STOCK): _inspection_result_is("ok"),
    (PENDING_FINAL_INSPECTION, REVISION_RETURN): _inspection_result_is("ret"),
    (IN_STOCK, SHIPPED): _on_shipment,
    (SHIPPED, INSTALLED): _assembled,
    (REVISION_RETURN, PENDING_FINAL_INSPECTION): None,
    (REVISION_RETURN, PRODUCING): None,
}


def allowed_targets(status: str) -> list[str]:
    targets = [to for (frm, to) in TRANSITIONS if frm == status]
    if status not in TERMINAL:
        targets.append(SCRAPPED)
    return targets


def get_unit(db: Session, unit_id: str, *, for_update: bool = False) -> Unit:
    q = db.query(Unit).filter(Unit.id == unit_id)
    if for_update:
        q = q.with_for_update()
    unit = q.first()
    if not unit:
        raise NotFoundError("Unit", unit_id)
    return unit


@transactional
def transition(db: Session, unit_id: str, to_status: str, *, actor: str, reason: str | None = None) -> Unit:
    if to_status not in STATES:
        raise ValidationError(f"Unknown unit status '{to_status}'", {"field": "status"})
    unit = get_unit(db, unit_id, for_update=True)
    prior = unit.status

    if to_status == SCRAPPED:
        if prior in TERMINAL:
            raise GuardViolationError(f"Unit is {prior}; it cannot be scrapped", prior, to_status)
        if not (reason or "").strip():
            raise ValidationError("A reason is required to scrap a unit", {"field": "reason"})
    else:
        if (prior, to_status) not in TRANSITIONS:
            logger.warning("Refused %s -> %s for unit %s", prior, to_status, unit.serial_number)
            raise GuardViolationError(f"Transition {prior} -> {to_status} is not allowed", prior, to_status)
        guard = TRANSITIONS[(prior, to_status)]
        refusal = guard(db, unit) if guard else None
        if refusal:
            logger.warning("Guard refused %s -> %s for unit %s: %s", prior, to_status, unit.serial_number, refusal)
            raise GuardViolationError(refusal, prior, to_status)

    unit.status = to_status
    unit.status_changed_at = utcnow()
    if (prior, to_status) == (PRODUCING, PENDING_FINAL_INSPECTION):
        unit.production_end = utcnow()
    db.flush()

    audit(
        db,
        actor=actor,
        action="UNIT_STATUS_CHANGE",
        entity_type="Unit",
        entity_id=unit.id,
        payload={"from": prior, "to": to_status, "reason": reason},
    )
    publish(
        db,
        "UnitStatusChanged",
        {"unit_id": unit.id, "serial_number": unit.serial_number, "from": prior, "to": to_status, "reason": reason},
    )
    logger.info("Unit %s: %s -> %s", unit.serial_number, prior, to_status)
    return unit


def scrap(db: Session, unit_id: str, reason: str, *, actor: str) -> Unit:
    return transition(db, unit_id, SCRAPPED, actor=actor, reason=reason)
