from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import GuardViolationError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.db.models.common import utcnow
from app.db.models.quality import NcrRecord
from app.db.session import transactional
from app.events.bus import publish
from services.numbering import next_ncr_number

logger = get_logger(__name__)

NCR_FLOW = ("open", "analysis", "action", "closed")


def get_ncr(db: Session, ncr_id: str, *, for_update: bool = False) -> NcrRecord:
    q = db.query(NcrRecord).filter(NcrRecord.id == ncr_id)
    if for_update:
        q = q.with_for_update()
    n = q.first()
    if not n:
        raise NotFoundError("NCR", ncr_id)
    return n


def list_ncrs(db: Session, *, status: str | None = None, unit_id: str | None = None, limit: int = 200) -> list[NcrRecord]:
    q = db.query(NcrRecord)
    if status:
        q = q.filter(NcrRecord.status == status)
    if unit_id:
        q = q.filter(NcrRecord.unit_id == unit_id)
    return q.order_by(NcrRecord.created_at.desc()).limit(limit).all()


@transactional
def open_ncr(
    db: Session,
    *,
    description: str,
    actor: str,
    unit_id: str | None = None,
    inspection_id: str | None = None,
    responsible_user_id: str | None = None,
    target_date: date | None = None,
) -> NcrRecord:
    if not (description or "").strip():
        raise ValidationError("description is required", {"field": "description"})
    number = next_ncr_number(db, utcnow().year)
    ncr = NcrRecord(
        ncr_number=number,
        unit_id=unit_id,
        inspection_id=inspection_id,
        status="open",
        description=description.strip(),
        responsible_user_id=responsible_user_id,
        target_date=target_date,
        opened_by=actor,
    )
    db.add(ncr)
    db.flush()
    audit(db, actor=actor, action="NCR_OPEN", entity_type="NCR", entity_id=ncr.id, payload={"ncr_number": number, "unit_id": unit_id})
    publish(db, "NcrOpened", {"ncr_id": ncr.id, "ncr_number": number, "unit_id": unit_id})
    logger.info("NCR %s opened", number)
    return ncr


@transactional
def update_ncr(
    db: Session,
    ncr_id: str,
    *,
    actor: str,
    status: str | None = None,
    root_cause: str | None = None,
    corrective_action: str | None = None,
    responsible_user_id: str | None = None,
    target_date: date | None = None,
) -> NcrRecord:
    """Edit an NCR and optionally move it forward along open -> analysis -> action -> closed."""
    ncr = get_ncr(db, ncr_id, for_update=True)
    if ncr.status == "closed":
        raise GuardViolationError(f"NCR {ncr.ncr_number} is closed", ncr.status, status)

    if root_cause is not None:
        ncr.root_cause = root_cause
    if corrective_action is not None:
        ncr.corrective_action = corrective_action
    if responsible_user_id is not None:
        ncr.responsible_user_id = responsible_user_id
    if target_date is not None:
        ncr.target_date = target_date

    prior = ncr.status
    if status is not None and status != prior:
        if status not in NCR_FLOW:
            raise ValidationError(f"Unknown NCR status '{status}'", {"field": "status"})
        if NCR_FLOW.index(status) < NCR_FLOW.index(prior):
            raise GuardViolationError(f"NCR cannot move back from {prior} to {status}", prior, status)
        if status == "closed":
            if not (ncr.corrective_action or "").strip():
                raise ValidationError("A corrective action is required to close an NCR", {"field": "corrective_action"})
            ncr.closed_at = utcnow()
            ncr.closed_by = actor
        ncr.status = status

    db.flush()
    audit(
        db,
        actor=actor,
        action="NCR_UPDATE",
        entity_type="NCR",
        entity_id=ncr.id,
        payload={"from": prior, "to": ncr.status},
    )
    if ncr.status != prior:
        logger.info("NCR %s: %s -> %s", ncr.ncr_number, prior, ncr.status)
    return ncr


def ncr_out(n: NcrRecord) -> dict:
    return {
        "id": n.id,
        "ncr_number": n.ncr_number,
        "unit_id": n.unit_id,
        "inspection_id": n.inspection_id,
        "status": n.status,
        "description": n.description,
        "root_cause": n.root_cause,
        "corrective_action": n.corrective_action,
        "responsible_user_id": n.responsible_user_id,
        "target_date": n.target_date.isoformat() if n.target_date else None,
        "closed_at": n.closed_at.isoformat() if n.closed_at else None,
        "closed_by": n.closed_by,
    }
