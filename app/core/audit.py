from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
) -> AuditLog:
    """Write an append-only audit record inside the caller's transaction.

    Keep payload JSON-serializable.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        # Decimal/date values are stored as strings
        safe_payload = json.loads(json.dumps(safe_payload, default=str))
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    row = AuditLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=safe_payload,
    )
    db.add(row)
    return row
