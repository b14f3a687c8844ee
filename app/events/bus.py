from __future__ import annotations

from sqlalchemy.orm import Session

from app.events.outbox import OutboxEvent


def publish(db: Session, topic: str, payload: dict) -> OutboxEvent:
    """Publish an event by writing to the transactional outbox.

    The row is only added and flushed; it commits or rolls back together
    with the caller's transaction.
    """
    evt = OutboxEvent(
        topic=topic,
        payload=payload or {},
        delivered=False,
    )
    db.add(evt)
    db.flush()
    return evt
