"""
Sequence counters for unit serial numbers and NCR numbers.

A counter row is read with ``SELECT ... FOR UPDATE`` and incremented inside
the caller's transaction, so a rollback also gives the number back.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import SERIAL_PREFIX, NCR_PREFIX
from app.core.errors import ConcurrencyConflictError
from app.db.models.counters import SequenceCounter

UNIT_SERIAL_SCOPE = "unit_serial"
NCR_SCOPE = "ncr"


def next_value(db: Session, scope: str, key: str) -> int:
    row = (
        db.query(SequenceCounter)
        .filter(SequenceCounter.scope == scope, SequenceCounter.key == key)
        .with_for_update()
        .first()
    )
    if row is None:
        row = SequenceCounter(scope=scope, key=key, last_value=0)
        db.add(row)
        try:
            db.flush()
        except IntegrityError as exc:
            # Another transaction created the same counter first
            raise ConcurrencyConflictError(
                f"Counter {scope}/{key} was created concurrently",
                {"scope": scope, "key": key},
            ) from exc

    row.last_value = row.last_value + 1
    db.flush()
    return row.last_value


def format_serial(production_date: date, model: str, sequence: int) -> str:
    return f"{SERIAL_PREFIX}{production_date:%Y%m%d}-{model}-{sequence:03d}"


def next_serial(db: Session, production_date: date, model: str) -> tuple[str, int]:
    """Return ``(serial_number, sequence_number)`` for a unit built on ``production_date``."""
    seq = next_value(db, UNIT_SERIAL_SCOPE, f"{production_date:%Y%m%d}:{model}")
    return format_serial(production_date, model, seq), seq


def next_ncr_number(db: Session, year: int) -> str:
    seq = next_value(db, NCR_SCOPE, str(year))
    return f"{NCR_PREFIX}-{year}-{seq:04d}"
