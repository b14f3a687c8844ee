from __future__ import annotations

from sqlalchemy import String, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt


class SequenceCounter(Base, HasId, HasCreatedAt):
    """Last issued value per (scope, key), e.g. ("unit_serial", "20240101:A")."""

    __tablename__ = "sys_sequence_counter"

    scope: Mapped[str] = mapped_column(String(64), nullable=False)
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (UniqueConstraint("scope", "key", name="uq_sequence_scope_key"),)
