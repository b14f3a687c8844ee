"""
Bill of materials, versioned per gearbox model.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import String, Date, Integer, Numeric, ForeignKey, Boolean, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt
from app.db.models.materials import Material


class BomRevision(Base, HasId, HasCreatedAt):
    __tablename__ = "bom_revision"

    model: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    revision_no: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    items: Mapped[list["BomItem"]] = relationship(
        back_populates="revision",
        order_by="BomItem.sort_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (UniqueConstraint("model", "revision_no", name="uq_bom_model_revision"),)


# At most one active revision per model
Index(
    "uq_bom_active_model",
    BomRevision.model,
    unique=True,
    postgresql_where=BomRevision.is_active.is_(True),
    sqlite_where=BomRevision.is_active.is_(True),
)


class BomItem(Base, HasId, HasCreatedAt):
    __tablename__ = "bom_item"

    bom_revision_id: Mapped[str] = mapped_column(ForeignKey("bom_revision.id"), nullable=False, index=True)
    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    quantity_per_unit: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    revision: Mapped[BomRevision] = relationship(back_populates="items")
    material: Mapped[Material] = relationship()
