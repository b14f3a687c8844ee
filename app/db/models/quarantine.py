from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt
from app.db.models.materials import Material


class QuarantineItem(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_quarantine_item"

    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    lot_id: Mapped[str | None] = mapped_column(ForeignKey("mat_stock_lot.id"), nullable=True, index=True)
    receipt_id: Mapped[str | None] = mapped_column(ForeignKey("mat_receipt.id"), nullable=True, index=True)
    inspection_id: Mapped[str | None] = mapped_column(ForeignKey("qms_inspection.id"), nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("mat_supplier.id"), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="quarantined", nullable=False, index=True)  # quarantined|returned|released

    decision_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_lot_id: Mapped[str | None] = mapped_column(ForeignKey("mat_stock_lot.id"), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    material: Mapped[Material] = relationship()
