"""
Material master, lot ledger and goods receipts.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import String, Date, Numeric, ForeignKey, JSON, Boolean, Index, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt


class Supplier(Base, HasId, HasCreatedAt):
    __tablename__ = "mat_supplier"

    name: Mapped[str] = mapped_column(String(256), nullable=False)
    code: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True, index=True)
    contact_person: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Material(Base, HasId, HasCreatedAt):
    __tablename__ = "mat_material"

    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), default="component", nullable=False)  # raw_material|component|consumable
    unit: Mapped[str] = mapped_column(String(16), default="pcs", nullable=False)  # pcs|kg|lt|m|mm|set

    # Aggregate of lot.remaining_quantity; only the ledger writes it
    current_stock: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0, nullable=False)
    min_stock: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0, nullable=False)
    target_stock: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0, nullable=False)

    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_supplier_id: Mapped[str | None] = mapped_column(ForeignKey("mat_supplier.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    default_supplier: Mapped[Supplier | None] = relationship()

    __table_args__ = (CheckConstraint("current_stock >= 0", name="ck_material_stock_non_negative"),)


class StockLot(Base, HasId, HasCreatedAt):
    __tablename__ = "mat_stock_lot"

    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("mat_supplier.id"), nullable=True, index=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    lot_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    remaining_quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    source: Mapped[str] = mapped_column(String(32), default="receipt", nullable=False)  # receipt|inspection|quarantine_release
    source_ref: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    material: Mapped[Material] = relationship()
    supplier: Mapped[Supplier | None] = relationship()

    __table_args__ = (
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= quantity", name="ck_lot_remaining_le_quantity"),
    )


Index("ix_lot_material_fifo", StockLot.material_id, StockLot.entry_date, StockLot.created_at)


class StockMovement(Base, HasId, HasCreatedAt):
    """Append-only. Never updated after insert."""

    __tablename__ = "mat_stock_movement"

    movement_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # RECEIPT|CONSUMPTION|QUARANTINE
    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    lot_id: Mapped[str] = mapped_column(ForeignKey("mat_stock_lot.id"), nullable=False, index=True)
    unit_id: Mapped[str | None] = mapped_column(ForeignKey("prd_unit.id"), nullable=True, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(512), nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


Index("ix_movement_material_time", StockMovement.material_id, StockMovement.created_at)


class MaterialReceipt(Base, HasId, HasCreatedAt):
    """Goods delivered and recorded, waiting for input inspection before entering stock."""

    __tablename__ = "mat_receipt"

    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("mat_supplier.id"), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), default="received", nullable=False, index=True)  # received|accepted|rejected
    received_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    material: Mapped[Material] = relationship()
    supplier: Mapped[Supplier | None] = relationship()
