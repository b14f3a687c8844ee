from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Integer, Numeric, ForeignKey, Boolean, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt
from app.db.models.bom import BomRevision
from app.db.models.materials import Material, StockLot


class Unit(Base, HasId, HasCreatedAt):
    """A single gearbox, from production start to vehicle assembly."""

    __tablename__ = "prd_unit"

    serial_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    model: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    production_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # producing|pending_final_inspection|in_stock|shipped|installed|revision_return|scrapped
    status: Mapped[str] = mapped_column(String(32), default="producing", nullable=False, index=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    bom_revision_id: Mapped[str] = mapped_column(ForeignKey("bom_revision.id"), nullable=False, index=True)
    parts_mapping_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    production_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    production_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responsible_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    work_order: Mapped[str | None] = mapped_column(String(64), nullable=True)
    production_line: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    bom_revision: Mapped[BomRevision] = relationship()
    mappings: Mapped[list["PartMapping"]] = relationship(back_populates="unit", order_by="PartMapping.created_at")


Index("ix_unit_model_date", Unit.model, Unit.production_date)


class PartMapping(Base, HasId, HasCreatedAt):
    """Which lot fed which unit, and how much."""

    __tablename__ = "prd_part_mapping"

    unit_id: Mapped[str] = mapped_column(ForeignKey("prd_unit.id"), nullable=False, index=True)
    material_id: Mapped[str] = mapped_column(ForeignKey("mat_material.id"), nullable=False, index=True)
    lot_id: Mapped[str] = mapped_column(ForeignKey("mat_stock_lot.id"), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), default="bulk", nullable=False)  # bulk|manual
    mapped_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    unit: Mapped[Unit] = relationship(back_populates="mappings")
    material: Mapped[Material] = relationship()
    lot: Mapped[StockLot] = relationship()


class Shipment(Base, HasId, HasCreatedAt):
    __tablename__ = "prd_shipment"

    shipment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(256), nullable=False)
    customer_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    waybill_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipped_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["ShipmentLine"]] = relationship(back_populates="shipment", cascade="all, delete-orphan")


class ShipmentLine(Base, HasId, HasCreatedAt):
    __tablename__ = "prd_shipment_line"

    shipment_id: Mapped[str] = mapped_column(ForeignKey("prd_shipment.id"), nullable=False, index=True)
    unit_id: Mapped[str] = mapped_column(ForeignKey("prd_unit.id"), nullable=False, unique=True, index=True)

    shipment: Mapped[Shipment] = relationship(back_populates="lines")
    unit: Mapped[Unit] = relationship()


class VehicleAssembly(Base, HasId, HasCreatedAt):
    __tablename__ = "prd_vehicle_assembly"

    unit_id: Mapped[str] = mapped_column(ForeignKey("prd_unit.id"), nullable=False, unique=True, index=True)
    assembly_date: Mapped[date] = mapped_column(Date, nullable=False)
    vin_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vehicle_plate: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    assembled_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    unit: Mapped[Unit] = relationship()
