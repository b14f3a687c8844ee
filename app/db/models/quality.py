"""
Control plans, inspections and nonconformance records.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Integer, Numeric, ForeignKey, Boolean, Index, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt


class ControlPlanRevision(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_control_plan"

    target_type: Mapped[str] = mapped_column(String(16), nullable=False)  # unit|material
    target_key: Mapped[str] = mapped_column(String(64), nullable=False)  # gearbox model or material id
    revision_no: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    items: Mapped[list["ControlPlanItem"]] = relationship(
        back_populates="plan",
        order_by="ControlPlanItem.sort_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("target_type", "target_key", "revision_no", name="uq_control_plan_target_revision"),
    )


Index(
    "uq_control_plan_active_target",
    ControlPlanRevision.target_type,
    ControlPlanRevision.target_key,
    unique=True,
    postgresql_where=ControlPlanRevision.is_active.is_(True),
    sqlite_where=ControlPlanRevision.is_active.is_(True),
)


class ControlPlanItem(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_control_plan_item"

    control_plan_id: Mapped[str] = mapped_column(ForeignKey("qms_control_plan.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    characteristic: Mapped[str | None] = mapped_column(String(256), nullable=True)
    measurement_method: Mapped[str | None] = mapped_column(String(256), nullable=True)

    # Numeric items carry limits, textual items carry expected_text; never both
    lower_limit: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    upper_limit: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    nominal_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(16), nullable=True)
    expected_text: Mapped[str | None] = mapped_column(String(128), nullable=True)

    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    plan: Mapped[ControlPlanRevision] = relationship(back_populates="items")


class Inspection(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_inspection"

    target_type: Mapped[str] = mapped_column(String(16), nullable=False)  # unit|receipt
    unit_id: Mapped[str | None] = mapped_column(ForeignKey("prd_unit.id"), nullable=True, index=True)
    receipt_id: Mapped[str | None] = mapped_column(ForeignKey("mat_receipt.id"), nullable=True, index=True)
    control_plan_id: Mapped[str] = mapped_column(ForeignKey("qms_control_plan.id"), nullable=False, index=True)

    overall_result: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)  # ok|ret|pending
    is_draft: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    inspector_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    quantity_inspected: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    measurements: Mapped[list["Measurement"]] = relationship(
        back_populates="inspection",
        cascade="all, delete-orphan",
    )
    plan: Mapped[ControlPlanRevision] = relationship()


Index("ix_inspection_unit_final", Inspection.unit_id, Inspection.is_draft, Inspection.finalized_at)


class Measurement(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_measurement"

    inspection_id: Mapped[str] = mapped_column(ForeignKey("qms_inspection.id"), nullable=False, index=True)
    control_plan_item_id: Mapped[str] = mapped_column(ForeignKey("qms_control_plan_item.id"), nullable=False)
    measured_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    measured_text: Mapped[str | None] = mapped_column(String(128), nullable=True)
    result: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)  # ok|ret|pending
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    inspection: Mapped[Inspection] = relationship(back_populates="measurements")
    item: Mapped[ControlPlanItem] = relationship()

    __table_args__ = (UniqueConstraint("inspection_id", "control_plan_item_id", name="uq_measurement_item"),)


class NcrRecord(Base, HasId, HasCreatedAt):
    __tablename__ = "qms_ncr"

    ncr_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    unit_id: Mapped[str | None] = mapped_column(ForeignKey("prd_unit.id"), nullable=True, index=True)
    inspection_id: Mapped[str | None] = mapped_column(ForeignKey("qms_inspection.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="open", nullable=False, index=True)  # open|analysis|action|closed
    description: Mapped[str] = mapped_column(Text, nullable=False)
    root_cause: Mapped[str | None] = mapped_column(Text, nullable=True)
    corrective_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    responsible_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    target_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    opened_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
