"""initial gearbox traceability schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _base():
    return [
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _qty(name, nullable=False, **kw):
    return sa.Column(name, sa.Numeric(18, 6), nullable=nullable, **kw)


def upgrade():
    # Materials
    op.create_table(
        "mat_supplier",
        *_base(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True, unique=True),
        sa.Column("contact_person", sa.String(length=128), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
    )

    op.create_table(
        "mat_material",
        *_base(),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="component"),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="pcs"),
        _qty("current_stock", server_default="0"),
        _qty("min_stock", server_default="0"),
        _qty("target_stock", server_default="0"),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("default_supplier_id", sa.String(length=36), sa.ForeignKey("mat_supplier.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("current_stock >= 0", name="ck_material_stock_non_negative"),
    )

    op.create_table(
        "mat_stock_lot",
        *_base(),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("mat_supplier.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("lot_number", sa.String(length=64), nullable=True),
        _qty("quantity"),
        _qty("remaining_quantity"),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="receipt"),
        sa.Column("source_ref", sa.String(length=36), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        sa.CheckConstraint("remaining_quantity <= quantity", name="ck_lot_remaining_le_quantity"),
    )
    op.create_index("ix_lot_material_fifo", "mat_stock_lot", ["material_id", "entry_date", "created_at"])

    op.create_table(
        "mat_receipt",
        *_base(),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("mat_supplier.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("lot_number", sa.String(length=64), nullable=True),
        _qty("quantity"),
        sa.Column("receipt_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="received"),
        sa.Column("received_by", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_mat_receipt_status", "mat_receipt", ["status"])

    # BOM
    op.create_table(
        "bom_revision",
        *_base(),
        sa.Column("model", sa.String(length=16), nullable=False),
        sa.Column("revision_no", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.UniqueConstraint("model", "revision_no", name="uq_bom_model_revision"),
    )
    op.create_index(
        "uq_bom_active_model",
        "bom_revision",
        ["model"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "bom_item",
        *_base(),
        sa.Column("bom_revision_id", sa.String(length=36), sa.ForeignKey("bom_revision.id"), nullable=False),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        _qty("quantity_per_unit"),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_bom_item_bom_revision_id", "bom_item", ["bom_revision_id"])

    # Production
    op.create_table(
        "prd_unit",
        *_base(),
        sa.Column("serial_number", sa.String(length=64), nullable=False, unique=True),
        sa.Column("model", sa.String(length=16), nullable=False),
        sa.Column("production_date", sa.Date(), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="producing"),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bom_revision_id", sa.String(length=36), sa.ForeignKey("bom_revision.id"), nullable=False),
        sa.Column("parts_mapping_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("production_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("production_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responsible_user_id", sa.String(length=128), nullable=True),
        sa.Column("work_order", sa.String(length=64), nullable=True),
        sa.Column("production_line", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_prd_unit_status", "prd_unit", ["status"])
    op.create_index("ix_unit_model_date", "prd_unit", ["model", "production_date"])

    op.create_table(
        "mat_stock_movement",
        *_base(),
        sa.Column("movement_type", sa.String(length=32), nullable=False),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        sa.Column("lot_id", sa.String(length=36), sa.ForeignKey("mat_stock_lot.id"), nullable=False),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=True),
        _qty("quantity"),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("notes", sa.String(length=512), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_movement_material_time", "mat_stock_movement", ["material_id", "created_at"])
    op.create_index("ix_mat_stock_movement_lot_id", "mat_stock_movement", ["lot_id"])

    op.create_table(
        "prd_part_mapping",
        *_base(),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=False),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        sa.Column("lot_id", sa.String(length=36), sa.ForeignKey("mat_stock_lot.id"), nullable=False),
        _qty("quantity"),
        sa.Column("mode", sa.String(length=16), nullable=False, server_default="bulk"),
        sa.Column("mapped_by", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_prd_part_mapping_unit_id", "prd_part_mapping", ["unit_id"])
    op.create_index("ix_prd_part_mapping_lot_id", "prd_part_mapping", ["lot_id"])

    op.create_table(
        "prd_shipment",
        *_base(),
        sa.Column("shipment_date", sa.Date(), nullable=False),
        sa.Column("customer_name", sa.String(length=256), nullable=False),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("waybill_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column("shipped_by", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )

    op.create_table(
        "prd_shipment_line",
        *_base(),
        sa.Column("shipment_id", sa.String(length=36), sa.ForeignKey("prd_shipment.id"), nullable=False),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=False, unique=True),
    )

    op.create_table(
        "prd_vehicle_assembly",
        *_base(),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=False, unique=True),
        sa.Column("assembly_date", sa.Date(), nullable=False),
        sa.Column("vin_number", sa.String(length=64), nullable=False),
        sa.Column("vehicle_plate", sa.String(length=32), nullable=True),
        sa.Column("customer_name", sa.String(length=256), nullable=True),
        sa.Column("assembled_by", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )

    op.create_table(
        "sys_sequence_counter",
        *_base(),
        sa.Column("scope", sa.String(length=64), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("scope", "key", name="uq_sequence_scope_key"),
    )

    # Quality
    op.create_table(
        "qms_control_plan",
        *_base(),
        sa.Column("target_type", sa.String(length=16), nullable=False),
        sa.Column("target_key", sa.String(length=64), nullable=False),
        sa.Column("revision_no", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.UniqueConstraint("target_type", "target_key", "revision_no", name="uq_control_plan_target_revision"),
    )
    op.create_index(
        "uq_control_plan_active_target",
        "qms_control_plan",
        ["target_type", "target_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "qms_control_plan_item",
        *_base(),
        sa.Column("control_plan_id", sa.String(length=36), sa.ForeignKey("qms_control_plan.id"), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("characteristic", sa.String(length=256), nullable=True),
        sa.Column("measurement_method", sa.String(length=256), nullable=True),
        _qty("lower_limit", nullable=True),
        _qty("upper_limit", nullable=True),
        _qty("nominal_value", nullable=True),
        sa.Column("unit", sa.String(length=16), nullable=True),
        sa.Column("expected_text", sa.String(length=128), nullable=True),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "qms_inspection",
        *_base(),
        sa.Column("target_type", sa.String(length=16), nullable=False),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=True),
        sa.Column("receipt_id", sa.String(length=36), sa.ForeignKey("mat_receipt.id"), nullable=True),
        sa.Column("control_plan_id", sa.String(length=36), sa.ForeignKey("qms_control_plan.id"), nullable=False),
        sa.Column("overall_result", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("is_draft", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("inspector_id", sa.String(length=128), nullable=True),
        _qty("quantity_inspected", nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_inspection_unit_final", "qms_inspection", ["unit_id", "is_draft", "finalized_at"])
    op.create_index("ix_qms_inspection_receipt_id", "qms_inspection", ["receipt_id"])

    op.create_table(
        "qms_measurement",
        *_base(),
        sa.Column("inspection_id", sa.String(length=36), sa.ForeignKey("qms_inspection.id"), nullable=False),
        sa.Column("control_plan_item_id", sa.String(length=36), sa.ForeignKey("qms_control_plan_item.id"), nullable=False),
        _qty("measured_value", nullable=True),
        sa.Column("measured_text", sa.String(length=128), nullable=True),
        sa.Column("result", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint("inspection_id", "control_plan_item_id", name="uq_measurement_item"),
    )

    op.create_table(
        "qms_ncr",
        *_base(),
        sa.Column("ncr_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("unit_id", sa.String(length=36), sa.ForeignKey("prd_unit.id"), nullable=True),
        sa.Column("inspection_id", sa.String(length=36), sa.ForeignKey("qms_inspection.id"), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("root_cause", sa.Text(), nullable=True),
        sa.Column("corrective_action", sa.Text(), nullable=True),
        sa.Column("responsible_user_id", sa.String(length=128), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("opened_by", sa.String(length=128), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.String(length=128), nullable=True),
    )

    op.create_table(
        "qms_quarantine_item",
        *_base(),
        sa.Column("material_id", sa.String(length=36), sa.ForeignKey("mat_material.id"), nullable=False),
        sa.Column("lot_id", sa.String(length=36), sa.ForeignKey("mat_stock_lot.id"), nullable=True),
        sa.Column("receipt_id", sa.String(length=36), sa.ForeignKey("mat_receipt.id"), nullable=True),
        sa.Column("inspection_id", sa.String(length=36), sa.ForeignKey("qms_inspection.id"), nullable=True),
        sa.Column("supplier_id", sa.String(length=36), sa.ForeignKey("mat_supplier.id"), nullable=True),
        sa.Column("lot_number", sa.String(length=64), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        _qty("quantity"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="quarantined"),
        sa.Column("decision_note", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(length=128), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_lot_id", sa.String(length=36), sa.ForeignKey("mat_stock_lot.id"), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_qms_quarantine_item_status", "qms_quarantine_item", ["status"])

    # Platform
    op.create_table(
        "sys_audit_log",
        *_base(),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_audit_entity_time", "sys_audit_log", ["entity_type", "entity_id", "created_at"])

    op.create_table(
        "outbox_event",
        *_base(),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_pending", "outbox_event", ["delivered", "created_at"])


def downgrade():
    for table in (
        "outbox_event",
        "sys_audit_log",
        "qms_quarantine_item",
        "qms_ncr",
        "qms_measurement",
        "qms_inspection",
        "qms_control_plan_item",
        "qms_control_plan",
        "sys_sequence_counter",
        "prd_vehicle_assembly",
        "prd_shipment_line",
        "prd_shipment",
        "prd_part_mapping",
        "mat_stock_movement",
        "prd_unit",
        "bom_item",
        "bom_revision",
        "mat_receipt",
        "mat_stock_lot",
        "mat_material",
        "mat_supplier",
    ):
        op.drop_table(table)
