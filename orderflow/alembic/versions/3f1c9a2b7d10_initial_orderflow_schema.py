"""initial orderflow schema

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum members are stored by name
ORDER_STATUS = sa.Enum(
    "pending_approval", "approved", "rejected", "sent_to_supplier", "received", "partially_received",
    name="order_status",
)
PROJECT_STATUS = sa.Enum("planned", "in_progress", "completed", name="project_status")
LOCATION_TYPE = sa.Enum("physical", "mobile", name="location_type")
LINE_TYPE = sa.Enum("material", "service", name="line_type")
TRAVEL_STATUS = sa.Enum("pending_approval", "approved", "rejected", "cancelled", name="travel_report_status")
LEDGER_ENTRY_TYPE = sa.Enum("reception", "migrated", name="ledger_entry_type")


def _money(name: str, nullable: bool = False, **kw) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, **kw)


def _stamp(name: str = "created_at", nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(64), unique=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("status", PROJECT_STATUS, nullable=False),
        _money("budget", nullable=True),
        _money("materials_received", server_default="0"),
        _money("materials_committed", server_default="0"),
        _money("travel_approved", server_default="0"),
        _money("travel_pending", server_default="0"),
        _stamp(),
        sa.CheckConstraint("materials_received >= 0", name="ck_project_materials_received_nonneg"),
        sa.CheckConstraint("materials_committed >= 0", name="ck_project_materials_committed_nonneg"),
        sa.CheckConstraint("travel_approved >= 0", name="ck_project_travel_approved_nonneg"),
        sa.CheckConstraint("travel_pending >= 0", name="ck_project_travel_pending_nonneg"),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("email", sa.String(255)),
    )
    op.create_table(
        "inventory",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False),
        _money("unit_cost", server_default="0"),
    )
    op.create_table(
        "locations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("type", LOCATION_TYPE, nullable=False),
    )
    op.create_table(
        "order_number_counters",
        sa.Column("year", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("last_value >= 0", name="ck_order_counter_nonneg"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", sa.String(36), sa.ForeignKey("suppliers.id", ondelete="RESTRICT")),
        sa.Column("supplier_name", sa.String(255)),
        sa.Column("project_id", sa.String(255)),
        sa.Column("project_name", sa.String(255)),
        sa.Column("delivery_location_id", sa.String(36), sa.ForeignKey("locations.id", ondelete="SET NULL")),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("order_date", sa.Date, nullable=False),
        sa.Column("estimated_delivery_date", sa.Date),
        _money("total", server_default="0"),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("reception_notes", sa.Text),
        _stamp("received_at", nullable=True),
        sa.Column("received_location_id", sa.String(36), sa.ForeignKey("locations.id", ondelete="SET NULL")),
        sa.Column(
            "original_order_id",
            sa.String(36),
            sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        ),
        _stamp(),
        _stamp("updated_at"),
        sa.CheckConstraint("total >= 0", name="ck_po_total_nonneg"),
    )
    op.create_index("ix_purchase_orders_project_id", "purchase_orders", ["project_id"])
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])
    op.create_index("ix_purchase_orders_original_order_id", "purchase_orders", ["original_order_id"])

    op.create_table(
        "purchase_order_lines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line_no", sa.Integer, nullable=False),
        sa.Column("item_id", sa.String(36), sa.ForeignKey("inventory.id", ondelete="RESTRICT")),
        sa.Column("item_sku", sa.String(64)),
        sa.Column("item_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        _money("unit_price"),
        sa.Column("unit", sa.String(16), nullable=False),
        sa.Column("line_type", LINE_TYPE, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )
    op.create_index("ix_purchase_order_lines_order_id", "purchase_order_lines", ["order_id"])

    op.create_table(
        "order_status_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("comment", sa.Text),
        _stamp(),
    )
    op.create_index("ix_order_status_history_order_pos", "order_status_history", ["order_id", "position"])

    op.create_table(
        "travel_reports",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("project_id", sa.String(255)),
        _money("total"),
        sa.Column("status", TRAVEL_STATUS, nullable=False),
        sa.Column("decided_by", sa.String(128)),
        sa.Column("decision_notes", sa.Text),
        _stamp("decided_at", nullable=True),
        _stamp(),
        sa.CheckConstraint("total >= 0", name="ck_travel_report_total_nonneg"),
    )
    op.create_index("ix_travel_reports_project_id", "travel_reports", ["project_id"])

    op.create_table(
        "inventory_locations",
        sa.Column(
            "item_id",
            sa.String(36),
            sa.ForeignKey("inventory.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column(
            "location_id",
            sa.String(36),
            sa.ForeignKey("locations.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        _stamp("updated_at"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonneg"),
    )

    # Ledger: no FK to purchase_orders, rows outlive deleted orders
    op.create_table(
        "inventory_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("item_id", sa.String(36), nullable=False),
        sa.Column("item_sku", sa.String(64)),
        sa.Column("item_name", sa.String(255)),
        sa.Column("supplier_id", sa.String(36)),
        sa.Column("supplier_name", sa.String(255)),
        sa.Column("purchase_order_id", sa.String(36), nullable=False),
        sa.Column("order_number", sa.String(64)),
        sa.Column("quantity", sa.Integer, nullable=False),
        _money("unit_cost", nullable=True),
        _money("unit_price", nullable=True),
        _money("total_price", nullable=True),
        sa.Column("unit", sa.String(16), nullable=False),
        _stamp("event_date"),
        sa.Column("project_id", sa.String(255)),
        sa.Column("project_name", sa.String(255)),
        sa.Column("location_id", sa.String(36)),
        sa.Column("entry_type", LEDGER_ENTRY_TYPE, nullable=False),
        sa.Column("migration_source", sa.String(64)),
        _stamp(),
        sa.CheckConstraint("quantity > 0", name="ck_ledger_qty_pos"),
    )
    op.create_index("ix_inventory_history_project_id", "inventory_history", ["project_id"])
    op.create_index("ix_inventory_history_order_item", "inventory_history", ["purchase_order_id", "item_id"])


def downgrade() -> None:
    for table in (
        "inventory_history",
        "inventory_locations",
        "travel_reports",
        "order_status_history",
        "purchase_order_lines",
        "purchase_orders",
        "order_number_counters",
        "locations",
        "inventory",
        "suppliers",
        "projects",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (LEDGER_ENTRY_TYPE, TRAVEL_STATUS, LINE_TYPE, LOCATION_TYPE, PROJECT_STATUS, ORDER_STATUS):
        enum.drop(bind, checkfirst=True)
