from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.app.db.base import Base, new_id
from orderflow.app.db.models.core_types import (
    LedgerEntryType,
    LineType,
    LocationType,
    OrderStatus,
    ProjectStatus,
    TravelReportStatus,
    money,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


order_status_enum = Enum(OrderStatus, name="order_status")


# ---------- MASTER DATA ----------
class Project(Base):
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str | None] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, name="project_status"),
        default=ProjectStatus.planned,
        nullable=False,
    )
    budget: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    # Pre-aggregated totals, kept incrementally and recomputed by the repair jobs
    materials_received: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    materials_committed: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    travel_approved: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    travel_pending: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("materials_received >= 0", name="ck_project_materials_received_nonneg"),
        CheckConstraint("materials_committed >= 0", name="ck_project_materials_committed_nonneg"),
        CheckConstraint("travel_approved >= 0", name="ck_project_travel_approved_nonneg"),
        CheckConstraint("travel_pending >= 0", name="ck_project_travel_pending_nonneg"),
    )


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))


class Item(Base):
    __tablename__ = "inventory"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    sku: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(16), default="ud", nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)


class Location(Base):
    __tablename__ = "locations"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, name="location_type"),
        default=LocationType.physical,
        nullable=False,
    )


# ---------- PURCHASING ----------
class OrderNumberCounter(Base):
    __tablename__ = "order_number_counters"
    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint("last_value >= 0", name="ck_order_counter_nonneg"),)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    supplier_id: Mapped[str | None] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"))
    supplier_name: Mapped[str | None] = mapped_column(String(255))
    # Plain reference: legacy orders may carry the project display name
    project_id: Mapped[str | None] = mapped_column(String(255), index=True)
    project_name: Mapped[str | None] = mapped_column(String(255))
    delivery_location_id: Mapped[str | None] = mapped_column(ForeignKey("locations.id", ondelete="SET NULL"))

    status: Mapped[OrderStatus] = mapped_column(
        order_status_enum,
        default=OrderStatus.pending_approval,
        nullable=False,
        index=True,
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    estimated_delivery_date: Mapped[date | None] = mapped_column(Date)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    rejection_reason: Mapped[str | None] = mapped_column(Text)
    reception_notes: Mapped[str | None] = mapped_column(Text)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_location_id: Mapped[str | None] = mapped_column(ForeignKey("locations.id", ondelete="SET NULL"))

    original_order_id: Mapped[str | None] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_no",
    )
    history: Mapped[list["OrderStatusHistory"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.position",
    )
    original_order: Mapped["PurchaseOrder | None"] = relationship(
        remote_side=[id],
        back_populates="backorders",
    )
    backorders: Mapped[list["PurchaseOrder"]] = relationship(back_populates="original_order")

    __table_args__ = (CheckConstraint("total >= 0", name="ck_po_total_nonneg"),)

    @property
    def backorder_ids(self) -> list[str]:
        return [child.id for child in self.backorders]

    def set_lines(self, lines: list["PurchaseOrderLine"]) -> None:
        for no, line in enumerate(lines, start=1):
            line.line_no = no
        self.lines = lines
        self.recompute_total()

    def recompute_total(self) -> Decimal:
        self.total = money(sum((line.subtotal for line in self.lines), Decimal("0")))
        return self.total

    def add_history(self, status: OrderStatus, comment: str | None) -> "OrderStatusHistory":
        entry = OrderStatusHistory(
            status=status,
            comment=comment,
            position=len(self.history),
            created_at=utcnow(),
        )
        self.history.append(entry)
        return entry


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[str | None] = mapped_column(ForeignKey("inventory.id", ondelete="RESTRICT"))
    item_sku: Mapped[str | None] = mapped_column(String(64))
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # set by confirm_reception; NULL on lines never received (and on legacy orders)
    received_quantity: Mapped[int | None] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    unit: Mapped[str] = mapped_column(String(16), default="ud", nullable=False)
    line_type: Mapped[LineType] = mapped_column(
        Enum(LineType, name="line_type"),
        default=LineType.material,
        nullable=False,
    )

    order: Mapped[PurchaseOrder] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )

    @property
    def subtotal(self) -> Decimal:
        return money(Decimal(self.quantity) * money(self.unit_price))


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="history")

    __table_args__ = (Index("ix_order_status_history_order_pos", "order_id", "position"),)


# ---------- TRAVEL ----------
class TravelReport(Base):
    __tablename__ = "travel_reports"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(255), index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[TravelReportStatus] = mapped_column(
        Enum(TravelReportStatus, name="travel_report_status"),
        default=TravelReportStatus.pending_approval,
        nullable=False,
    )
    decided_by: Mapped[str | None] = mapped_column(String(128))
    decision_notes: Mapped[str | None] = mapped_column(Text)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (CheckConstraint("total >= 0", name="ck_travel_report_total_nonneg"),)


# ---------- INVENTORY ----------
class InventoryLocationStock(Base):
    __tablename__ = "inventory_locations"
    item_id: Mapped[str] = mapped_column(ForeignKey("inventory.id", ondelete="RESTRICT"), primary_key=True)
    location_id: Mapped[str] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), primary_key=True)

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_stock_quantity_nonneg"),)


class InventoryHistoryEntry(Base):
    """
    Ledger row: one received quantity of one item against one order.

    Append-only. The repair jobs may rewrite ``project_id`` (legacy rows
    holding the project name) and fill ``unit_cost`` / ``total_price``.
    """

    __tablename__ = "inventory_history"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    item_id: Mapped[str] = mapped_column(String(36), nullable=False)
    item_sku: Mapped[str | None] = mapped_column(String(64))
    item_name: Mapped[str | None] = mapped_column(String(255))
    supplier_id: Mapped[str | None] = mapped_column(String(36))
    supplier_name: Mapped[str | None] = mapped_column(String(255))

    # No FK: orders can be deleted administratively, ledger rows stay
    purchase_order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    order_number: Mapped[str | None] = mapped_column(String(64))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))  # legacy name of unit_cost
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    unit: Mapped[str] = mapped_column(String(16), default="ud", nullable=False)

    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(255), index=True)
    project_name: Mapped[str | None] = mapped_column(String(255))
    location_id: Mapped[str | None] = mapped_column(String(36))

    entry_type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType, name="ledger_entry_type"),
        default=LedgerEntryType.reception,
        nullable=False,
    )
    migration_source: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_ledger_qty_pos"),
        Index("ix_inventory_history_order_item", "purchase_order_id", "item_id"),
    )
