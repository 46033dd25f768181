"""
Inventory ledger.

Two stores live here:
    - inventory_history: append-only log of received quantities and costs
    - inventory_locations: mutable stock per (item, location)

Nothing in this module commits. Callers run it inside a unit of work
(see orderflow.services.transactions.run_transaction).
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from orderflow.app.db.models.core_types import money
from orderflow.app.db.models.models_v1 import (
    InventoryHistoryEntry,
    InventoryLocationStock,
    Item,
    Location,
)
from orderflow.services.errors import (
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ---------- LEDGER ----------
def ledger_cost_expression():
    """
    Cost of one ledger row in SQL, tolerant of rows that predate the
    unit_cost / total_price fields.
    """
    unit_cost = func.coalesce(InventoryHistoryEntry.unit_cost, InventoryHistoryEntry.unit_price, 0)
    return func.coalesce(InventoryHistoryEntry.total_price, InventoryHistoryEntry.quantity * unit_cost)


def find_by_composite_key(db: Session, purchase_order_id: str, item_id: str) -> InventoryHistoryEntry | None:
    return (
        db.execute(
            select(InventoryHistoryEntry)
            .where(InventoryHistoryEntry.purchase_order_id == purchase_order_id)
            .where(InventoryHistoryEntry.item_id == item_id)
            .order_by(InventoryHistoryEntry.created_at.asc())
        )
        .scalars()
        .first()
    )


def record_receipt(db: Session, entry: InventoryHistoryEntry) -> InventoryHistoryEntry:
    """
    Insert one ledger row. At most one row per (order, item):
    a second one is rejected, never merged or overwritten.
    """
    if entry.quantity is None or entry.quantity <= 0:
        raise ValidationError("Ledger quantity must be positive")

    if find_by_composite_key(db, entry.purchase_order_id, entry.item_id) is not None:
        raise ValidationError(
            f"Ledger row already exists for order {entry.purchase_order_id} item {entry.item_id}"
        )

    if entry.unit_cost is None and entry.unit_price is not None:
        entry.unit_cost = entry.unit_price
    entry.unit_cost = money(entry.unit_cost)
    if entry.total_price is None:
        entry.total_price = money(Decimal(entry.quantity) * entry.unit_cost)

    db.add(entry)
    db.flush()
    return entry


def sum_by_project(db: Session, project_id: str) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(ledger_cost_expression()), 0)).where(
            InventoryHistoryEntry.project_id == project_id
        )
    ).scalar_one()
    return money(total)


def sums_for_all_projects(db: Session) -> dict[str, Decimal]:
    rows = db.execute(
        select(
            InventoryHistoryEntry.project_id,
            func.coalesce(func.sum(ledger_cost_expression()), 0),
        )
        .where(InventoryHistoryEntry.project_id.is_not(None))
        .group_by(InventoryHistoryEntry.project_id)
    ).all()
    return {pid: money(total) for pid, total in rows}


# ---------- STOCK ----------
def _get_or_create_stock(db: Session, item_id: str, location_id: str) -> InventoryLocationStock:
    row = (
        db.execute(
            select(InventoryLocationStock)
            .where(InventoryLocationStock.item_id == item_id)
            .where(InventoryLocationStock.location_id == location_id)
            .with_for_update()
        )
        .scalar_one_or_none()
    )
    if row:
        return row

    if not db.get(Item, item_id):
        raise NotFoundError("Item", item_id)
    if not db.get(Location, location_id):
        raise NotFoundError("Location", location_id)

    row = InventoryLocationStock(item_id=item_id, location_id=location_id, quantity=0)
    db.add(row)
    db.flush()
    return row


def adjust_stock(db: Session, item_id: str, location_id: str, delta: int) -> InventoryLocationStock:
    """
    Only way to change a stock row. A decrement below zero is rejected
    with InsufficientStockError, never clamped.
    """
    delta = int(delta)
    row = _get_or_create_stock(db, item_id, location_id)

    new_quantity = row.quantity + delta
    if new_quantity < 0:
        raise InsufficientStockError(item_id, location_id, available=row.quantity, requested=-delta)

    row.quantity = new_quantity
    db.flush()
    return row


def transfer_stock(
    db: Session,
    *,
    item_id: str,
    from_location_id: str,
    to_location_id: str,
    quantity: int,
) -> tuple[InventoryLocationStock, InventoryLocationStock]:
    if quantity <= 0:
        raise ValidationError("Transfer quantity must be positive")
    if from_location_id == to_location_id:
        raise ValidationError("from_location_id and to_location_id must differ")

    src = adjust_stock(db, item_id, from_location_id, -quantity)
    dst = adjust_stock(db, item_id, to_location_id, quantity)
    logger.info(f"Transferred {quantity} of item {item_id}: {from_location_id} -> {to_location_id}")
    return src, dst


def get_stock(
    db: Session,
    *,
    item_id: str | None = None,
    location_id: str | None = None,
) -> list[InventoryLocationStock]:
    stmt = select(InventoryLocationStock).order_by(
        InventoryLocationStock.location_id, InventoryLocationStock.item_id
    )
    if item_id is not None:
        stmt = stmt.where(InventoryLocationStock.item_id == item_id)
    if location_id is not None:
        stmt = stmt.where(InventoryLocationStock.location_id == location_id)
    return list(db.execute(stmt).scalars().all())
