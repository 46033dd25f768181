"""
Reception service.

Confirms the delivery of a purchase order sent to the supplier:
stock goes up at the receiving location, one ledger row per received item
is appended, a backorder carries whatever is still pending, and the money
moves from the project's committed bucket to its received bucket.

Everything happens in the caller's transaction (``confirm_reception`` only
flushes); ``receive_order`` wraps it in a retried unit of work.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from orderflow.app.db.base import new_id
from orderflow.app.db.models.core_types import (
    COMMITTED_STATUSES,
    LedgerEntryType,
    OrderStatus,
    money,
)
from orderflow.app.db.models.models_v1 import (
    InventoryHistoryEntry,
    Location,
    PurchaseOrder,
    PurchaseOrderLine,
)
from orderflow.app.schemas.reception import ReceivedLine, ReceptionResult
from orderflow.services.aggregates import AggregateField, apply_delta
from orderflow.services.errors import NotFoundError, ValidationError
from orderflow.services.ledger import adjust_stock, record_receipt
from orderflow.services.numbering import next_order_number
from orderflow.services.projects import find_project, resolve_project_name
from orderflow.services.purchasing import get_order
from orderflow.services.transactions import run_transaction

logger = logging.getLogger(__name__)


def _received_by_item(order: PurchaseOrder, received_lines: Iterable[ReceivedLine]) -> dict[str, int]:
    """Validate received quantities against the order. Nothing is clamped."""
    ordered = {ln.item_id: ln for ln in order.lines if ln.item_id}
    received: dict[str, int] = {}

    for rl in received_lines:
        if rl.item_id not in ordered:
            raise ValidationError(f"Item {rl.item_id} is not part of order {order.order_number}")
        if rl.item_id in received:
            raise ValidationError(f"Item {rl.item_id} listed twice in the reception")
        qty = int(rl.quantity)
        if qty < 0:
            raise ValidationError(f"Received quantity for item {rl.item_id} must not be negative")
        if qty > ordered[rl.item_id].quantity:
            raise ValidationError(
                f"Received quantity {qty} for item {rl.item_id} exceeds ordered quantity "
                f"{ordered[rl.item_id].quantity}"
            )
        received[rl.item_id] = qty

    return received


def _pending_lines(order: PurchaseOrder, received: dict[str, int]) -> list[PurchaseOrderLine]:
    pending: list[PurchaseOrderLine] = []
    for ln in order.lines:
        remaining = ln.quantity - received.get(ln.item_id, 0) if ln.item_id else ln.quantity
        if remaining > 0:
            pending.append(
                PurchaseOrderLine(
                    id=new_id(),
                    item_id=ln.item_id,
                    item_sku=ln.item_sku,
                    item_name=ln.item_name,
                    quantity=remaining,
                    unit_price=ln.unit_price,
                    unit=ln.unit,
                    line_type=ln.line_type,
                )
            )
    return pending


def _create_backorder(
    db: Session,
    parent: PurchaseOrder,
    lines: list[PurchaseOrderLine],
    notes: str,
) -> PurchaseOrder:
    backorder = PurchaseOrder(
        id=new_id(),
        order_number=next_order_number(db),
        supplier_id=parent.supplier_id,
        supplier_name=parent.supplier_name,
        project_id=parent.project_id,
        project_name=parent.project_name,
        delivery_location_id=parent.delivery_location_id,
        status=OrderStatus.sent_to_supplier,
        order_date=parent.order_date,
        estimated_delivery_date=parent.estimated_delivery_date,
        original_order_id=parent.id,
    )
    backorder.set_lines(lines)
    backorder.add_history(
        OrderStatus.sent_to_supplier,
        f"Backorder of order {parent.order_number}. Reception notes: {notes}",
    )
    db.add(backorder)
    parent.backorders.append(backorder)
    db.flush()
    return backorder


def confirm_reception(
    db: Session,
    order_id: str,
    location_id: str,
    received_lines: Iterable[ReceivedLine],
    notes: str = "",
    is_partial: bool = False,
) -> ReceptionResult:
    notes = notes or ""
    order = get_order(db, order_id, for_update=True)
    pre_status = order.status

    if pre_status != OrderStatus.sent_to_supplier:
        raise ValidationError(
            f"Order {order.order_number} is {pre_status.value}; only orders sent to the supplier can be received"
        )
    location = db.get(Location, location_id)
    if not location:
        raise NotFoundError("Location", location_id)

    received = _received_by_item(order, received_lines)

    project = None
    if order.project_id:
        project = find_project(db, order.project_id)
        if not project:
            raise NotFoundError("Project", order.project_id)
    project_id = project.id if project else order.project_id
    project_name = project.name if project else resolve_project_name(db, order.project_id)

    # 1. stock + ledger
    now = datetime.now(timezone.utc)
    received_total = Decimal("0.00")
    entry_ids: list[str] = []
    for ln in order.lines:
        qty = received.get(ln.item_id, 0) if ln.item_id else 0
        ln.received_quantity = qty
        if qty <= 0:
            continue

        adjust_stock(db, ln.item_id, location_id, qty)
        entry = record_receipt(
            db,
            InventoryHistoryEntry(
                id=new_id(),
                item_id=ln.item_id,
                item_sku=ln.item_sku,
                item_name=ln.item_name,
                supplier_id=order.supplier_id,
                supplier_name=order.supplier_name,
                purchase_order_id=order.id,
                order_number=order.order_number,
                quantity=qty,
                unit_cost=money(ln.unit_price),
                total_price=money(Decimal(qty) * money(ln.unit_price)),
                unit=ln.unit,
                event_date=now,
                project_id=project_id,
                project_name=project_name,
                location_id=location_id,
                entry_type=LedgerEntryType.reception,
            ),
        )
        received_total += entry.total_price
        entry_ids.append(entry.id)

    # 2. backorder for whatever is still pending
    backorder = None
    if is_partial:
        pending = _pending_lines(order, received)
        if pending:
            backorder = _create_backorder(db, order, pending, notes)
        else:
            logger.info(
                f"Order {order.order_number}: partial reception requested but nothing is pending, "
                f"treated as a full reception"
            )

    # 3. status + history
    if backorder:
        order.status = OrderStatus.partially_received
        comment = (
            f"Partial reception. Backorder {backorder.order_number} ({backorder.id}) created. Notes: {notes}"
        )
    else:
        order.status = OrderStatus.received
        comment = f"Full reception. Notes: {notes}"
    order.reception_notes = notes
    order.received_at = now
    order.received_location_id = location_id
    order.add_history(order.status, comment)

    # 4. money moves from committed to received; a closed order releases its whole commitment
    if project:
        if received_total > 0:
            apply_delta(db, project.id, AggregateField.materials_received, received_total)
        released = received_total if backorder else money(order.total)
        if pre_status in COMMITTED_STATUSES and released > 0:
            apply_delta(db, project.id, AggregateField.materials_committed, -released)

    db.flush()
    logger.info(
        f"Reception of {order.order_number} at {location.name}: {len(entry_ids)} ledger rows, "
        f"received_total={received_total}, status={order.status.value}"
        + (f", backorder={backorder.order_number}" if backorder else "")
    )

    return ReceptionResult(
        order_id=order.id,
        status=order.status,
        received_total=received_total,
        ledger_entry_ids=entry_ids,
        backorder_id=backorder.id if backorder else None,
        backorder_number=backorder.order_number if backorder else None,
    )


def receive_order(
    db: Session,
    order_id: str,
    location_id: str,
    received_lines: Iterable[ReceivedLine],
    notes: str = "",
    is_partial: bool = False,
) -> ReceptionResult:
    """confirm_reception as one atomic, retried unit of work."""
    received_lines = list(received_lines)
    return run_transaction(
        db,
        confirm_reception,
        order_id,
        location_id,
        received_lines,
        notes,
        is_partial,
    )
