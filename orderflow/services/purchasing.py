"""
Purchase order lifecycle.

    PendingApproval -> Approved | Rejected
    Approved        -> SentToSupplier
    SentToSupplier  -> Received | PartiallyReceived   (receptions module only)

Functions taking ``db`` only flush; the caller owns the transaction.
``create_order`` is the exception: it is a two-phase operation (tentative
create, then notify or compensate) and commits through run_transaction.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.app.db.base import new_id
from orderflow.app.db.models.core_types import (
    COMMITTED_STATUSES,
    ORDER_TRANSITIONS,
    RECEIVED_STATUSES,
    OrderStatus,
)
from orderflow.app.db.models.models_v1 import (
    Item,
    Location,
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
)
from orderflow.app.schemas.purchase_order import OrderCreate, OrderLineCreate
from orderflow.services.aggregates import AggregateField, apply_delta
from orderflow.services.errors import (
    DependencyFailure,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from orderflow.services.notifications import (
    EmailSender,
    SmtpEmailSender,
    send_approval_request,
    verify_approval_token,
)
from orderflow.services.numbering import next_order_number
from orderflow.services.projects import find_project, resolve_project_name
from orderflow.services.transactions import run_transaction

logger = logging.getLogger(__name__)

INITIAL_STATUSES = {
    OrderStatus.pending_approval,
    OrderStatus.approved,
    OrderStatus.sent_to_supplier,
}


# ---------- Helpers ----------
def get_order(db: Session, order_id: str, *, for_update: bool = False) -> PurchaseOrder:
    stmt = select(PurchaseOrder).where(PurchaseOrder.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalar_one_or_none()
    if not order:
        raise NotFoundError("Purchase order", order_id)
    return order


def list_orders(
    db: Session,
    *,
    status: OrderStatus | None = None,
    project_id: str | None = None,
) -> list[PurchaseOrder]:
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.order_number.desc())
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if project_id is not None:
        stmt = stmt.where(PurchaseOrder.project_id == project_id)
    return list(db.execute(stmt).scalars().all())


def shift_committed(db: Session, order: PurchaseOrder, amount: Decimal) -> None:
    """Move ``amount`` in or out of the order's project committed bucket."""
    if not order.project_id or not amount:
        return
    project = find_project(db, order.project_id)
    if not project:
        raise NotFoundError("Project", order.project_id)
    apply_delta(db, project.id, AggregateField.materials_committed, amount)


def build_lines(db: Session, lines: Iterable[OrderLineCreate]) -> list[PurchaseOrderLine]:
    built: list[PurchaseOrderLine] = []
    seen_items: set[str] = set()
    for ln in lines:
        # (order, item) is the ledger key, so an item appears once per order
        if ln.item_id:
            if ln.item_id in seen_items:
                raise ValidationError(f"Item {ln.item_id} appears on more than one line")
            seen_items.add(ln.item_id)
        if ln.quantity is None or int(ln.quantity) <= 0:
            raise ValidationError(f"Line quantity must be positive (got {ln.quantity})")
        if ln.unit_price is None or Decimal(str(ln.unit_price)) < 0:
            raise ValidationError(f"Line unit price must not be negative (got {ln.unit_price})")

        item = None
        if ln.item_id:
            item = db.get(Item, ln.item_id)
            if not item:
                raise NotFoundError("Item", ln.item_id)

        name = ln.item_name or (item.name if item else None)
        if not name:
            raise ValidationError("Line needs an item_id or an item_name")

        built.append(
            PurchaseOrderLine(
                id=new_id(),
                item_id=ln.item_id,
                item_sku=ln.item_sku or (item.sku if item else None),
                item_name=name,
                quantity=int(ln.quantity),
                unit_price=Decimal(str(ln.unit_price)),
                unit=ln.unit or (item.unit if item else "ud"),
                line_type=ln.line_type,
            )
        )
    return built


# ---------- Create ----------
def create_tentative_order(db: Session, payload: OrderCreate) -> PurchaseOrder:
    """Phase 1 of create_order: validate and persist (flush only)."""
    if not payload.lines:
        raise ValidationError("An order needs at least one line")
    if payload.status not in INITIAL_STATUSES:
        raise ValidationError(f"Orders cannot be created in status {payload.status.value}")

    supplier_name = payload.supplier_name
    if payload.supplier_id:
        supplier = db.get(Supplier, payload.supplier_id)
        if not supplier:
            raise NotFoundError("Supplier", payload.supplier_id)
        supplier_name = supplier.name

    project_id = None
    if payload.project_id:
        project = find_project(db, payload.project_id)
        if not project:
            raise NotFoundError("Project", payload.project_id)
        project_id = project.id

    if payload.delivery_location_id and not db.get(Location, payload.delivery_location_id):
        raise NotFoundError("Location", payload.delivery_location_id)

    lines = build_lines(db, payload.lines)
    order_date = payload.order_date or date.today()

    order = PurchaseOrder(
        id=new_id(),
        order_number=next_order_number(db, on=order_date),
        supplier_id=payload.supplier_id,
        supplier_name=supplier_name,
        project_id=project_id,
        project_name=resolve_project_name(db, project_id),
        delivery_location_id=payload.delivery_location_id,
        status=payload.status,
        order_date=order_date,
        estimated_delivery_date=payload.estimated_delivery_date,
    )
    order.set_lines(lines)
    order.add_history(payload.status, "Order created")
    db.add(order)
    db.flush()

    if order.status in COMMITTED_STATUSES:
        shift_committed(db, order, order.total)

    logger.info(f"Order {order.order_number} ({order.id}) created in {order.status.value}, total={order.total}")
    return order


def discard_order(db: Session, order_id: str) -> bool:
    """Compensating delete. Safe to repeat: a missing order is not an error."""
    order = db.get(PurchaseOrder, order_id)
    if not order:
        return False
    db.delete(order)
    db.flush()
    return True


def create_order(
    db: Session,
    payload: OrderCreate,
    notifier: EmailSender | None = None,
    *,
    approval_recipient: str | None = None,
) -> PurchaseOrder:
    """
    Create an order. Orders awaiting approval and their approval email are
    one logical unit: if the email cannot be delivered the order is deleted
    again and DependencyFailure is raised.
    """
    order = run_transaction(db, create_tentative_order, payload)

    if order.status != OrderStatus.pending_approval:
        return order

    result = send_approval_request(notifier or SmtpEmailSender(), order, to=approval_recipient)
    if result.success:
        logger.info(f"Approval email sent for order {order.order_number}")
        return order

    error = result.error or "email delivery failed without a message"
    logger.error(f"Approval email failed for order {order.id}, rolling back creation: {error}")
    run_transaction(db, discard_order, order.id)
    raise DependencyFailure(
        f"Approval email could not be sent; order {order.order_number} was not created. Error: {error}"
    )


# ---------- Status ----------
def transition_status(
    db: Session,
    order_id: str,
    new_status: OrderStatus,
    comment: str | None = None,
) -> PurchaseOrder:
    try:
        new_status = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {new_status}") from None
    order = get_order(db, order_id, for_update=True)
    current = order.status

    if new_status in RECEIVED_STATUSES:
        raise ValidationError("Receptions go through confirm_reception, not a status change")
    if new_status not in ORDER_TRANSITIONS[current]:
        raise IllegalTransitionError(current, new_status)

    was_committed = current in COMMITTED_STATUSES
    now_committed = new_status in COMMITTED_STATUSES
    if now_committed and not was_committed:
        shift_committed(db, order, order.total)
    elif was_committed and not now_committed:
        shift_committed(db, order, -order.total)

    order.status = new_status
    if new_status == OrderStatus.rejected:
        order.rejection_reason = comment
    order.add_history(new_status, comment or f"Status changed to {new_status.value}")
    db.flush()

    logger.info(f"Order {order.order_number}: {current.value} -> {new_status.value}")
    return order


def approve_with_token(db: Session, order_id: str, token: str | None, comment: str | None = None) -> PurchaseOrder:
    if not verify_approval_token(order_id, token):
        raise ValidationError("Invalid approval link")
    return transition_status(db, order_id, OrderStatus.approved, comment or "Approved from email link")


# ---------- Delete ----------
def delete_order(db: Session, order_id: str) -> None:
    """Administrative removal. Ledger and aggregates are left untouched."""
    order = get_order(db, order_id)
    db.delete(order)
    db.flush()
    logger.info(f"Order {order.order_number} ({order_id}) deleted")


def bulk_delete_orders(db: Session, order_ids: Iterable[str]) -> int:
    ids = sorted({oid for oid in order_ids if oid})
    if not ids:
        return 0
    orders = db.execute(select(PurchaseOrder).where(PurchaseOrder.id.in_(ids))).scalars().all()
    for order in orders:
        db.delete(order)
    db.flush()
    logger.info(f"Bulk deleted {len(orders)} of {len(ids)} requested orders")
    return len(orders)
