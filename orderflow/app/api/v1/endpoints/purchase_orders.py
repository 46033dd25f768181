from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderflow.app.api.deps import get_db, get_email_sender
from orderflow.app.db.models.core_types import OrderStatus
from orderflow.app.schemas.purchase_order import (
    BulkDelete,
    OrderCreate,
    OrderRead,
    StatusTransition,
)
from orderflow.services import purchasing
from orderflow.services.notifications import EmailSender
from orderflow.services.transactions import run_transaction

router = APIRouter(prefix="/purchase-orders")


@router.get("", response_model=list[OrderRead])
def list_orders(
    status: OrderStatus | None = None,
    project_id: str | None = None,
    db: Session = Depends(get_db),
):
    return purchasing.list_orders(db, status=status, project_id=project_id)


@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: str, db: Session = Depends(get_db)):
    return purchasing.get_order(db, order_id)


@router.post("", response_model=OrderRead, status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    return purchasing.create_order(db, payload, sender)


@router.post("/{order_id}/status", response_model=OrderRead)
def change_status(order_id: str, payload: StatusTransition, db: Session = Depends(get_db)):
    return run_transaction(db, purchasing.transition_status, order_id, payload.status, payload.comment)


@router.post("/{order_id}/approve", response_model=OrderRead)
def approve_from_link(order_id: str, token: str, db: Session = Depends(get_db)):
    return run_transaction(db, purchasing.approve_with_token, order_id, token)


@router.delete("/{order_id}", status_code=204)
def delete_order(order_id: str, db: Session = Depends(get_db)):
    run_transaction(db, purchasing.delete_order, order_id)


@router.post("/bulk-delete")
def bulk_delete(payload: BulkDelete, db: Session = Depends(get_db)):
    deleted = run_transaction(db, purchasing.bulk_delete_orders, payload.ids)
    return {"deleted": deleted}
