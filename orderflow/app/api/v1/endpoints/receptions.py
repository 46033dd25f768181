from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderflow.app.api.deps import get_db
from orderflow.app.schemas.reception import ReceptionConfirm, ReceptionResult
from orderflow.services.receptions import receive_order

router = APIRouter(prefix="/purchase-orders")


@router.post("/{order_id}/reception", response_model=ReceptionResult)
def confirm_reception(order_id: str, payload: ReceptionConfirm, db: Session = Depends(get_db)):
    return receive_order(
        db,
        order_id,
        payload.location_id,
        payload.lines,
        notes=payload.notes,
        is_partial=payload.is_partial,
    )
