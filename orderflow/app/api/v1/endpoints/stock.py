from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderflow.app.api.deps import get_db
from orderflow.app.schemas.stock_level import StockLevelRead, TransferCreate
from orderflow.services import ledger
from orderflow.services.transactions import run_transaction

router = APIRouter(prefix="/stock")


@router.get("", response_model=list[StockLevelRead])
def get_stock(
    item_id: str | None = None,
    location_id: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Stock (READ ONLY)
    - changed only by receptions and transfers
    """
    return ledger.get_stock(db, item_id=item_id, location_id=location_id)


@router.post("/transfer", response_model=list[StockLevelRead])
def transfer_stock(payload: TransferCreate, db: Session = Depends(get_db)):
    src, dst = run_transaction(
        db,
        ledger.transfer_stock,
        item_id=payload.item_id,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        quantity=payload.quantity,
    )
    return [src, dst]
