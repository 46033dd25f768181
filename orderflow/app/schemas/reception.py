from decimal import Decimal

from pydantic import BaseModel, Field

from orderflow.app.db.models.core_types import OrderStatus


class ReceivedLine(BaseModel):
    item_id: str
    quantity: int


class ReceptionConfirm(BaseModel):
    location_id: str
    lines: list[ReceivedLine] = Field(default_factory=list)
    notes: str = ""
    is_partial: bool = False


class ReceptionResult(BaseModel):
    order_id: str
    status: OrderStatus
    received_total: Decimal
    ledger_entry_ids: list[str] = Field(default_factory=list)
    backorder_id: str | None = None
    backorder_number: str | None = None
