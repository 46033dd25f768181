from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from orderflow.app.db.models.core_types import LineType, OrderStatus


class OrderLineCreate(BaseModel):
    item_id: str | None = None
    item_sku: str | None = None
    item_name: str | None = None
    quantity: int
    unit_price: Decimal
    unit: str = "ud"
    line_type: LineType = LineType.material


class OrderCreate(BaseModel):
    supplier_id: str | None = None
    supplier_name: str | None = None
    project_id: str | None = None
    delivery_location_id: str | None = None
    order_date: date | None = None
    estimated_delivery_date: date | None = None
    status: OrderStatus = OrderStatus.pending_approval
    lines: list[OrderLineCreate] = Field(default_factory=list)


class StatusTransition(BaseModel):
    status: OrderStatus
    comment: str | None = None


class BulkDelete(BaseModel):
    ids: list[str] = Field(default_factory=list)


class OrderLineRead(BaseModel):
    line_no: int
    item_id: str | None
    item_sku: str | None
    item_name: str
    quantity: int
    received_quantity: int | None = None
    unit_price: Decimal
    unit: str
    line_type: LineType
    subtotal: Decimal

    class Config:
        from_attributes = True


class StatusHistoryRead(BaseModel):
    status: OrderStatus
    comment: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: str
    order_number: str
    supplier_id: str | None
    supplier_name: str | None
    project_id: str | None
    project_name: str | None
    status: OrderStatus
    order_date: date
    estimated_delivery_date: date | None
    total: Decimal
    reception_notes: str | None
    original_order_id: str | None
    backorder_ids: list[str]
    lines: list[OrderLineRead]
    history: list[StatusHistoryRead]

    class Config:
        from_attributes = True
