from decimal import Decimal

from pydantic import BaseModel


class ProjectAggregatesRead(BaseModel):
    id: str
    code: str | None
    name: str
    materials_received: Decimal
    materials_committed: Decimal
    travel_approved: Decimal
    travel_pending: Decimal

    class Config:
        from_attributes = True
