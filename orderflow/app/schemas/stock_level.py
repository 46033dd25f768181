from pydantic import BaseModel, Field


class StockLevelRead(BaseModel):
    item_id: str
    location_id: str
    quantity: int  # READ ONLY, changed through receptions and transfers

    class Config:
        from_attributes = True


class TransferCreate(BaseModel):
    item_id: str
    from_location_id: str
    to_location_id: str
    quantity: int = Field(gt=0)
