from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class TableSettingsUpdate(BaseModel):
    table_count: int = Field(..., ge=1, le=100)
    delivery_fee: Optional[Decimal] = Field(None, ge=0)


class TableSettingsOut(BaseModel):
    table_count: int
    delivery_fee: Decimal
    currency: str
