from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.money import MinorUnits
from ..enums.table_enums import CartOperation, TableStatus


class TableBindRequest(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


class TableOut(BaseModel):
    table_id: str
    status: TableStatus
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    session_start: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TableStatusOut(TableOut):
    active_order_count: int
    active_total: Decimal
    unpaid_total: Decimal


class CartItem(BaseModel):
    item_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int
    is_custom: bool = False


class CartReplace(BaseModel):
    items: List[CartItem] = Field(default_factory=list)


class CartMutation(BaseModel):
    op: CartOperation
    item_id: Optional[str] = None
    quantity: Optional[int] = None
    item: Optional[CartItem] = None


class CartOut(BaseModel):
    table_id: str
    items: List[CartItem]
    last_write: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ClearTableOut(BaseModel):
    table_id: str
    cleared: bool
    archived_order_ids: List[int]
    history_id: Optional[int] = None


class SessionHistoryOut(BaseModel):
    id: int
    table_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    session_start: Optional[datetime] = None
    session_end: datetime
    order_count: int
    total: MinorUnits

    model_config = ConfigDict(from_attributes=True)
