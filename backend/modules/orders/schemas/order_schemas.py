from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from core.money import MinorUnits
from ..enums.order_enums import OrderStatus, OrderType


class OrderItemCreate(BaseModel):
    menu_item_id: Optional[int] = None
    name: Optional[str] = None
    quantity: int = 1
    # Only honoured for custom lines; catalog prices come from the menu
    unit_price: Optional[Decimal] = None
    is_custom: bool = False
    notes: Optional[str] = None


class CustomerInfo(BaseModel):
    name: str = ""
    phone: str = ""
    delivery_address: Optional[str] = None
    delivery_notes: Optional[str] = None

    @field_validator("name", "phone")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return (v or "").strip()


class OrderCreate(BaseModel):
    order_type: OrderType = OrderType.DINE_IN
    table_id: Optional[str] = None
    customer: CustomerInfo
    items: List[OrderItemCreate] = Field(default_factory=list)
    # Advisory only: the server recomputes the total
    client_total: Optional[Decimal] = None
    idempotency_key: Optional[str] = Field(None, max_length=100)

    @field_validator("table_id", mode="before")
    @classmethod
    def table_id_to_str(cls, v):
        return str(v) if v is not None else None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderDeleteRequest(BaseModel):
    secret: Optional[str] = None


class OrderItemOut(BaseModel):
    id: int
    menu_item_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: MinorUnits
    line_total: MinorUnits
    is_custom: bool
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    order_type: OrderType
    table_id: Optional[str] = None
    customer_name: str
    customer_phone: str
    delivery_address: Optional[str] = None
    delivery_notes: Optional[str] = None
    status: OrderStatus
    subtotal: MinorUnits
    delivery_fee: MinorUnits
    total: MinorUnits
    payment_status: str
    payment_method: Optional[str] = None
    ledger_transaction_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    order_items: List[OrderItemOut] = []

    class Config:
        from_attributes = True


class OrderDeleteResult(BaseModel):
    order_id: int
    order_number: str
    orphaned_transaction_ids: List[int] = []
