from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.money import MinorUnits
from modules.daybook.schemas.daybook_schemas import TransactionOut
from modules.orders.enums.order_enums import PaymentMethod
from modules.orders.schemas.order_schemas import OrderOut


class PaymentRequest(BaseModel):
    order_id: int
    method: PaymentMethod
    amount_received: Optional[Decimal] = Field(None, ge=0)
    # Ignored for cash: change is always computed server-side
    change_given: Optional[Decimal] = None
    reference_number: Optional[str] = Field(None, max_length=100)


class ReconcileRequest(BaseModel):
    business_date: Optional[date] = None


class PaymentOut(BaseModel):
    id: int
    order_id: int
    method: PaymentMethod
    amount: MinorUnits
    amount_received: Optional[MinorUnits] = None
    change_given: Optional[MinorUnits] = None
    reference_number: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResultOut(BaseModel):
    order: OrderOut
    payment: PaymentOut
    ledger_transaction: Optional[TransactionOut] = None
    warning: Optional[Dict[str, Any]] = None


class ReconcileSummaryOut(BaseModel):
    reconciled: List[int]
    failed: List[Dict[str, Any]]
