from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.money import MinorUnits
from ..enums.daybook_enums import TransactionType


class TransactionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Plain string so unknown types reach the ledger's own validation
    type: str
    amount: Decimal
    description: Optional[str] = None
    business_date: Optional[date] = Field(None, alias="date")
    order_id: Optional[int] = None
    category: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=100)


class BalanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_date: Optional[date] = Field(None, alias="date")
    amount: Decimal = Field(..., ge=0)


class TransactionOut(BaseModel):
    id: int
    transaction_type: TransactionType
    amount: MinorUnits
    description: Optional[str] = None
    category: Optional[str] = None
    order_id: Optional[int] = None
    business_date: date
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DaySummaryOut(BaseModel):
    business_date: date
    opening_balance: MinorUnits
    cash_payments: MinorUnits
    card_payments: MinorUnits
    online_payments: MinorUnits
    total_sales: MinorUnits
    expenses: MinorUnits
    cash_handovers: MinorUnits
    calculated_closing_balance: MinorUnits
    closing_balance: Optional[MinorUnits] = None
    closing_difference: Optional[MinorUnits] = None
    balanced: Optional[bool] = None
    transaction_count: int
    expense_breakdown: Dict[str, MinorUnits] = {}

    model_config = ConfigDict(from_attributes=True)
