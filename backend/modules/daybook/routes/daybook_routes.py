from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from core.database import get_db
from ..schemas.daybook_schemas import (
    BalanceRequest,
    DaySummaryOut,
    TransactionCreate,
    TransactionOut,
)
from ..services.daybook_service import (
    append_transaction,
    get_orphaned_transactions,
    get_recent_transactions,
    get_summary,
    get_transactions,
    record_closing_balance,
    set_opening_balance,
)

router = APIRouter(prefix="/api/daybook", tags=["Daybook"])


@router.post("/transaction", response_model=TransactionOut, status_code=201)
async def create_transaction(
    payload: TransactionCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    """
    Append a ledger entry. Resubmitting with the same ``idempotency_key``
    (body field or ``Idempotency-Key`` header) returns the original entry
    instead of creating a second one.
    """
    return await append_transaction(
        db,
        payload.type,
        payload.amount,
        description=payload.description,
        business_date=payload.business_date,
        order_id=payload.order_id,
        category=payload.category,
        idempotency_key=payload.idempotency_key or idempotency_key,
    )


@router.get("/transactions", response_model=List[TransactionOut])
async def list_transactions(
    business_date: Optional[date] = Query(
        None, alias="date", description="Business date (YYYY-MM-DD)"
    ),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return await get_transactions(db, business_date, limit)


@router.get("/recent-transactions", response_model=List[TransactionOut])
async def recent_transactions(
    limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)
):
    return await get_recent_transactions(db, limit)


@router.get("/summary", response_model=DaySummaryOut)
async def day_summary(
    business_date: Optional[date] = Query(
        None, alias="date", description="Business date (YYYY-MM-DD)"
    ),
    db: Session = Depends(get_db),
):
    summary = await get_summary(db, business_date)
    return DaySummaryOut.model_validate(summary, from_attributes=True)


@router.post("/opening-balance", response_model=TransactionOut, status_code=201)
async def opening_balance(payload: BalanceRequest, db: Session = Depends(get_db)):
    return await set_opening_balance(db, payload.business_date, payload.amount)


@router.post("/closing-balance", response_model=DaySummaryOut, status_code=201)
async def closing_balance(payload: BalanceRequest, db: Session = Depends(get_db)):
    summary = await record_closing_balance(db, payload.business_date, payload.amount)
    return DaySummaryOut.model_validate(summary, from_attributes=True)


@router.get("/orphaned", response_model=List[TransactionOut])
async def orphaned_transactions(
    business_date: Optional[date] = Query(
        None, alias="date", description="Business date (YYYY-MM-DD)"
    ),
    db: Session = Depends(get_db),
):
    """Ledger entries whose order has been deleted."""
    return await get_orphaned_transactions(db, business_date)
