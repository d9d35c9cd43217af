from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from modules.daybook.schemas.daybook_schemas import TransactionOut
from modules.orders.schemas.order_schemas import OrderOut
from ..schemas.payment_schemas import (
    PaymentOut,
    PaymentRequest,
    PaymentResultOut,
    ReconcileRequest,
    ReconcileSummaryOut,
)
from ..services.payment_reconciler import (
    complete_payment,
    list_unledgered,
    reconcile_order,
    reconcile_unledgered,
)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/complete", response_model=PaymentResultOut)
async def complete_order_payment(
    payload: PaymentRequest, db: Session = Depends(get_db)
):
    """
    Settle an order. A paid order whose daybook entry could not be written
    is still reported as paid, with a ``warning`` describing the gap.
    """
    result = await complete_payment(
        db,
        payload.order_id,
        payload.method,
        amount_received=payload.amount_received,
        change_given=payload.change_given,
        reference_number=payload.reference_number,
    )
    ledger = result.ledger_transaction
    return PaymentResultOut(
        order=OrderOut.model_validate(result.order),
        payment=PaymentOut.model_validate(result.payment),
        ledger_transaction=TransactionOut.model_validate(ledger) if ledger else None,
        warning=result.warning.to_dict() if result.warning else None,
    )


@router.post("/reconcile/{order_id}", response_model=TransactionOut)
async def reconcile_single_order(
    order_id: int,
    payload: Optional[ReconcileRequest] = Body(None),
    db: Session = Depends(get_db),
):
    business_date = payload.business_date if payload else None
    return await reconcile_order(db, order_id, business_date)


@router.post("/reconcile", response_model=ReconcileSummaryOut)
async def reconcile_all(db: Session = Depends(get_db)):
    """Append daybook entries for every paid order that lacks one."""
    summary = await reconcile_unledgered(db)
    return ReconcileSummaryOut(reconciled=summary.reconciled, failed=summary.failed)


@router.get("/unledgered", response_model=List[OrderOut])
async def unledgered_orders(db: Session = Depends(get_db)):
    return await list_unledgered(db)
