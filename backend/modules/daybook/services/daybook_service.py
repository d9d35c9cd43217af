# backend/modules/daybook/services/daybook_service.py

"""
Daily cash ledger.

Rows are only ever appended. Amounts are non-negative minor units and the
type says which way the money moved. The drawer balance for a day is::

    opening + cash payments - expenses - cash handovers

Card and online payments are reported but never counted as drawer cash.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import exists, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import business_today
from core.exceptions import ConflictError, ValidationError
from core.money import Amount, from_minor, to_minor
from modules.orders.models.order_models import Order
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from ..enums.daybook_enums import (
    BALANCE_TRANSACTION_TYPES,
    PAYMENT_TRANSACTION_TYPES,
    TransactionType,
)
from ..models.daybook_models import DaybookTransaction

logger = logging.getLogger(__name__)


@dataclass
class DaySummary:
    business_date: date
    opening_balance: int = 0
    cash_payments: int = 0
    card_payments: int = 0
    online_payments: int = 0
    expenses: int = 0
    cash_handovers: int = 0
    closing_balance: Optional[int] = None
    transaction_count: int = 0
    expense_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def total_sales(self) -> int:
        return self.cash_payments + self.card_payments + self.online_payments

    @property
    def calculated_closing_balance(self) -> int:
        return (
            self.opening_balance
            + self.cash_payments
            - self.expenses
            - self.cash_handovers
        )

    @property
    def closing_difference(self) -> Optional[int]:
        if self.closing_balance is None:
            return None
        return self.closing_balance - self.calculated_closing_balance

    @property
    def balanced(self) -> Optional[bool]:
        if self.closing_balance is None:
            return None
        return self.closing_difference == 0


def resolve_business_date(value: Union[date, str, None]) -> date:
    if value is None:
        return business_today()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}. Expected YYYY-MM-DD")


def _parse_type(transaction_type) -> TransactionType:
    try:
        return TransactionType(transaction_type)
    except ValueError:
        allowed = ", ".join(t.value for t in TransactionType)
        raise ValidationError(
            f"Unknown transaction type {transaction_type!r}. Allowed: {allowed}",
            error_code="INVALID_TRANSACTION_TYPE",
        )


def _parse_amount(transaction_type: TransactionType, amount: Amount) -> int:
    try:
        minor = to_minor(amount)
    except ValueError:
        raise ValidationError(f"Invalid amount: {amount!r}")
    if minor < 0:
        raise ValidationError(
            "Amount must be a positive magnitude; the transaction type sets direction"
        )
    if minor == 0 and transaction_type not in BALANCE_TRANSACTION_TYPES:
        raise ValidationError("Amount must be greater than zero")
    return minor


def transaction_to_wire(row: DaybookTransaction) -> Dict[str, Any]:
    return {
        "id": row.id,
        "type": row.transaction_type,
        "amount": str(from_minor(row.amount)),
        "description": row.description,
        "category": row.category,
        "orderId": row.order_id,
        "date": row.business_date.isoformat(),
        "createdAt": row.created_at.isoformat() if row.created_at else None,
    }


def publish_transaction(row: DaybookTransaction):
    broadcast_channel.publish(
        EventType.TRANSACTION_CREATED,
        EntityType.TRANSACTION,
        row.id,
        {"transaction": transaction_to_wire(row)},
        order_id=row.order_id,
    )


def find_payment_entry(db: Session, order_id: int) -> Optional[DaybookTransaction]:
    return (
        db.query(DaybookTransaction)
        .filter(
            DaybookTransaction.order_id == order_id,
            DaybookTransaction.transaction_type.in_(
                [t.value for t in PAYMENT_TRANSACTION_TYPES]
            ),
        )
        .first()
    )


def add_transaction(
    db: Session,
    transaction_type: Union[TransactionType, str],
    amount: Amount,
    description: Optional[str] = None,
    business_date: Union[date, str, None] = None,
    order_id: Optional[int] = None,
    category: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Tuple[DaybookTransaction, bool]:
    """
    Stage a ledger row in the caller's transaction without committing.
    Returns ``(row, created)``; a known idempotency key yields the existing
    row and ``created=False``.
    """
    transaction_type = _parse_type(transaction_type)
    minor = _parse_amount(transaction_type, amount)
    business_date = resolve_business_date(business_date)

    if idempotency_key:
        existing = (
            db.query(DaybookTransaction)
            .filter(DaybookTransaction.idempotency_key == idempotency_key)
            .first()
        )
        if existing is not None:
            logger.info(f"Duplicate daybook submission {idempotency_key}; returning existing row")
            return existing, False

    if order_id is not None and transaction_type in PAYMENT_TRANSACTION_TYPES:
        if find_payment_entry(db, order_id) is not None:
            raise ConflictError(
                f"Order {order_id} already has a payment entry in the daybook",
                "DUPLICATE_LEDGER_ENTRY",
            )

    row = DaybookTransaction(
        transaction_type=transaction_type.value,
        amount=minor,
        description=(description or "").strip() or None,
        category=(category or "").strip() or None,
        order_id=order_id,
        business_date=business_date,
        idempotency_key=idempotency_key or None,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.flush()
    return row, True


async def append_transaction(
    db: Session,
    transaction_type: Union[TransactionType, str],
    amount: Amount,
    description: Optional[str] = None,
    business_date: Union[date, str, None] = None,
    order_id: Optional[int] = None,
    category: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> DaybookTransaction:
    """Append one ledger row and notify clients."""
    try:
        row, created = add_transaction(
            db, transaction_type, amount, description, business_date,
            order_id, category, idempotency_key,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        if idempotency_key:
            # Lost a race with an identical submission
            row = (
                db.query(DaybookTransaction)
                .filter(DaybookTransaction.idempotency_key == idempotency_key)
                .first()
            )
            if row is not None:
                return row
        raise ConflictError("Conflicting daybook entry", "DUPLICATE_LEDGER_ENTRY")
    except Exception:
        db.rollback()
        raise

    db.refresh(row)
    if created:
        logger.info(
            f"Daybook {row.transaction_type} of {row.amount} on {row.business_date}"
        )
        publish_transaction(row)
    return row


def _latest_of_type(
    db: Session, transaction_type: TransactionType, on_or_before: date, exact: bool
) -> Optional[DaybookTransaction]:
    query = db.query(DaybookTransaction).filter(
        DaybookTransaction.transaction_type == transaction_type.value
    )
    if exact:
        query = query.filter(DaybookTransaction.business_date == on_or_before)
    else:
        query = query.filter(DaybookTransaction.business_date <= on_or_before)
    return query.order_by(
        DaybookTransaction.business_date.desc(),
        DaybookTransaction.created_at.desc(),
        DaybookTransaction.id.desc(),
    ).first()


async def get_summary(db: Session, business_date: Union[date, str, None] = None) -> DaySummary:
    business_date = resolve_business_date(business_date)
    summary = DaySummary(business_date=business_date)

    opening = _latest_of_type(db, TransactionType.OPENING_BALANCE, business_date, exact=False)
    if opening is not None:
        summary.opening_balance = opening.amount

    closing = _latest_of_type(db, TransactionType.CLOSING_BALANCE, business_date, exact=True)
    if closing is not None:
        summary.closing_balance = closing.amount

    totals = (
        db.query(
            DaybookTransaction.transaction_type,
            func.coalesce(func.sum(DaybookTransaction.amount), 0),
            func.count(DaybookTransaction.id),
        )
        .filter(DaybookTransaction.business_date == business_date)
        .group_by(DaybookTransaction.transaction_type)
        .all()
    )
    for transaction_type, total, count in totals:
        summary.transaction_count += count
        if transaction_type == TransactionType.CASH_PAYMENT.value:
            summary.cash_payments = int(total)
        elif transaction_type == TransactionType.CARD_PAYMENT.value:
            summary.card_payments = int(total)
        elif transaction_type == TransactionType.ONLINE_PAYMENT.value:
            summary.online_payments = int(total)
        elif transaction_type == TransactionType.EXPENSE.value:
            summary.expenses = int(total)
        elif transaction_type == TransactionType.CASH_HANDOVER.value:
            summary.cash_handovers = int(total)

    expense_rows = (
        db.query(
            DaybookTransaction.category,
            func.sum(DaybookTransaction.amount),
        )
        .filter(
            DaybookTransaction.business_date == business_date,
            DaybookTransaction.transaction_type == TransactionType.EXPENSE.value,
        )
        .group_by(DaybookTransaction.category)
        .all()
    )
    summary.expense_breakdown = {
        (category or "uncategorized"): int(total) for category, total in expense_rows
    }

    if summary.balanced is False:
        logger.warning(
            f"Daybook for {business_date} does not balance: recorded "
            f"{summary.closing_balance}, calculated {summary.calculated_closing_balance}"
        )
    return summary


async def get_transactions(
    db: Session, business_date: Union[date, str, None] = None, limit: int = 100
) -> List[DaybookTransaction]:
    """Transactions for one day in the order they were recorded."""
    business_date = resolve_business_date(business_date)
    return (
        db.query(DaybookTransaction)
        .filter(DaybookTransaction.business_date == business_date)
        .order_by(DaybookTransaction.created_at, DaybookTransaction.id)
        .limit(limit)
        .all()
    )


async def get_recent_transactions(db: Session, limit: int = 20) -> List[DaybookTransaction]:
    return (
        db.query(DaybookTransaction)
        .order_by(DaybookTransaction.created_at.desc(), DaybookTransaction.id.desc())
        .limit(limit)
        .all()
    )


async def set_opening_balance(
    db: Session, business_date: Union[date, str, None], amount: Amount
) -> DaybookTransaction:
    business_date = resolve_business_date(business_date)
    return await append_transaction(
        db,
        TransactionType.OPENING_BALANCE,
        amount,
        description=f"Opening balance for {business_date.isoformat()}",
        business_date=business_date,
    )


async def record_closing_balance(
    db: Session, business_date: Union[date, str, None], amount: Amount
) -> DaySummary:
    """Record the counted drawer cash and return the reconciled summary."""
    business_date = resolve_business_date(business_date)
    await append_transaction(
        db,
        TransactionType.CLOSING_BALANCE,
        amount,
        description=f"Closing balance for {business_date.isoformat()}",
        business_date=business_date,
    )
    return await get_summary(db, business_date)


async def get_orphaned_transactions(
    db: Session, business_date: Union[date, str, None] = None
) -> List[DaybookTransaction]:
    """Ledger rows whose order has since been deleted."""
    query = db.query(DaybookTransaction).filter(
        DaybookTransaction.order_id.isnot(None),
        ~exists().where(Order.id == DaybookTransaction.order_id),
    )
    if business_date is not None:
        query = query.filter(
            DaybookTransaction.business_date == resolve_business_date(business_date)
        )
    return query.order_by(DaybookTransaction.created_at, DaybookTransaction.id).all()
