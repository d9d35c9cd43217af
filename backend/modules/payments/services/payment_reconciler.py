# backend/modules/payments/services/payment_reconciler.py

"""
Settles orders and keeps every paid order matched by exactly one daybook
payment entry.

The payment itself is committed first. The ledger entry is written in a
second transaction; if that fails the payment stands and the caller gets a
ReconciliationWarning. ``reconcile_order`` / ``reconcile_unledgered`` append
the missing entries later.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.clock import business_date_for
from core.exceptions import (
    AlreadyPaidError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReconciliationWarning,
    ValidationError,
)
from core.locking import entity_locks
from core.money import from_minor, to_minor
from modules.daybook.enums.daybook_enums import PAYMENT_METHOD_TRANSACTION_TYPES
from modules.daybook.models.daybook_models import DaybookTransaction
from modules.daybook.services.daybook_service import (
    add_transaction,
    find_payment_entry,
    publish_transaction,
)
from modules.orders.enums.order_enums import (
    OrderPaymentStatus,
    OrderStatus,
    OrderType,
    PaymentMethod,
)
from modules.orders.models.order_models import Order
from modules.orders.services.order_events import publish_order_status
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from modules.tables.services.table_session_service import (
    publish_table_status,
    sync_table_payment_state,
)
from ..models.payment_models import Payment

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = {OrderStatus.READY.value, OrderStatus.COMPLETED.value}


@dataclass
class PaymentResult:
    order: Order
    payment: Payment
    ledger_transaction: Optional[DaybookTransaction] = None
    warning: Optional[ReconciliationWarning] = None


@dataclass
class ReconcileSummary:
    reconciled: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


def _validate_payment_details(
    order: Order,
    method: PaymentMethod,
    amount_received: Optional[Decimal],
    change_given: Optional[Decimal],
    reference_number: Optional[str],
) -> Tuple[Optional[int], Optional[int], Optional[str]]:
    """Return (amount_received, change_given, reference) in minor units."""
    if method == PaymentMethod.CASH:
        if amount_received is None:
            raise ValidationError("Cash payments require the amount received")
        try:
            received = to_minor(amount_received)
        except ValueError:
            raise ValidationError(f"Invalid amount received: {amount_received!r}")
        if received < order.total:
            raise ValidationError(
                f"Amount received {from_minor(received)} is less than the order "
                f"total {from_minor(order.total)}"
            )
        change = received - order.total
        if change_given is not None and to_minor(change_given) != change:
            logger.info(
                f"Ignoring client change {change_given} for order {order.id}; "
                f"computed {from_minor(change)}"
            )
        return received, change, None

    reference = (reference_number or "").strip()
    if not reference:
        raise ValidationError(f"{method.value} payments require a reference number")
    if amount_received is not None or change_given is not None:
        raise ValidationError(
            "Amount received and change apply to cash payments only"
        )
    return None, None, reference


def _load_order(db: Session, order_id: int, for_update: bool = False) -> Order:
    query = db.query(Order).filter(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError(f"Order with id {order_id} not found")
    return order


def _write_ledger_entry(
    db: Session, order: Order, business_date: date
) -> Tuple[DaybookTransaction, bool]:
    """Append (or find) the order's payment entry and link it. Commits."""
    row = find_payment_entry(db, order.id)
    created = False
    if row is None:
        row, created = add_transaction(
            db,
            PAYMENT_METHOD_TRANSACTION_TYPES[order.payment_method],
            from_minor(order.total),
            description=f"Payment for order {order.order_number}",
            business_date=business_date,
            order_id=order.id,
        )
    order.ledger_transaction_id = row.id
    db.commit()
    db.refresh(row)
    return row, created


async def complete_payment(
    db: Session,
    order_id: int,
    method: PaymentMethod,
    amount_received: Optional[Decimal] = None,
    change_given: Optional[Decimal] = None,
    reference_number: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentResult:
    """
    Settle an order that is ready or completed.

    Raises AlreadyPaidError for a second payment; two concurrent calls on
    one order produce exactly one success.
    """
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {method}")
    now = now or datetime.utcnow()

    changed_table = None
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(entity_locks.hold("order", order_id))
        try:
            order = _load_order(db, order_id, for_update=True)
            if order.is_paid:
                raise AlreadyPaidError(order_id)

            received, change, reference = _validate_payment_details(
                order, method, amount_received, change_given, reference_number
            )
            if order.status not in PAYABLE_STATUSES:
                raise InvalidTransitionError(
                    f"order {order_id}", order.status, OrderStatus.COMPLETED.value,
                    reason="payment is accepted once the order is ready",
                )

            previous_status = order.status
            order.payment_status = OrderPaymentStatus.PAID.value
            order.payment_method = method.value
            if order.status == OrderStatus.READY.value:
                order.status = OrderStatus.COMPLETED.value
                order.completed_at = now
            if order.order_type == OrderType.DELIVERY.value and order.archived_at is None:
                order.archived_at = now

            payment = Payment(
                order_id=order.id,
                method=method.value,
                amount=order.total,
                amount_received=received,
                change_given=change,
                reference_number=reference,
            )
            db.add(payment)

            if order.table_id is not None and order.archived_at is None:
                await stack.enter_async_context(
                    entity_locks.hold("table", order.table_id)
                )
                db.flush()
                changed_table = sync_table_payment_state(db, order.table_id)
            db.commit()
        except (StaleDataError, IntegrityError):
            db.rollback()
            db.expire_all()
            current = db.get(Order, order_id)
            if current is not None and current.is_paid:
                raise AlreadyPaidError(order_id)
            raise ConflictError(
                f"Order {order_id} was modified concurrently, please retry",
                "STALE_WRITE",
            )
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        db.refresh(payment)
        logger.info(
            f"Order {order.order_number} paid by {method.value} "
            f"({from_minor(order.total)})"
        )

        ledger_row, created, warning = None, False, None
        try:
            ledger_row, created = _write_ledger_entry(
                db, order, business_date_for(now)
            )
        except Exception as e:
            db.rollback()
            warning = ReconciliationWarning(
                order_id=order.id,
                detail=(
                    f"Order {order.order_number} is paid but its daybook entry "
                    f"could not be written: {e}"
                ),
                context={"order_number": order.order_number},
            )
            logger.warning(warning.detail)
            db.refresh(order)

    publish_order_status(order, previousStatus=previous_status)
    broadcast_channel.publish(
        EventType.PAYMENT_COMPLETED,
        EntityType.ORDER,
        order.id,
        {
            "orderNumber": order.order_number,
            "paymentMethod": method.value,
            "amount": str(from_minor(order.total)),
            "changeGiven": str(from_minor(change)) if change is not None else None,
            "ledgerPending": warning is not None,
        },
        table_id=order.table_id,
        order_id=order.id,
    )
    if created:
        publish_transaction(ledger_row)
    if changed_table is not None:
        publish_table_status(changed_table)

    return PaymentResult(
        order=order, payment=payment, ledger_transaction=ledger_row, warning=warning
    )


async def reconcile_order(
    db: Session, order_id: int, business_date: Optional[date] = None
) -> DaybookTransaction:
    """Append the missing ledger entry for a paid order. Safe to repeat."""
    async with entity_locks.hold("order", order_id):
        order = _load_order(db, order_id)
        if not order.is_paid:
            raise InvalidTransitionError(
                f"order {order_id}", order.payment_status, "reconciled",
                reason="order is not paid",
            )
        if business_date is None:
            payment = db.query(Payment).filter(Payment.order_id == order_id).first()
            paid_at = payment.created_at if payment else None
            business_date = business_date_for(paid_at)
        try:
            row, created = _write_ledger_entry(db, order, business_date)
        except IntegrityError:
            db.rollback()
            raise ConflictError(
                f"Order {order_id} ledger entry changed concurrently, please retry",
                "STALE_WRITE",
            )
        except Exception:
            db.rollback()
            raise

    if created:
        logger.info(f"Reconciled order {order.order_number} into the daybook")
        publish_transaction(row)
    return row


async def list_unledgered(db: Session) -> List[Order]:
    """Paid orders that have no daybook entry linked yet."""
    return (
        db.query(Order)
        .filter(
            Order.payment_status == OrderPaymentStatus.PAID.value,
            Order.ledger_transaction_id.is_(None),
        )
        .order_by(Order.id)
        .all()
    )


async def reconcile_unledgered(db: Session) -> ReconcileSummary:
    summary = ReconcileSummary()
    for order in await list_unledgered(db):
        order_id = order.id
        try:
            await reconcile_order(db, order_id)
            summary.reconciled.append(order_id)
        except Exception as e:
            logger.error(f"Failed to reconcile order {order_id}: {e}")
            summary.failed.append({"order_id": order_id, "detail": str(e)})
    if summary.reconciled or summary.failed:
        logger.info(
            f"Reconciliation run: {len(summary.reconciled)} fixed, "
            f"{len(summary.failed)} failed"
        )
    return summary
