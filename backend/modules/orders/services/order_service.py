import hmac
import logging
from contextlib import AsyncExitStack
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from core.clock import business_date_for
from core.config import settings
from core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from core.locking import entity_locks
from core.money import to_minor
from modules.daybook.models.daybook_models import DaybookTransaction
from modules.menu.services.menu_price_service import get_prices
from modules.payments.models.payment_models import Payment
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from modules.settings.services.settings_service import get_delivery_fee
from modules.tables.enums.table_enums import TableStatus
from modules.tables.services.table_session_service import (
    ensure_table_session,
    get_active_orders,
    get_table,
    normalize_table_id,
    publish_table_status,
    set_table_status,
)
from ..enums.order_enums import OrderStatus, OrderType
from ..models.order_models import Order, OrderItem
from ..schemas.order_schemas import OrderCreate, OrderItemCreate
from .order_events import order_to_wire, publish_order_status

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    OrderStatus.PENDING: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
    OrderStatus.READY: [OrderStatus.COMPLETED],
    OrderStatus.COMPLETED: [],
    OrderStatus.CANCELLED: [],
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return OrderStatus(target) in VALID_TRANSITIONS[OrderStatus(current)]


def generate_order_number(db: Session, now: datetime) -> str:
    """<PREFIX>-YYYYMMDD-NNN, numbered per business day."""
    day_prefix = f"{settings.order_number_prefix}-{business_date_for(now):%Y%m%d}-"
    numbers = db.query(Order.order_number).filter(
        Order.order_number.like(f"{day_prefix}%")
    ).all()
    highest = 0
    for (number,) in numbers:
        suffix = number[len(day_prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{day_prefix}{highest + 1:03d}"


def price_order_items(
    db: Session, lines: List[OrderItemCreate]
) -> Tuple[List[OrderItem], int]:
    """
    Build the immutable line snapshot from current catalog prices.
    Custom lines keep their staff-entered price.
    """
    catalog = get_prices(
        db, [line.menu_item_id for line in lines
             if not line.is_custom and line.menu_item_id is not None]
    )
    items = []
    subtotal = 0
    for line in lines:
        if line.quantity < 1:
            raise ValidationError("Item quantity must be at least 1")

        if line.is_custom:
            name = (line.name or "").strip()
            if not name:
                raise ValidationError("Custom items require a name")
            if line.unit_price is None:
                raise ValidationError(f"Custom item '{name}' requires a price")
            unit_price = to_minor(line.unit_price)
            if unit_price <= 0:
                raise ValidationError(f"Custom item '{name}' must have a positive price")
            menu_item_id = None
        else:
            if line.menu_item_id is None:
                raise ValidationError("Menu items require a menu_item_id")
            menu_item = catalog.get(line.menu_item_id)
            if menu_item is None:
                raise ValidationError(f"Unknown menu item {line.menu_item_id}")
            if not menu_item.is_available:
                raise ValidationError(f"'{menu_item.name}' is currently unavailable")
            name = menu_item.name
            unit_price = menu_item.price
            menu_item_id = menu_item.id

        line_total = unit_price * line.quantity
        subtotal += line_total
        items.append(OrderItem(
            menu_item_id=menu_item_id,
            name=name,
            unit_price=unit_price,
            quantity=line.quantity,
            line_total=line_total,
            is_custom=line.is_custom,
            notes=line.notes,
        ))
    return items, subtotal


def _validate_order_request(order_data: OrderCreate):
    customer = order_data.customer
    if not order_data.items:
        raise ValidationError("Order must contain at least one item")
    if not customer.name:
        raise ValidationError("Customer name is required")
    if not customer.phone:
        raise ValidationError("Customer phone is required")
    if order_data.order_type == OrderType.DINE_IN and not order_data.table_id:
        raise ValidationError("Dine-in orders require a table")
    if order_data.order_type == OrderType.DELIVERY and not (
        customer.delivery_address or ""
    ).strip():
        raise ValidationError("Delivery orders require a delivery address")


def _stale_order(order_id: int) -> ConflictError:
    return ConflictError(
        f"Order {order_id} was modified concurrently, please retry", "STALE_WRITE"
    )


def _find_by_idempotency_key(db: Session, key: Optional[str]) -> Optional[Order]:
    if not key:
        return None
    return db.query(Order).filter(Order.idempotency_key == key).first()


async def create_order(
    db: Session,
    order_data: OrderCreate,
    now: Optional[datetime] = None,
    idempotency_key: Optional[str] = None,
) -> Order:
    """
    Price and record a new order. A known ``idempotency_key`` returns the
    order it created the first time without publishing anything.
    """
    idempotency_key = idempotency_key or order_data.idempotency_key
    existing = _find_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        logger.info(
            f"Duplicate order submission {idempotency_key}; returning {existing.order_number}"
        )
        return existing

    _validate_order_request(order_data)
    now = now or datetime.utcnow()
    customer = order_data.customer
    is_delivery = order_data.order_type == OrderType.DELIVERY

    table_id = None
    if not is_delivery:
        table_id = normalize_table_id(db, order_data.table_id)

    items, subtotal = price_order_items(db, order_data.items)
    delivery_fee = get_delivery_fee(db) if is_delivery else 0
    total = subtotal + delivery_fee

    if order_data.client_total is not None and to_minor(order_data.client_total) != total:
        logger.warning(
            f"Client total {order_data.client_total} differs from recomputed "
            f"total {total} (minor units); using server total"
        )

    changed_table = None
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(
            entity_locks.hold("order_number", business_date_for(now).isoformat())
        )
        if table_id is not None:
            await stack.enter_async_context(entity_locks.hold("table", table_id))
        try:
            order = Order(
                order_number=generate_order_number(db, now),
                order_type=order_data.order_type.value,
                table_id=table_id,
                customer_name=customer.name,
                customer_phone=customer.phone,
                delivery_address=customer.delivery_address if is_delivery else None,
                delivery_notes=customer.delivery_notes,
                status=OrderStatus.PENDING.value,
                subtotal=subtotal,
                delivery_fee=delivery_fee,
                total=total,
                idempotency_key=idempotency_key or None,
            )
            order.order_items = items
            db.add(order)

            if table_id is not None:
                table, _ = ensure_table_session(
                    db, table_id, customer.name, customer.phone, now
                )
                if set_table_status(table, TableStatus.ORDERING):
                    changed_table = table
            db.commit()
        except (IntegrityError, StaleDataError):
            db.rollback()
            # Lost a race with an identical submission
            existing = _find_by_idempotency_key(db, idempotency_key)
            if existing is not None:
                return existing
            raise ConflictError(
                "Order could not be recorded due to a concurrent update, please retry",
                "STALE_WRITE",
            )
        except Exception:
            db.rollback()
            raise
        db.refresh(order)

    logger.info(
        f"Created {order.order_type} order {order.order_number} total={order.total}"
    )
    broadcast_channel.publish(
        EventType.NEW_ORDER,
        EntityType.ORDER,
        order.id,
        {"order": order_to_wire(order)},
        table_id=order.table_id,
        order_id=order.id,
    )
    if changed_table is not None:
        publish_table_status(changed_table)
    return order


def _get_order(db: Session, order_id: int, for_update: bool = False) -> Order:
    query = db.query(Order).filter(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFoundError(f"Order with id {order_id} not found")
    return order


def _table_side_effect(db: Session, order: Order, new_status: OrderStatus):
    """Keep the table's status in step with its orders. Does not commit."""
    table = get_table(db, order.table_id, for_update=True)
    if table is None or table.status == TableStatus.EMPTY.value:
        return None

    if new_status in (OrderStatus.PREPARING, OrderStatus.READY):
        if table.status in (TableStatus.OCCUPIED.value, TableStatus.ORDERING.value):
            return table if set_table_status(table, TableStatus.DINING) else None
    elif new_status == OrderStatus.CANCELLED:
        remaining = [
            o for o in get_active_orders(db, order.table_id)
            if o.id != order.id and o.status != OrderStatus.CANCELLED.value
        ]
        if not remaining:
            return table if set_table_status(table, TableStatus.OCCUPIED) else None
    return None


async def update_order_status(
    db: Session, order_id: int, new_status: OrderStatus
) -> Order:
    """
    Move an order along pending -> preparing -> ready, or cancel it.
    Completion happens through payment, table clearing or mark-complete.
    """
    try:
        new_status = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Invalid order status: {new_status}")

    changed_table = None
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(entity_locks.hold("order", order_id))
        try:
            order = _get_order(db, order_id, for_update=True)
            current = OrderStatus(order.status)
            if order.archived_at is not None:
                raise InvalidTransitionError(
                    f"order {order_id}", current.value, new_status.value,
                    reason="order is archived",
                )
            if new_status == OrderStatus.COMPLETED:
                raise InvalidTransitionError(
                    f"order {order_id}", current.value, new_status.value,
                    reason="orders complete via payment, table clear or mark complete",
                )
            if not can_transition(current, new_status):
                raise InvalidTransitionError(
                    f"order {order_id}", current.value, new_status.value
                )

            if order.table_id is not None:
                await stack.enter_async_context(
                    entity_locks.hold("table", order.table_id)
                )
                changed_table = _table_side_effect(db, order, new_status)

            order.status = new_status.value
            if (
                new_status == OrderStatus.CANCELLED
                and order.order_type == OrderType.DELIVERY.value
            ):
                # No table clear will ever pick up a delivery order
                order.archived_at = datetime.utcnow()
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_order(order_id)
        except Exception:
            db.rollback()
            raise
        db.refresh(order)

    logger.info(f"Order {order.order_number}: {current.value} -> {new_status.value}")
    publish_order_status(order, previousStatus=current.value)
    if changed_table is not None:
        publish_table_status(changed_table)
    return order


async def mark_order_complete(
    db: Session, order_id: int, now: Optional[datetime] = None
) -> Order:
    """
    Complete and archive a delivery order that is ready. A completed or
    cancelled delivery order is archived with its status unchanged.
    """
    now = now or datetime.utcnow()
    async with entity_locks.hold("order", order_id):
        try:
            order = _get_order(db, order_id, for_update=True)
            current = order.status
            if order.order_type != OrderType.DELIVERY.value:
                raise InvalidTransitionError(
                    f"order {order_id}", current, OrderStatus.COMPLETED.value,
                    reason="dine-in orders complete when their table is cleared",
                )
            if order.archived_at is not None:
                raise InvalidTransitionError(
                    f"order {order_id}", current, OrderStatus.COMPLETED.value,
                    reason="order is archived",
                )
            if current == OrderStatus.READY.value:
                order.status = OrderStatus.COMPLETED.value
                order.completed_at = now
            elif current not in (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value):
                raise InvalidTransitionError(
                    f"order {order_id}", current, OrderStatus.COMPLETED.value
                )
            order.archived_at = now
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_order(order_id)
        except Exception:
            db.rollback()
            raise
        db.refresh(order)

    logger.info(f"Delivery order {order.order_number} archived as {order.status}")
    publish_order_status(order, previousStatus=current)
    return order


def _query_with_items(db: Session):
    return db.query(Order).options(selectinload(Order.order_items))


async def get_order(db: Session, order_id: int) -> Order:
    order = _query_with_items(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f"Order with id {order_id} not found")
    return order


async def list_active_orders(
    db: Session,
    status: Optional[OrderStatus] = None,
    order_type: Optional[OrderType] = None,
    table_id: Optional[str] = None,
) -> List[Order]:
    query = _query_with_items(db).filter(Order.archived_at.is_(None))
    if status:
        query = query.filter(Order.status == OrderStatus(status).value)
    if order_type:
        query = query.filter(Order.order_type == OrderType(order_type).value)
    if table_id is not None:
        query = query.filter(Order.table_id == str(table_id))
    return query.order_by(Order.created_at, Order.id).all()


async def list_order_history(
    db: Session,
    limit: int = 50,
    phone: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Order]:
    """Archived orders, most recently archived first."""
    query = _query_with_items(db).filter(Order.archived_at.isnot(None))
    if phone:
        query = query.filter(Order.customer_phone == phone.strip())
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)
    return query.order_by(Order.archived_at.desc(), Order.id.desc()).limit(limit).all()


def verify_delete_secret(secret: Optional[str]):
    expected = settings.order_delete_secret.encode()
    if not secret or not hmac.compare_digest(secret.encode(), expected):
        raise AuthenticationError("Invalid password for order deletion")


async def delete_order(db: Session, order_id: int, secret: Optional[str]) -> dict:
    """
    Permanently remove an archived order. Ledger rows that reference it are
    left untouched and reported back as orphaned.
    """
    verify_delete_secret(secret)

    async with entity_locks.hold("order", order_id):
        try:
            order = _get_order(db, order_id, for_update=True)
            if order.archived_at is None:
                raise InvalidTransitionError(
                    f"order {order_id}", order.status, "deleted",
                    reason="only archived orders can be deleted",
                )
            order_number = order.order_number
            table_id = order.table_id
            orphaned = [
                row.id for row in db.query(DaybookTransaction.id)
                .filter(DaybookTransaction.order_id == order_id)
                .order_by(DaybookTransaction.id)
            ]
            db.query(Payment).filter(Payment.order_id == order_id).delete()
            db.delete(order)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_order(order_id)
        except Exception:
            db.rollback()
            raise

    if orphaned:
        logger.warning(
            f"Deleted order {order_number}; ledger entries {orphaned} are now orphaned"
        )
    else:
        logger.info(f"Deleted order {order_number}")

    broadcast_channel.publish(
        EventType.ORDER_DELETED,
        EntityType.ORDER,
        order_id,
        {"orderNumber": order_number},
        table_id=table_id,
        order_id=order_id,
    )
    return {
        "order_id": order_id,
        "order_number": order_number,
        "orphaned_transaction_ids": orphaned,
    }
