# backend/modules/tables/services/table_session_service.py

"""
Table sessions, shared carts and table clearing.

A table is bound to a customer session on first use and goes back to
``empty`` only through :func:`clear_table`, which archives every active
order for the table, writes one history record and drops the cart in a
single transaction.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.config import settings
from core.exceptions import (
    ConflictError,
    InvalidTableError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from core.locking import entity_locks
from core.money import from_minor, quantize
from modules.orders.enums.order_enums import OrderStatus
from modules.orders.models.order_models import Order
from modules.orders.services.order_events import publish_order_status
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from modules.settings.services.settings_service import get_table_count
from ..enums.table_enums import CartOperation, TableStatus
from ..models.table_models import RestaurantTable, TableCart, TableSessionHistory

logger = logging.getLogger(__name__)

# Orders in these states no longer block clearing their table
CLEARABLE_ORDER_STATUSES = {
    OrderStatus.READY.value,
    OrderStatus.COMPLETED.value,
    OrderStatus.CANCELLED.value,
}


def normalize_table_id(db: Session, table_id: Any) -> str:
    """Validate a table id against the configured table count."""
    table_count = get_table_count(db)
    raw = str(table_id).strip() if table_id is not None else ""
    if not (raw.isascii() and raw.isdigit()):
        raise InvalidTableError(table_id, table_count)
    number = int(raw)
    if number < 1 or number > table_count:
        raise InvalidTableError(table_id, table_count)
    return str(number)


def get_table(
    db: Session, table_id: str, for_update: bool = False
) -> Optional[RestaurantTable]:
    query = db.query(RestaurantTable).filter(RestaurantTable.table_id == table_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_active_orders(
    db: Session, table_id: str, for_update: bool = False
) -> List[Order]:
    """Non-archived orders referencing the table, oldest first."""
    query = db.query(Order).filter(
        Order.table_id == table_id, Order.archived_at.is_(None)
    )
    if for_update:
        query = query.with_for_update()
    return query.order_by(Order.id).all()


def table_event_payload(table: RestaurantTable) -> Dict[str, Any]:
    return {
        "status": table.status,
        "customerName": table.customer_name,
        "sessionStart": table.session_start.isoformat() if table.session_start else None,
    }


def publish_table_status(table: RestaurantTable):
    broadcast_channel.publish(
        EventType.TABLE_STATUS_UPDATED,
        EntityType.TABLE,
        table.table_id,
        table_event_payload(table),
        table_id=table.table_id,
    )


def ensure_table_session(
    db: Session,
    table_id: str,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[RestaurantTable, bool]:
    """
    Bind the table within the caller's transaction. Returns the table and
    whether its status changed. Does not commit.
    """
    table = get_table(db, table_id, for_update=True)
    if table is None:
        table = RestaurantTable(table_id=table_id, status=TableStatus.EMPTY.value)
        db.add(table)

    if table.status == TableStatus.EMPTY.value:
        table.status = TableStatus.OCCUPIED.value
        table.customer_name = customer_name
        table.customer_phone = customer_phone
        table.session_start = now or datetime.utcnow()
        return table, True

    # Re-binding keeps the running session
    if customer_name and not table.customer_name:
        table.customer_name = customer_name
    if customer_phone and not table.customer_phone:
        table.customer_phone = customer_phone
    return table, False


def set_table_status(table: RestaurantTable, status: TableStatus) -> bool:
    """Set a table's status in the caller's transaction. Returns True on change."""
    status = TableStatus(status)
    if table.status == status.value:
        return False
    logger.debug(f"Table {table.table_id}: {table.status} -> {status.value}")
    table.status = status.value
    return True


def mark_table_status(
    db: Session, table_id: str, status: TableStatus
) -> Optional[RestaurantTable]:
    """
    Side-effect hook for order and payment flows. Changes nothing for tables
    that are not bound. Returns the table when its status changed.
    """
    table = get_table(db, table_id, for_update=True)
    if table is None or table.status == TableStatus.EMPTY.value:
        return None
    return table if set_table_status(table, status) else None


def sync_table_payment_state(db: Session, table_id: str) -> Optional[RestaurantTable]:
    """Move a table to completed once every billable active order is paid."""
    billable = [
        o for o in get_active_orders(db, table_id)
        if o.status != OrderStatus.CANCELLED.value
    ]
    if billable and all(o.is_paid for o in billable):
        return mark_table_status(db, table_id, TableStatus.COMPLETED)
    return None


def _reset_table(table: RestaurantTable):
    table.status = TableStatus.EMPTY.value
    table.customer_name = None
    table.customer_phone = None
    table.session_start = None


def _stale_write(entity: str) -> ConflictError:
    return ConflictError(
        f"{entity} was modified concurrently, please retry", "STALE_WRITE"
    )


async def bind_table(
    db: Session,
    table_id: Any,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> RestaurantTable:
    """Bind a customer session to a table, creating the table on first use."""
    table_id = normalize_table_id(db, table_id)

    async with entity_locks.hold("table", table_id):
        try:
            table, changed = ensure_table_session(
                db, table_id, customer_name, customer_phone
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            # Another process created the row first; bind against that one
            table, changed = ensure_table_session(
                db, table_id, customer_name, customer_phone
            )
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_write(f"Table {table_id}")
        db.refresh(table)

    if changed:
        logger.info(f"Table {table_id} bound to a new session")
        publish_table_status(table)
    return table


# Carts


def _cart_ttl() -> timedelta:
    return timedelta(minutes=settings.cart_ttl_minutes)


def _is_expired(cart: TableCart, now: datetime) -> bool:
    return now - cart.last_write > _cart_ttl()


def _normalize_cart_item(item: Dict[str, Any]) -> Dict[str, Any]:
    item_id = str(item.get("item_id") or "").strip()
    if not item_id:
        raise ValidationError("Cart item requires an item_id")
    name = (item.get("name") or "").strip()
    if not name:
        raise ValidationError(f"Cart item {item_id} requires a name")
    try:
        quantity = int(item.get("quantity", 1))
        unit_price = quantize(item.get("unit_price", 0))
    except (TypeError, ValueError):
        raise ValidationError(f"Cart item {item_id} has an invalid price or quantity")
    if unit_price < 0:
        raise ValidationError(f"Cart item {item_id} has a negative price")
    return {
        "item_id": item_id,
        "name": name,
        "unit_price": str(unit_price),
        "quantity": quantity,
        "is_custom": bool(item.get("is_custom", False)),
    }


def _load_cart_item(stored: Dict[str, Any]) -> Dict[str, Any]:
    item = dict(stored)
    item["unit_price"] = Decimal(stored["unit_price"])
    return item


def _serialize_cart(table_id: str, cart: Optional[TableCart]) -> Dict[str, Any]:
    if cart is None:
        return {"table_id": table_id, "items": [], "last_write": None, "expires_at": None}
    return {
        "table_id": table_id,
        "items": [_load_cart_item(i) for i in cart.items or []],
        "last_write": cart.last_write,
        "expires_at": cart.last_write + _cart_ttl(),
    }


def _load_live_cart(
    db: Session, table_id: str, now: datetime
) -> Optional[TableCart]:
    """Fetch the cart, deleting it first if it has been idle past the TTL."""
    cart = db.query(TableCart).filter(TableCart.table_id == table_id).first()
    if cart is not None and _is_expired(cart, now):
        logger.info(f"Cart for table {table_id} expired (last write {cart.last_write})")
        db.delete(cart)
        db.flush()
        return None
    return cart


def _write_cart(
    db: Session,
    table_id: str,
    items: List[Dict[str, Any]],
    now: datetime,
    cart: Optional[TableCart],
) -> TableCart:
    items = [i for i in items if i["quantity"] > 0]
    if cart is None:
        cart = TableCart(table_id=table_id, items=items, last_write=now)
        db.add(cart)
    else:
        cart.items = items
        cart.last_write = now
    return cart


async def get_cart(
    db: Session, table_id: Any, now: Optional[datetime] = None
) -> Dict[str, Any]:
    table_id = normalize_table_id(db, table_id)
    now = now or datetime.utcnow()
    cart = _load_live_cart(db, table_id, now)
    db.commit()
    return _serialize_cart(table_id, cart)


async def mutate_cart(
    db: Session,
    table_id: Any,
    op: CartOperation,
    item_id: Optional[str] = None,
    quantity: Optional[int] = None,
    item: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Apply one cart edit. Every edit refreshes the TTL; a line whose quantity
    drops to zero or below is removed.
    """
    table_id = normalize_table_id(db, table_id)
    try:
        op = CartOperation(op)
    except ValueError:
        raise ValidationError(f"Unknown cart operation: {op}")
    now = now or datetime.utcnow()

    async with entity_locks.hold("table", table_id):
        try:
            cart = _load_live_cart(db, table_id, now)
            items = [dict(i) for i in (cart.items if cart else [])]

            if op == CartOperation.ADD:
                if item is None:
                    raise ValidationError("add requires an item")
                new_item = _normalize_cart_item(item)
                existing = next(
                    (i for i in items if i["item_id"] == new_item["item_id"]), None
                )
                if existing:
                    existing["quantity"] += new_item["quantity"]
                else:
                    items.append(new_item)
            elif op == CartOperation.REMOVE:
                items = [i for i in items if i["item_id"] != str(item_id)]
            else:
                if quantity is None:
                    raise ValidationError("set_quantity requires a quantity")
                existing = next(
                    (i for i in items if i["item_id"] == str(item_id)), None
                )
                if existing is None:
                    raise NotFoundError(f"Item {item_id} is not in the cart")
                existing["quantity"] = int(quantity)

            cart = _write_cart(db, table_id, items, now, cart)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(cart)
    return _serialize_cart(table_id, cart)


async def replace_cart(
    db: Session,
    table_id: Any,
    items: List[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Overwrite the whole cart with a client snapshot."""
    table_id = normalize_table_id(db, table_id)
    now = now or datetime.utcnow()
    normalized = [_normalize_cart_item(i) for i in items]

    async with entity_locks.hold("table", table_id):
        try:
            cart = db.query(TableCart).filter(TableCart.table_id == table_id).first()
            cart = _write_cart(db, table_id, normalized, now, cart)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(cart)
    return _serialize_cart(table_id, cart)


async def clear_cart(db: Session, table_id: Any) -> Dict[str, Any]:
    table_id = normalize_table_id(db, table_id)
    async with entity_locks.hold("table", table_id):
        db.query(TableCart).filter(TableCart.table_id == table_id).delete()
        db.commit()
    return _serialize_cart(table_id, None)


# Table lifecycle


async def clear_table(
    db: Session, table_id: Any, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Archive all active orders on the table, record the session in history,
    reset the table to empty and drop its cart, all in one transaction.

    Fails with InvalidTransitionError, changing nothing, while any order is
    still pending or preparing. Clearing a table with no active orders
    writes no history record.
    """
    table_id = normalize_table_id(db, table_id)
    now = now or datetime.utcnow()

    async with entity_locks.hold("table", table_id):
        try:
            table = get_table(db, table_id, for_update=True)
            orders = get_active_orders(db, table_id, for_update=True)
            current = table.status if table else TableStatus.EMPTY.value

            blocking = [o for o in orders if o.status not in CLEARABLE_ORDER_STATUSES]
            if blocking:
                summary = ", ".join(f"{o.order_number} ({o.status})" for o in blocking)
                raise InvalidTransitionError(
                    f"table {table_id}", current, TableStatus.EMPTY.value,
                    reason=f"orders still in progress: {summary}",
                )

            history = None
            if orders:
                if table is None:
                    table = RestaurantTable(table_id=table_id, status=current)
                    db.add(table)
                for order in orders:
                    if order.status == OrderStatus.READY.value:
                        order.status = OrderStatus.COMPLETED.value
                        order.completed_at = now
                    order.archived_at = now

                billable = [o for o in orders if o.status != OrderStatus.CANCELLED.value]
                history = TableSessionHistory(
                    table_id=table_id,
                    customer_name=table.customer_name,
                    customer_phone=table.customer_phone,
                    session_start=table.session_start,
                    session_end=now,
                    order_count=len(billable),
                    total=sum(o.total for o in billable),
                )
                db.add(history)

            changed = table is not None and table.status != TableStatus.EMPTY.value
            if table is not None:
                _reset_table(table)
            db.query(TableCart).filter(TableCart.table_id == table_id).delete()
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_write(f"Table {table_id}")
        except Exception:
            db.rollback()
            raise

    archived_ids = [o.id for o in orders]
    if orders or changed:
        logger.info(
            f"Table {table_id} cleared; archived {len(archived_ids)} orders"
        )
        for order in orders:
            publish_order_status(order)
        broadcast_channel.publish(
            EventType.TABLE_CLEARED,
            EntityType.TABLE,
            table_id,
            {
                "status": TableStatus.EMPTY.value,
                "archivedOrderIds": archived_ids,
                "historyId": history.id if history else None,
            },
            table_id=table_id,
        )

    return {
        "table_id": table_id,
        "cleared": bool(orders or changed),
        "archived_order_ids": archived_ids,
        "history_id": history.id if history else None,
    }


async def request_bill(db: Session, table_id: Any) -> RestaurantTable:
    table_id = normalize_table_id(db, table_id)

    async with entity_locks.hold("table", table_id):
        try:
            table = get_table(db, table_id, for_update=True)
            current = table.status if table else TableStatus.EMPTY.value
            billable = [
                o for o in get_active_orders(db, table_id)
                if o.status != OrderStatus.CANCELLED.value
            ]
            if table is None or not billable:
                raise InvalidTransitionError(
                    f"table {table_id}", current,
                    TableStatus.PAYMENT_PENDING.value, reason="no active orders",
                )
            changed = set_table_status(table, TableStatus.PAYMENT_PENDING)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise _stale_write(f"Table {table_id}")
        except Exception:
            db.rollback()
            raise
        db.refresh(table)

    if changed:
        publish_table_status(table)
    return table


async def list_table_statuses(db: Session) -> List[Dict[str, Any]]:
    """One entry per configured table, including never-bound ones."""
    table_count = get_table_count(db)
    tables = {t.table_id: t for t in db.query(RestaurantTable).all()}

    active: Dict[str, List[Order]] = {}
    rows = db.query(Order).filter(
        Order.table_id.isnot(None), Order.archived_at.is_(None)
    ).all()
    for order in rows:
        active.setdefault(order.table_id, []).append(order)

    statuses = []
    for number in range(1, table_count + 1):
        table_id = str(number)
        table = tables.get(table_id)
        billable = [
            o for o in active.get(table_id, [])
            if o.status != OrderStatus.CANCELLED.value
        ]
        statuses.append({
            "table_id": table_id,
            "status": table.status if table else TableStatus.EMPTY.value,
            "customer_name": table.customer_name if table else None,
            "customer_phone": table.customer_phone if table else None,
            "session_start": table.session_start if table else None,
            "active_order_count": len(billable),
            "active_total": from_minor(sum(o.total for o in billable)),
            "unpaid_total": from_minor(
                sum(o.total for o in billable if not o.is_paid)
            ),
        })
    return statuses


async def get_session_history(
    db: Session, table_id: Any, limit: int = 20
) -> List[TableSessionHistory]:
    table_id = normalize_table_id(db, table_id)
    return (
        db.query(TableSessionHistory)
        .filter(TableSessionHistory.table_id == table_id)
        .order_by(TableSessionHistory.session_end.desc(), TableSessionHistory.id.desc())
        .limit(limit)
        .all()
    )
