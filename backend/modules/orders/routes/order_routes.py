from fastapi import APIRouter, Body, Depends, Header, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from core.database import get_db
from ..enums.order_enums import OrderStatus, OrderType
from ..schemas.order_schemas import (
    OrderCreate, OrderOut, OrderStatusUpdate, OrderDeleteRequest,
    OrderDeleteResult
)
from ..services.order_service import (
    create_order, update_order_status, mark_order_complete, get_order,
    list_active_orders, list_order_history, delete_order
)

router = APIRouter(prefix="/api/orders", tags=["Orders"])


@router.post("", response_model=OrderOut, status_code=201)
async def submit_order(
    order_data: OrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db)
):
    """
    Submit a dine-in or delivery order.

    Totals are recomputed from current menu prices; ``client_total`` is
    only compared and logged. Replaying a submission with the same
    ``Idempotency-Key`` header returns the original order.
    """
    return await create_order(db, order_data, idempotency_key=idempotency_key)


@router.get("", response_model=List[OrderOut])
async def get_active_orders(
    status: Optional[OrderStatus] = Query(
        None, description="Filter by order status"
    ),
    order_type: Optional[OrderType] = Query(
        None, description="Filter by order type"
    ),
    table_id: Optional[str] = Query(
        None, description="Filter by table"
    ),
    db: Session = Depends(get_db)
):
    return await list_active_orders(db, status, order_type, table_id)


@router.get("/history", response_model=List[OrderOut])
async def get_order_history(
    limit: int = Query(50, ge=1, le=500),
    phone: Optional[str] = Query(None, description="Customer phone"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db)
):
    """Archived orders, newest first."""
    return await list_order_history(db, limit, phone, start, end)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order_detail(order_id: int, db: Session = Depends(get_db)):
    return await get_order(db, order_id)


@router.put("/{order_id}/status", response_model=OrderOut)
async def change_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db)
):
    return await update_order_status(db, order_id, payload.status)


@router.post("/{order_id}/complete", response_model=OrderOut)
async def complete_delivery_order(order_id: int, db: Session = Depends(get_db)):
    """Mark a ready delivery order completed and archive it."""
    return await mark_order_complete(db, order_id)


@router.delete("/{order_id}", response_model=OrderDeleteResult)
async def remove_order(
    order_id: int,
    payload: Optional[OrderDeleteRequest] = Body(None),
    x_delete_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Permanently delete an archived order. The secret may be sent in the
    body (``secret``) or in the ``X-Delete-Secret`` header.
    """
    secret = (payload.secret if payload else None) or x_delete_secret
    return await delete_order(db, order_id, secret)
