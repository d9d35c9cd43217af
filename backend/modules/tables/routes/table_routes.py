# backend/modules/tables/routes/table_routes.py

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from ..schemas.table_schemas import (
    CartMutation,
    CartOut,
    CartReplace,
    ClearTableOut,
    SessionHistoryOut,
    TableBindRequest,
    TableOut,
    TableStatusOut,
)
from ..services.table_session_service import (
    bind_table,
    clear_cart,
    clear_table,
    get_cart,
    get_session_history,
    list_table_statuses,
    mutate_cart,
    replace_cart,
    request_bill,
)

router = APIRouter(prefix="/api/tables", tags=["Tables"])


@router.get("/status", response_model=List[TableStatusOut])
async def table_statuses(db: Session = Depends(get_db)):
    """Status of every configured table, including never-used ones."""
    return await list_table_statuses(db)


@router.post("/{table_id}/session", response_model=TableOut)
async def start_session(
    table_id: str,
    payload: Optional[TableBindRequest] = Body(None),
    db: Session = Depends(get_db),
):
    payload = payload or TableBindRequest()
    return await bind_table(
        db, table_id, payload.customer_name, payload.customer_phone
    )


@router.get("/{table_id}/cart", response_model=CartOut)
async def read_cart(table_id: str, db: Session = Depends(get_db)):
    return await get_cart(db, table_id)


@router.put("/{table_id}/cart", response_model=CartOut)
async def write_cart(
    table_id: str, payload: CartReplace, db: Session = Depends(get_db)
):
    return await replace_cart(
        db, table_id, [item.model_dump() for item in payload.items]
    )


@router.patch("/{table_id}/cart", response_model=CartOut)
async def edit_cart(
    table_id: str, payload: CartMutation, db: Session = Depends(get_db)
):
    return await mutate_cart(
        db,
        table_id,
        payload.op,
        item_id=payload.item_id,
        quantity=payload.quantity,
        item=payload.item.model_dump() if payload.item else None,
    )


@router.delete("/{table_id}/cart", response_model=CartOut)
async def empty_cart(table_id: str, db: Session = Depends(get_db)):
    return await clear_cart(db, table_id)


@router.post("/{table_id}/clear", response_model=ClearTableOut)
async def clear_table_session(table_id: str, db: Session = Depends(get_db)):
    """
    Archive the table's orders and reset it to empty. Rejected while any
    order is still pending or preparing.
    """
    return await clear_table(db, table_id)


@router.post("/{table_id}/request-bill", response_model=TableOut)
async def bill_request(table_id: str, db: Session = Depends(get_db)):
    return await request_bill(db, table_id)


@router.get("/{table_id}/history", response_model=List[SessionHistoryOut])
async def session_history(
    table_id: str,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return await get_session_history(db, table_id, limit)
