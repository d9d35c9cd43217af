from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from ..schemas.settings_schemas import TableSettingsOut, TableSettingsUpdate
from ..services.settings_service import (
    get_restaurant_settings,
    update_delivery_fee,
    update_table_count,
)

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("/tables", response_model=TableSettingsOut)
async def get_table_settings(db: Session = Depends(get_db)):
    return get_restaurant_settings(db)


@router.post("/tables", response_model=TableSettingsOut)
async def save_table_settings(
    payload: TableSettingsUpdate, db: Session = Depends(get_db)
):
    """Update the table count (1-100) and optionally the delivery fee."""
    if payload.delivery_fee is not None:
        await update_delivery_fee(db, payload.delivery_fee)
    return await update_table_count(db, payload.table_count)
