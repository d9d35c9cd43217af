# backend/modules/analytics/routes/analytics_routes.py

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from ..schemas.analytics_schemas import AnalyticsOut, CustomerOut
from ..services.analytics_service import get_analytics, list_customers

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])
customer_router = APIRouter(prefix="/api/customers", tags=["Customers"])


@router.get("", response_model=AnalyticsOut)
async def sales_analytics(
    business_date: Optional[date] = Query(
        None, alias="date", description="Business date treated as today (YYYY-MM-DD)"
    ),
    db: Session = Depends(get_db),
):
    """
    Order counts, revenue, dine-in/delivery split, the trailing week and
    the best-selling items. Cancelled orders never count as revenue.
    """
    summary = await get_analytics(db, business_date)
    return AnalyticsOut.model_validate(summary, from_attributes=True)


@customer_router.get("", response_model=List[CustomerOut])
async def customer_directory(
    limit: int = Query(100, ge=1, le=500), db: Session = Depends(get_db)
):
    return await list_customers(db, limit)
