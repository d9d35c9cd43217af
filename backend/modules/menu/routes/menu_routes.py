from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.database import get_db
from ..schemas.menu_schemas import MenuItemOut
from ..services.menu_price_service import get_menu_items

router = APIRouter(prefix="/api/menu", tags=["Menu"])


@router.get("/items", response_model=List[MenuItemOut])
async def list_menu_items(db: Session = Depends(get_db)):
    """Read-only price list for ordering clients."""
    return get_menu_items(db)
