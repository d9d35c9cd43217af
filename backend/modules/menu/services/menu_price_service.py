# backend/modules/menu/services/menu_price_service.py

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Union

from sqlalchemy.orm import Session

from core.money import to_minor
from ..models.menu_models import MenuItem

logger = logging.getLogger(__name__)


def get_menu_items(db: Session, available_only: bool = True) -> List[MenuItem]:
    query = db.query(MenuItem)
    if available_only:
        query = query.filter(MenuItem.is_available.is_(True))
    return query.order_by(MenuItem.category, MenuItem.name).all()


def get_prices(db: Session, item_ids: Iterable[int]) -> Dict[int, MenuItem]:
    """Look up catalog rows for the given ids; missing ids are simply absent."""
    ids = {int(i) for i in item_ids}
    if not ids:
        return {}
    rows = db.query(MenuItem).filter(MenuItem.id.in_(ids)).all()
    return {row.id: row for row in rows}


def seed_menu_items(
    db: Session, items: Iterable[Dict[str, Union[str, int, Decimal, bool]]]
) -> List[MenuItem]:
    """
    Insert or update catalog rows. ``price`` is given in major units.

    Catalog management lives outside this service; this exists so a fresh
    database and the test-suite have prices to order against.
    """
    saved = []
    for data in items:
        item = None
        if data.get("id") is not None:
            item = db.query(MenuItem).filter(MenuItem.id == data["id"]).first()
        if item is None:
            item = MenuItem(id=data.get("id"))
            db.add(item)
        item.name = data["name"]
        item.category = data.get("category")
        item.price = to_minor(data["price"])
        item.is_available = data.get("is_available", True)
        saved.append(item)
    db.commit()
    for item in saved:
        db.refresh(item)
    logger.info(f"Seeded {len(saved)} menu items")
    return saved
