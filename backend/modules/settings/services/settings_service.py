# backend/modules/settings/services/settings_service.py

import logging
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ConflictError, ValidationError
from core.money import from_minor, to_minor
from modules.orders.models.order_models import Order
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from modules.tables.enums.table_enums import TableStatus
from modules.tables.models.table_models import RestaurantTable
from ..enums.settings_enums import MAX_TABLE_COUNT, MIN_TABLE_COUNT, SettingKey
from ..models.settings_models import RestaurantSetting

logger = logging.getLogger(__name__)


def _get_value(db: Session, key: SettingKey) -> Optional[str]:
    row = db.query(RestaurantSetting).filter(RestaurantSetting.key == key.value).first()
    return row.value if row else None


def _set_value(db: Session, key: SettingKey, value: str) -> RestaurantSetting:
    row = db.query(RestaurantSetting).filter(RestaurantSetting.key == key.value).first()
    if row is None:
        row = RestaurantSetting(key=key.value, value=value)
        db.add(row)
    else:
        row.value = value
    return row


def get_table_count(db: Session) -> int:
    value = _get_value(db, SettingKey.TABLE_COUNT)
    if value is None:
        return settings.default_table_count
    return int(value)


def get_delivery_fee(db: Session) -> int:
    """Delivery fee in minor units."""
    value = _get_value(db, SettingKey.DELIVERY_FEE)
    if value is None:
        return to_minor(settings.default_delivery_fee)
    return int(value)


def get_restaurant_settings(db: Session) -> dict:
    return {
        "table_count": get_table_count(db),
        "delivery_fee": from_minor(get_delivery_fee(db)),
        "currency": settings.currency,
    }


def tables_in_use_above(db: Session, table_count: int) -> List[str]:
    """Tables numbered above ``table_count`` that are bound or still have live orders."""
    in_use = {
        table_id for (table_id,) in db.query(RestaurantTable.table_id).filter(
            RestaurantTable.status != TableStatus.EMPTY.value
        )
    }
    in_use.update(
        table_id for (table_id,) in db.query(Order.table_id).filter(
            Order.table_id.isnot(None), Order.archived_at.is_(None)
        ).distinct()
    )
    return sorted(
        (t for t in in_use if t.isdigit() and int(t) > table_count), key=int
    )


async def update_table_count(db: Session, table_count: int) -> dict:
    """
    Persist the number of tables and notify all clients. Shrinking is
    refused while a table that would disappear is still in use.
    """
    if not isinstance(table_count, int) or isinstance(table_count, bool):
        raise ValidationError("Table count must be an integer")
    if table_count < MIN_TABLE_COUNT or table_count > MAX_TABLE_COUNT:
        raise ValidationError(
            f"Table count must be between {MIN_TABLE_COUNT} and {MAX_TABLE_COUNT}"
        )

    blocking = tables_in_use_above(db, table_count)
    if blocking:
        raise ConflictError(
            f"Tables {', '.join(blocking)} are still in use; clear them before "
            f"reducing the table count to {table_count}",
            "TABLES_IN_USE",
        )

    _set_value(db, SettingKey.TABLE_COUNT, str(table_count))
    db.commit()
    logger.info(f"Table count updated to {table_count}")

    broadcast_channel.publish(
        EventType.SETTINGS_UPDATED,
        EntityType.SETTINGS,
        "tables",
        {"tableCount": table_count},
    )
    return get_restaurant_settings(db)


async def update_delivery_fee(db: Session, fee: Union[Decimal, str, int]) -> dict:
    minor = to_minor(fee)
    if minor < 0:
        raise ValidationError("Delivery fee cannot be negative")

    _set_value(db, SettingKey.DELIVERY_FEE, str(minor))
    db.commit()
    logger.info(f"Delivery fee updated to {minor} minor units")

    broadcast_channel.publish(
        EventType.SETTINGS_UPDATED,
        EntityType.SETTINGS,
        "tables",
        {"deliveryFee": str(from_minor(minor))},
    )
    return get_restaurant_settings(db)
