"""
Business-date clock.

Timestamps are stored as naive UTC. The restaurant's trading day is the
calendar date in ``settings.restaurant_timezone``; every ledger date,
summary default and order-number day comes from here.
"""

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def restaurant_timezone() -> ZoneInfo:
    return ZoneInfo(settings.restaurant_timezone)


def business_date_for(moment: Optional[datetime] = None) -> date:
    """Restaurant-local date of ``moment``. Naive datetimes are read as UTC."""
    if moment is None:
        moment = utc_now()
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(restaurant_timezone()).date()


def business_today() -> date:
    return business_date_for(None)


def business_day_start(day: date) -> datetime:
    """Local midnight opening ``day``, as naive UTC for comparing stored timestamps."""
    local_midnight = datetime.combine(day, time.min, tzinfo=restaurant_timezone())
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)
