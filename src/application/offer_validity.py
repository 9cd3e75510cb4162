# kitchen_cost_engine/src/application/offer_validity.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from src.core.config import BUSINESS_TZ


def _local_date(ts: datetime, tz: ZoneInfo) -> date:
    # naive timestamps are already business-local
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(tz).date()


def format_offer_date(d: date) -> str:
    """'Dec 31, 2025', the format the offers list shows."""
    return f"{d.strftime('%b')} {d.day}, {d.year}"


def days_left(valid_till: datetime, now: datetime, tz: Optional[str] = None) -> int:
    """Calendar days (midnight to midnight) from now until valid_till."""
    zone = ZoneInfo(tz or BUSINESS_TZ)
    return (_local_date(valid_till, zone) - _local_date(now, zone)).days


def validity_label(valid_till: datetime, now: datetime, tz: Optional[str] = None) -> str:
    zone = ZoneInfo(tz or BUSINESS_TZ)
    n = days_left(valid_till, now, tz)
    if n < 0:
        return "Expired"
    if n == 0:
        return "Expires today!"
    if n == 1:
        return "Expires tomorrow!"
    if n <= 7:
        return f"{n} days left"
    return f"Valid till {format_offer_date(_local_date(valid_till, zone))}"
