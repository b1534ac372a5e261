# FILE: hms_billing/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from hms_billing.core.config import settings


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the hospital's timezone.
    DateTime columns are naive, so keep tzinfo off.
    """
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()
