# clinic_booking/core/clock.py
from __future__ import annotations
from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from clinic_booking.core.config import settings

LOCAL_TZ = ZoneInfo(settings.CLINIC_TIMEZONE)

LABEL_TIME_FORMAT = "%I:%M %p"   # 09:00 AM
LABEL_SEPARATOR = " - "


def local_now(tz: Optional[ZoneInfo] = None) -> datetime:
    """Clinic wall-clock now, as a naive datetime."""
    return datetime.now(tz or LOCAL_TZ).replace(tzinfo=None, microsecond=0)


def format_slot_label(start: time, end: time) -> str:
    return f"{start.strftime(LABEL_TIME_FORMAT)}{LABEL_SEPARATOR}{end.strftime(LABEL_TIME_FORMAT)}"


def parse_slot_label(label: str) -> tuple[time, time]:
    """'09:00 AM - 09:30 AM' -> (time(9, 0), time(9, 30))."""
    parts = label.split(LABEL_SEPARATOR)
    if len(parts) != 2:
        raise ValueError(f"Invalid slot label '{label}'")
    try:
        start = datetime.strptime(parts[0].strip(), LABEL_TIME_FORMAT).time()
        end = datetime.strptime(parts[1].strip(), LABEL_TIME_FORMAT).time()
    except ValueError:
        raise ValueError(f"Invalid slot label '{label}'")
    return start, end
