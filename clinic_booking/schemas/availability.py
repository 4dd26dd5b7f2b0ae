# clinic_booking/schemas/availability.py
from __future__ import annotations
from datetime import date as _Date, datetime as _Datetime, time as _Time
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class SlotReason(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"
    PAST = "past"


class SlotDescriptor(BaseModel):
    label: str = Field(..., description='Slot label, e.g. "09:00 AM - 09:30 AM"')
    start: _Time
    end: _Time
    bookable: bool
    reason: SlotReason


class DayAvailability(BaseModel):
    """Slots for one clinic and date, stamped so callers can drop stale responses."""

    clinic_id: str
    date: _Date
    computed_at: _Datetime
    closed: bool = False
    slots: List[SlotDescriptor] = Field(default_factory=list)

    @property
    def bookable_labels(self) -> List[str]:
        return [s.label for s in self.slots if s.bookable]
