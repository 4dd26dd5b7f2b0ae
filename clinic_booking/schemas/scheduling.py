# clinic_booking/schemas/scheduling.py
from __future__ import annotations
from datetime import date as _Date, datetime as _Datetime, time as _Time, timedelta
from typing import Any, Dict, List, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
    model_validator,
)

from clinic_booking.core.config import settings


DEFAULT_START = _Time(9, 0)
DEFAULT_END = _Time(18, 0)
DEFAULT_BREAK = (_Time(13, 0), _Time(14, 0))
DEFAULT_INTERVAL_MINUTES = 30
DEFAULT_ADVANCE_NOTICE_HOURS = settings.DEFAULT_ADVANCE_NOTICE_HOURS
WORKING_WEEKDAYS = (0, 1, 2, 3, 4)  # Mon..Fri

# Validation context for rows read back from storage: bad breaks are
# dropped or clipped instead of rejected
STORED_CONTEXT = {"stored": True}


def _is_stored(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get("stored"))


class BreakPeriod(BaseModel):
    start: _Time
    end: _Time

    @model_validator(mode="after")
    def _check_order(self, info: ValidationInfo) -> "BreakPeriod":
        # Stored zero-length breaks are dropped by DayTemplate
        if not self.start < self.end and not _is_stored(info):
            raise ValueError("break start must be before break end")
        return self

    @field_serializer("start", "end")
    def _hhmm(self, v: _Time) -> str:
        return v.strftime("%H:%M")


def _coerce_break(item: Any) -> Any:
    # "13:00-14:00"
    if isinstance(item, str):
        start, sep, end = item.partition("-")
        if not sep:
            raise ValueError(f"Invalid break '{item}', expected HH:MM-HH:MM")
        return {"start": start.strip(), "end": end.strip()}
    # ("13:00", "14:00")
    if isinstance(item, (list, tuple)) and len(item) == 2:
        return {"start": item[0], "end": item[1]}
    return item


def _has_legacy_break(start: Any, end: Any) -> bool:
    # An empty value or start == end is how "no break" was stored
    return bool(start) and bool(end) and start != end


def normalize_day_schedule(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Collapse the stored day-schedule shapes into the canonical one.

    Legacy rows carry a single break_start/break_end pair, or 'breaks' as one
    "HH:MM-HH:MM" string; newer rows carry a list. The interval may be stored
    as slot_interval_minutes.
    """
    data = dict(raw)
    if "slot_interval" not in data and "slot_interval_minutes" in data:
        data["slot_interval"] = data.pop("slot_interval_minutes")
    else:
        data.pop("slot_interval_minutes", None)

    legacy_start = data.pop("break_start", None)
    legacy_end = data.pop("break_end", None)
    breaks = data.get("breaks")
    if breaks is None:
        breaks = []
        if _has_legacy_break(legacy_start, legacy_end):
            breaks = [{"start": legacy_start, "end": legacy_end}]
    elif isinstance(breaks, str):
        breaks = [breaks] if breaks.strip() else []
    data["breaks"] = [_coerce_break(b) for b in breaks]
    return data


class DayTemplate(BaseModel):
    """Working hours of one weekday."""

    start_time: _Time = DEFAULT_START
    end_time: _Time = DEFAULT_END
    breaks: List[BreakPeriod] = Field(default_factory=list)
    slot_interval: int = Field(DEFAULT_INTERVAL_MINUTES, gt=0, le=24 * 60, description="minutes")
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_shape(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return normalize_day_schedule(data)
        return data

    @model_validator(mode="after")
    def _check_window(self, info: ValidationInfo) -> "DayTemplate":
        if _is_stored(info):
            return self._repair_stored()
        if not self.start_time < self.end_time:
            raise ValueError("start_time must be before end_time")
        for b in self.breaks:
            if b.start < self.start_time or b.end > self.end_time:
                raise ValueError(
                    f"break {b.start:%H:%M}-{b.end:%H:%M} lies outside working hours"
                )
        return self

    def _repair_stored(self) -> "DayTemplate":
        """Stored rows never fail to load: an inverted day is closed, breaks are clipped to working hours."""
        if not self.start_time < self.end_time:
            self.enabled = False
            self.breaks = []
            return self
        kept: List[BreakPeriod] = []
        for b in self.breaks:
            start, end = max(b.start, self.start_time), min(b.end, self.end_time)
            if start < end:
                kept.append(BreakPeriod(start=start, end=end))
        self.breaks = kept
        return self

    @field_serializer("start_time", "end_time")
    def _hhmm(self, v: _Time) -> str:
        return v.strftime("%H:%M")

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.slot_interval)


def default_day_template(weekday: int) -> DayTemplate:
    return DayTemplate(
        start_time=DEFAULT_START,
        end_time=DEFAULT_END,
        breaks=[BreakPeriod(start=DEFAULT_BREAK[0], end=DEFAULT_BREAK[1])],
        slot_interval=DEFAULT_INTERVAL_MINUTES,
        enabled=weekday in WORKING_WEEKDAYS,
    )


class SchedulingSettingsBase(BaseModel):
    # Keyed by weekday, 0=Monday .. 6=Sunday
    day_schedules: Dict[int, DayTemplate] = Field(default_factory=dict)
    weekly_holidays: Set[int] = Field(default_factory=set)
    custom_holidays: Set[_Date] = Field(default_factory=set)
    appointments_disabled: bool = False
    # Advisory only: stored and echoed, never applied as an automatic expiry
    disable_until_date: Optional[_Date] = None
    disable_until_time: Optional[_Time] = None
    minimum_advance_notice_hours: int = Field(DEFAULT_ADVANCE_NOTICE_HOURS, ge=0)

    @field_validator("day_schedules")
    @classmethod
    def _check_weekday_keys(cls, v: Dict[int, DayTemplate]) -> Dict[int, DayTemplate]:
        for weekday in v:
            if not 0 <= weekday <= 6:
                raise ValueError("day_schedules keys must be weekdays 0-6")
        return v

    @field_validator("weekly_holidays")
    @classmethod
    def _check_weekdays(cls, v: Set[int]) -> Set[int]:
        if any(not 0 <= d <= 6 for d in v):
            raise ValueError("weekly_holidays must be weekdays 0-6")
        return v


class SchedulingSettingsUpdate(SchedulingSettingsBase):
    """Incoming payload for overwriting a clinic's settings."""
    pass


class SchedulingSettings(SchedulingSettingsBase):
    model_config = ConfigDict(from_attributes=True)

    clinic_id: str
    # True when no row exists and built-in defaults were substituted
    is_default: bool = False

    def template_for(self, weekday: int) -> Optional[DayTemplate]:
        return self.day_schedules.get(weekday)

    @classmethod
    def defaults(cls, clinic_id: str) -> "SchedulingSettings":
        return cls(
            clinic_id=clinic_id,
            day_schedules={d: default_day_template(d) for d in range(7)},
            weekly_holidays=set(),
            custom_holidays=set(),
            appointments_disabled=False,
            minimum_advance_notice_hours=DEFAULT_ADVANCE_NOTICE_HOURS,
            is_default=True,
        )


class DisabledSlotCreate(BaseModel):
    date: _Date
    start_time: _Time
    end_time: _Time

    @model_validator(mode="after")
    def _check_window(self) -> "DisabledSlotCreate":
        if not self.start_time < self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class DisabledSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: str
    date: _Date
    start_time: _Time
    end_time: _Time
    created_at: Optional[_Datetime] = None
