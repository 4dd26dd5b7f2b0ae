# clinic_booking/services/availability.py
"""
Availability engine: which slots of a clinic's day can be booked.

`compute_slots` is a pure function of its inputs; `get_available_slots`
gathers those inputs (optionally through a QueryCache) and stamps the
result with the clinic and date it was computed for.

Precedence when several rules hit one slot: past > booked > blocked.
Slots overlapping a break are never returned.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.clock import format_slot_label, local_now
from clinic_booking.core.config import settings as app_settings
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.appointment import get_appointments_for_date
from clinic_booking.crud.scheduling import get_disabled_slots, get_scheduling_settings
from clinic_booking.schemas.availability import DayAvailability, SlotDescriptor, SlotReason
from clinic_booking.schemas.scheduling import DayTemplate, DisabledSlotOut, SchedulingSettings
from clinic_booking.services.query_cache import QueryCache

logger = get_logger(__name__)

Window = Tuple[time, time]

_SETTINGS_ADAPTER = TypeAdapter(SchedulingSettings)
_DISABLED_ADAPTER = TypeAdapter(List[DisabledSlotOut])
_LABELS_ADAPTER = TypeAdapter(List[str])


# ---------- Pure slot computation ----------

def overlaps(start: time, end: time, other_start: time, other_end: time) -> bool:
    """Half-open overlap of [start, end) and [other_start, other_end)."""
    return start < other_end and end > other_start


def build_candidates(template: DayTemplate) -> List[Window]:
    """Step through working hours by the interval; a short trailing slot is dropped."""
    anchor = date.min
    cursor = datetime.combine(anchor, template.start_time)
    day_end = datetime.combine(anchor, template.end_time)
    step = template.interval

    candidates: List[Window] = []
    while cursor + step <= day_end:
        candidates.append((cursor.time(), (cursor + step).time()))
        cursor += step
    return candidates


def is_day_closed(settings: SchedulingSettings, on_date: date) -> bool:
    template = settings.template_for(on_date.weekday())
    return (
        template is None
        or not template.enabled
        or on_date.weekday() in settings.weekly_holidays
        or on_date in settings.custom_holidays
        or settings.appointments_disabled
    )


def is_past(on_date: date, start: time, now: datetime, advance_notice_hours: int) -> bool:
    """
    Too late to book a slot starting at `start` on `on_date`.

    Calendar-time comparison, so a 24h notice taken at 18:00 also covers
    the next morning.
    """
    slot_start = datetime.combine(on_date, start)
    if on_date == now.date() and slot_start <= now:
        return True
    cutoff = now + timedelta(hours=advance_notice_hours)
    return slot_start < cutoff


def compute_slots(
    on_date: date,
    settings: SchedulingSettings,
    disabled: Iterable[Window],
    booked_labels: Iterable[str],
    now: datetime,
) -> List[SlotDescriptor]:
    """Ordered slot descriptors for one day; [] when the day is closed."""
    if is_day_closed(settings, on_date):
        return []

    template = settings.template_for(on_date.weekday())
    disabled = list(disabled)
    booked = set(booked_labels)

    slots: List[SlotDescriptor] = []
    for start, end in build_candidates(template):
        if any(overlaps(start, end, b.start, b.end) for b in template.breaks):
            continue

        label = format_slot_label(start, end)
        reason = SlotReason.AVAILABLE
        if any(overlaps(start, end, d_start, d_end) for d_start, d_end in disabled):
            reason = SlotReason.BLOCKED
        if label in booked:
            reason = SlotReason.BOOKED
        if is_past(on_date, start, now, settings.minimum_advance_notice_hours):
            reason = SlotReason.PAST

        slots.append(SlotDescriptor(
            label=label,
            start=start,
            end=end,
            bookable=reason is SlotReason.AVAILABLE,
            reason=reason,
        ))
    return slots


# ---------- Input gathering ----------

def settings_key(clinic_id: str) -> str:
    return f"settings:{clinic_id}"


def disabled_slots_prefix(clinic_id: str) -> str:
    return f"disabled_slots:{clinic_id}:"


def disabled_slots_key(clinic_id: str, on_date: date) -> str:
    return disabled_slots_prefix(clinic_id) + on_date.isoformat()


def appointments_prefix(clinic_id: str) -> str:
    return f"appointments:{clinic_id}:"


def appointments_key(clinic_id: str, on_date: date) -> str:
    return appointments_prefix(clinic_id) + on_date.isoformat()


async def _read(db: AsyncSession, reader):
    # A failed statement poisons the session; reset it so a retry can run
    try:
        return await reader()
    except Exception:
        await db.rollback()
        raise


async def load_settings(
    db: AsyncSession,
    clinic_id: str,
    cache: Optional[QueryCache] = None,
) -> SchedulingSettings:
    async def loader() -> SchedulingSettings:
        return await _read(db, lambda: get_scheduling_settings(db, clinic_id))

    if cache is None:
        return await loader()
    return await cache.get(
        settings_key(clinic_id), loader, app_settings.CACHE_TTL_SETTINGS_SECONDS,
        adapter=_SETTINGS_ADAPTER,
    )


async def load_disabled_windows(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    cache: Optional[QueryCache] = None,
) -> List[Window]:
    async def loader() -> List[DisabledSlotOut]:
        rows = await _read(db, lambda: get_disabled_slots(db, clinic_id, on_date))
        return [DisabledSlotOut.model_validate(r) for r in rows]

    if cache is None:
        rows = await loader()
    else:
        rows = await cache.get(
            disabled_slots_key(clinic_id, on_date), loader,
            app_settings.CACHE_TTL_DISABLED_SLOTS_SECONDS, adapter=_DISABLED_ADAPTER,
        )
    return [(r.start_time, r.end_time) for r in rows]


async def load_booked_labels(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    cache: Optional[QueryCache] = None,
) -> List[str]:
    async def loader() -> List[str]:
        rows = await _read(db, lambda: get_appointments_for_date(db, clinic_id, on_date))
        return [r.time for r in rows]

    if cache is None:
        return await loader()
    return await cache.get(
        appointments_key(clinic_id, on_date), loader,
        app_settings.CACHE_TTL_APPOINTMENTS_SECONDS, adapter=_LABELS_ADAPTER,
    )


async def get_available_slots(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    *,
    now: Optional[datetime] = None,
    cache: Optional[QueryCache] = None,
    include_bookings: bool = True,
) -> DayAvailability:
    """
    Slots for `on_date`, stamped with clinic and date.

    Responses for different dates may complete out of order; callers
    compare `date` against the currently selected date and drop stale ones.
    """
    now = now or local_now()
    clinic_settings = await load_settings(db, clinic_id, cache)

    if is_day_closed(clinic_settings, on_date):
        logger.debug("day_closed", clinic_id=clinic_id, date=on_date.isoformat())
        return DayAvailability(clinic_id=clinic_id, date=on_date, computed_at=now, closed=True, slots=[])

    disabled = await load_disabled_windows(db, clinic_id, on_date, cache)
    booked: Sequence[str] = []
    if include_bookings:
        booked = await load_booked_labels(db, clinic_id, on_date, cache)

    slots = compute_slots(on_date, clinic_settings, disabled, booked, now)
    logger.debug(
        "slots_computed",
        clinic_id=clinic_id,
        date=on_date.isoformat(),
        total=len(slots),
        bookable=sum(1 for s in slots if s.bookable),
    )
    return DayAvailability(clinic_id=clinic_id, date=on_date, computed_at=now, slots=slots)


async def invalidate_day(cache: Optional[QueryCache], clinic_id: str, on_date: date) -> None:
    if cache is not None:
        await cache.invalidate(appointments_key(clinic_id, on_date))
