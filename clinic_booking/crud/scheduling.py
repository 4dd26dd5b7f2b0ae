# clinic_booking/crud/scheduling.py

from __future__ import annotations
from datetime import date
from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.logging import get_logger
from clinic_booking.db.models.scheduling import SchedulingSettingsRow, DisabledSlot
from clinic_booking.schemas.scheduling import (
    STORED_CONTEXT,
    DisabledSlotCreate,
    SchedulingSettings,
    SchedulingSettingsUpdate,
)

logger = get_logger(__name__)


def _row_to_settings(row: SchedulingSettingsRow) -> SchedulingSettings:
    # Legacy day-schedule shapes are normalized here, once, by DayTemplate;
    # a malformed stored template is repaired rather than failing every read
    return SchedulingSettings.model_validate({
        "clinic_id": row.clinic_id,
        "day_schedules": row.day_schedules or {},
        "weekly_holidays": row.weekly_holidays or [],
        "custom_holidays": row.custom_holidays or [],
        "appointments_disabled": row.appointments_disabled,
        "disable_until_date": row.disable_until_date,
        "disable_until_time": row.disable_until_time,
        "minimum_advance_notice_hours": row.minimum_advance_notice_hours,
    }, context=STORED_CONTEXT)


async def get_scheduling_settings(db: AsyncSession, clinic_id: str) -> SchedulingSettings:
    """Settings for a clinic, or the built-in defaults when no row exists."""
    res = await db.execute(
        sa.select(SchedulingSettingsRow).where(SchedulingSettingsRow.clinic_id == clinic_id)
    )
    row = res.scalar_one_or_none()
    if row is None:
        logger.info("scheduling_settings_default", clinic_id=clinic_id)
        return SchedulingSettings.defaults(clinic_id)
    return _row_to_settings(row)


async def upsert_scheduling_settings(
    db: AsyncSession,
    clinic_id: str,
    data: SchedulingSettingsUpdate,
) -> SchedulingSettings:
    payload = data.model_dump(mode="json")
    values = {
        "day_schedules": payload["day_schedules"],
        "weekly_holidays": sorted(payload["weekly_holidays"]),
        "custom_holidays": sorted(payload["custom_holidays"]),
        "appointments_disabled": data.appointments_disabled,
        "disable_until_date": data.disable_until_date,
        "disable_until_time": data.disable_until_time,
        "minimum_advance_notice_hours": data.minimum_advance_notice_hours,
    }

    res = await db.execute(
        sa.select(SchedulingSettingsRow).where(SchedulingSettingsRow.clinic_id == clinic_id)
    )
    row = res.scalar_one_or_none()
    if row is None:
        row = SchedulingSettingsRow(clinic_id=clinic_id, **values)
        db.add(row)
    else:
        for key, value in values.items():
            setattr(row, key, value)

    await db.commit()
    await db.refresh(row)
    logger.info("scheduling_settings_saved", clinic_id=clinic_id)
    return _row_to_settings(row)


async def get_disabled_slots(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
) -> Sequence[DisabledSlot]:
    q = (
        sa.select(DisabledSlot)
        .where(DisabledSlot.clinic_id == clinic_id, DisabledSlot.date == on_date)
        .order_by(DisabledSlot.start_time.asc(), DisabledSlot.id.asc())
    )
    res = await db.execute(q)
    return res.scalars().all()


async def create_disabled_slot(
    db: AsyncSession,
    clinic_id: str,
    data: DisabledSlotCreate,
) -> DisabledSlot:
    slot = DisabledSlot(
        clinic_id=clinic_id,
        date=data.date,
        start_time=data.start_time,
        end_time=data.end_time,
    )
    db.add(slot)
    await db.commit()
    await db.refresh(slot)
    return slot


async def delete_disabled_slot(db: AsyncSession, clinic_id: str, slot_id: int) -> bool:
    res = await db.execute(
        sa.delete(DisabledSlot).where(
            DisabledSlot.id == slot_id,
            DisabledSlot.clinic_id == clinic_id,
        )
    )
    await db.commit()
    return res.rowcount > 0
