# clinic_booking/crud/appointment.py

from __future__ import annotations
import asyncio
from datetime import date, datetime, timezone
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from clinic_booking.core.errors import TransientError, UniquenessViolation
from clinic_booking.db.models.appointment import (
    ACTIVE_SLOT_INDEX,
    Appointment,
    AppointmentStatus,
)

TRANSIENT_ERRORS = (OperationalError, InterfaceError, ConnectionError, asyncio.TimeoutError)


def is_slot_collision(exc: IntegrityError) -> bool:
    """True when the active-slot unique index rejected the write."""
    orig = str(exc.orig)
    return (
        ACTIVE_SLOT_INDEX in orig
        or ("UNIQUE constraint failed" in orig and "appointments.time" in orig)
    )


async def _commit_slot_write(db: AsyncSession, appt: Appointment) -> Appointment:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if is_slot_collision(e):
            raise UniquenessViolation(
                f"Slot {appt.time} on {appt.date} is already booked."
            ) from e
        raise
    except TRANSIENT_ERRORS as e:
        await db.rollback()
        raise TransientError("Could not save the appointment right now.") from e
    await db.refresh(appt)
    return appt


async def insert_appointment(
    db: AsyncSession,
    *,
    clinic_id: str,
    name: str,
    phone: str,
    email: Optional[str],
    on_date: date,
    time_label: str,
    status: str = AppointmentStatus.CONFIRMED,
    patient_id: Optional[int] = None,
) -> Appointment:
    """
    Insert a booking row. The partial unique index is the only double-booking
    guard: no read-before-write, a collision surfaces as UniquenessViolation.
    """
    now = datetime.now(timezone.utc)
    appt = Appointment(
        clinic_id=clinic_id,
        patient_id=patient_id,
        name=name,
        phone=phone,
        email=email,
        date=on_date,
        time=time_label,
        status=status,
        created_at=now,
        updated_at=now,
    )
    db.add(appt)
    return await _commit_slot_write(db, appt)


async def get_appointments_for_date(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    *,
    include_cancelled: bool = False,
) -> Sequence[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.clinic_id == clinic_id,
        Appointment.date == on_date,
    )
    if not include_cancelled:
        q = q.where(Appointment.status != AppointmentStatus.CANCELLED)
    q = q.order_by(Appointment.created_at.asc())
    res = await db.execute(q)
    return res.scalars().all()


async def get_appointment_by_id(
    db: AsyncSession,
    clinic_id: str,
    appointment_id: int,
) -> Optional[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.clinic_id == clinic_id,
    )
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def find_appointments_by_phone(
    db: AsyncSession,
    clinic_id: str,
    phone: str,
    *,
    include_cancelled: bool = True,
    limit: int = 20,
) -> Sequence[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.clinic_id == clinic_id,
        Appointment.phone == phone,
    )
    if not include_cancelled:
        q = q.where(Appointment.status != AppointmentStatus.CANCELLED)
    q = q.order_by(Appointment.date.desc(), Appointment.created_at.desc()).limit(limit)
    res = await db.execute(q)
    return res.scalars().all()


async def link_patient(db: AsyncSession, appt: Appointment, patient_id: int) -> Appointment:
    appt.patient_id = patient_id
    await db.commit()
    await db.refresh(appt)
    return appt


async def update_status(db: AsyncSession, appt: Appointment, status: str) -> Appointment:
    """Staff status change. Re-activating a Cancelled row can collide with a newer booking."""
    appt.status = status
    return await _commit_slot_write(db, appt)


async def move_appointment(
    db: AsyncSession,
    appt: Appointment,
    *,
    on_date: date,
    time_label: str,
) -> Appointment:
    if appt.original_date is None:
        appt.original_date = appt.date
        appt.original_time = appt.time
    appt.date = on_date
    appt.time = time_label
    appt.status = AppointmentStatus.RESCHEDULED
    return await _commit_slot_write(db, appt)


async def delete_old_appointments(
    db: AsyncSession,
    clinic_id: str,
    before: date,
) -> int:
    """Hard-delete Cancelled/Completed rows dated before `before`."""
    res = await db.execute(
        sa.delete(Appointment).where(
            Appointment.clinic_id == clinic_id,
            Appointment.date < before,
            Appointment.status.in_([AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED]),
        )
    )
    await db.commit()
    return res.rowcount or 0
