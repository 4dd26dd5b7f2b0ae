# clinic_booking/services/booking.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.clock import local_now, parse_slot_label
from clinic_booking.core.errors import (
    BookingValidationError,
    ConflictReason,
    NotFoundError,
    SlotConflictError,
    UniquenessViolation,
)
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.appointment import (
    delete_old_appointments,
    find_appointments_by_phone,
    get_appointment_by_id,
    insert_appointment,
    link_patient,
    move_appointment,
    update_status,
)
from clinic_booking.db.models.appointment import AppointmentStatus
from clinic_booking.schemas.appointment import (
    AppointmentOut,
    BookingResult,
    CleanupResult,
    PatientInfo,
)
from clinic_booking.schemas.availability import SlotReason
from clinic_booking.services.availability import appointments_prefix, get_available_slots, invalidate_day
from clinic_booking.services.patient_matching import find_or_create_patient
from clinic_booking.services.query_cache import QueryCache
from clinic_booking.utils.contact import normalize_phone

logger = get_logger(__name__)


# ---------- Internal helpers ----------

def validate_patient_info(data: Union[PatientInfo, Mapping[str, Any]]) -> PatientInfo:
    """Normalize contact fields; the first failing field is reported."""
    if isinstance(data, PatientInfo):
        return data
    try:
        return PatientInfo.model_validate(dict(data))
    except ValidationError as e:
        err = e.errors()[0]
        field = str(err["loc"][0]) if err["loc"] else "patient"
        reason = err["msg"].removeprefix("Value error, ")
        raise BookingValidationError(field, reason) from None


def _check_label(label: str) -> None:
    try:
        parse_slot_label(label)
    except ValueError as e:
        raise BookingValidationError("time", str(e)) from None


async def ensure_slot_offered(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    label: str,
    now: datetime,
) -> None:
    """
    Re-check a chosen slot against fresh settings and `now` at commit time.

    Bookings are deliberately not consulted: the insert decides that.
    """
    availability = await get_available_slots(
        db, clinic_id, on_date, now=now, cache=None, include_bookings=False
    )
    slot = next((s for s in availability.slots if s.label == label), None)
    if slot is None or slot.reason is SlotReason.BLOCKED:
        raise SlotConflictError(ConflictReason.UNAVAILABLE)
    if slot.reason is SlotReason.PAST:
        raise SlotConflictError(ConflictReason.EXPIRED)


async def _attach_patient(
    db: AsyncSession,
    appt,
    info: PatientInfo,
) -> BookingResult:
    """Best effort: a failure here keeps the appointment, unlinked."""
    booked = AppointmentOut.model_validate(appt)
    try:
        match = await find_or_create_patient(
            db,
            full_name=info.name,
            phone=info.phone,
            email=info.email,
            clinic_id=appt.clinic_id,
        )
        appt = await link_patient(db, appt, match.patient.id)
    except Exception as e:
        await db.rollback()
        logger.warning(
            "reconciliation_required",
            appointment_id=booked.id,
            clinic_id=booked.clinic_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return BookingResult(appointment=booked, patient_match=None, reconciliation_required=True)

    return BookingResult(appointment=AppointmentOut.model_validate(appt), patient_match=match)


# ---------- Core orchestration ----------

async def book_slot(
    db: AsyncSession,
    clinic_id: str,
    on_date: date,
    label: str,
    patient_info: Union[PatientInfo, Mapping[str, Any]],
    *,
    now: Optional[datetime] = None,
    cache: Optional[QueryCache] = None,
) -> BookingResult:
    """
    Claim a slot for a patient:
    1) validate contact fields and the label (no writes on failure)
    2) re-check the slot against `now` at call time (expired/unavailable)
    3) insert; a uniqueness collision means someone else won the slot
    4) resolve the patient and link it to the new row
    A conflict is never retried here; the caller re-fetches availability.
    """
    info = validate_patient_info(patient_info)
    _check_label(label)
    now = now or local_now()

    await ensure_slot_offered(db, clinic_id, on_date, label, now)

    try:
        appt = await insert_appointment(
            db,
            clinic_id=clinic_id,
            name=info.name,
            phone=info.phone,
            email=info.email,
            on_date=on_date,
            time_label=label,
        )
    except UniquenessViolation:
        logger.info("booking_conflict", clinic_id=clinic_id, date=on_date.isoformat(), time=label)
        raise SlotConflictError(ConflictReason.ALREADY_BOOKED) from None

    await invalidate_day(cache, clinic_id, on_date)
    logger.info("slot_booked", clinic_id=clinic_id, appointment_id=appt.id, date=on_date.isoformat(), time=label)

    return await _attach_patient(db, appt, info)


async def reschedule_appointment(
    db: AsyncSession,
    clinic_id: str,
    appointment_id: int,
    on_date: date,
    label: str,
    *,
    now: Optional[datetime] = None,
    cache: Optional[QueryCache] = None,
) -> AppointmentOut:
    appt = await get_appointment_by_id(db, clinic_id, appointment_id)
    if appt is None:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    if appt.status in (AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED):
        raise BookingValidationError("status", f"{appt.status} appointments cannot be rescheduled")

    _check_label(label)
    now = now or local_now()
    await ensure_slot_offered(db, clinic_id, on_date, label, now)

    previous_date = appt.date
    try:
        appt = await move_appointment(db, appt, on_date=on_date, time_label=label)
    except UniquenessViolation:
        logger.info("reschedule_conflict", clinic_id=clinic_id, appointment_id=appointment_id, time=label)
        raise SlotConflictError(ConflictReason.ALREADY_BOOKED) from None

    await invalidate_day(cache, clinic_id, previous_date)
    await invalidate_day(cache, clinic_id, on_date)
    logger.info("appointment_rescheduled", clinic_id=clinic_id, appointment_id=appointment_id,
                date=on_date.isoformat(), time=label)
    return AppointmentOut.model_validate(appt)


async def change_status(
    db: AsyncSession,
    clinic_id: str,
    appointment_id: int,
    status: str,
    *,
    cache: Optional[QueryCache] = None,
) -> AppointmentOut:
    if status not in AppointmentStatus.ALL:
        raise BookingValidationError("status", f"unknown status '{status}'")
    appt = await get_appointment_by_id(db, clinic_id, appointment_id)
    if appt is None:
        raise NotFoundError(f"Appointment {appointment_id} not found")

    on_date = appt.date
    try:
        appt = await update_status(db, appt, status)
    except UniquenessViolation:
        # Re-activating a Cancelled row whose slot was re-booked meanwhile
        raise SlotConflictError(ConflictReason.ALREADY_BOOKED) from None

    await invalidate_day(cache, clinic_id, on_date)
    logger.info("appointment_status_changed", clinic_id=clinic_id, appointment_id=appointment_id, status=status)
    return AppointmentOut.model_validate(appt)


async def lookup_appointments(
    db: AsyncSession,
    clinic_id: str,
    phone: str,
    *,
    include_cancelled: bool = True,
) -> List[AppointmentOut]:
    try:
        phone = normalize_phone(phone)
    except ValueError as e:
        raise BookingValidationError("phone", str(e)) from None
    rows = await find_appointments_by_phone(db, clinic_id, phone, include_cancelled=include_cancelled)
    return [AppointmentOut.model_validate(r) for r in rows]


async def cleanup_old_appointments(
    db: AsyncSession,
    clinic_id: str,
    *,
    retention_days: int,
    today: Optional[date] = None,
    cache: Optional[QueryCache] = None,
) -> CleanupResult:
    """Purge Cancelled/Completed rows older than the retention window."""
    today = today or local_now().date()
    cutoff = today - timedelta(days=retention_days)
    deleted = await delete_old_appointments(db, clinic_id, cutoff)
    if cache is not None and deleted:
        await cache.invalidate(appointments_prefix(clinic_id), prefix=True)
    logger.info("appointments_cleaned", clinic_id=clinic_id, deleted=deleted, cutoff=cutoff.isoformat())
    return CleanupResult(deleted=deleted, cutoff_date=cutoff)
