# clinic_booking/api/routes/appointments.py

from __future__ import annotations
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.api.deps import get_query_cache
from clinic_booking.core.config import settings
from clinic_booking.crud.appointment import get_appointments_for_date
from clinic_booking.db.session import get_session
from clinic_booking.schemas.appointment import (
    AppointmentOut,
    BookingRequest,
    BookingResult,
    CleanupResult,
    RescheduleRequest,
    StatusUpdate,
)
from clinic_booking.services.booking import (
    book_slot,
    change_status,
    cleanup_old_appointments,
    lookup_appointments,
    reschedule_appointment,
)
from clinic_booking.services.query_cache import QueryCache

router = APIRouter(prefix="/clinics/{clinic_id}/appointments", tags=["appointments"])

@router.post("", response_model=BookingResult, status_code=201)
async def book_appointment(
    clinic_id: str,
    payload: BookingRequest,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    return await book_slot(
        db,
        clinic_id,
        payload.date,
        payload.time,
        {"name": payload.name, "phone": payload.phone, "email": payload.email},
        cache=cache,
    )

@router.get("", response_model=List[AppointmentOut])
async def list_for_date(
    clinic_id: str,
    on_date: date = Query(..., alias="date"),
    include_cancelled: bool = False,
    db: AsyncSession = Depends(get_session),
):
    rows = await get_appointments_for_date(db, clinic_id, on_date, include_cancelled=include_cancelled)
    return [AppointmentOut.model_validate(r) for r in rows]

@router.get("/lookup", response_model=List[AppointmentOut])
async def lookup_by_phone(
    clinic_id: str,
    phone: str = Query(..., min_length=1),
    include_cancelled: bool = True,
    db: AsyncSession = Depends(get_session),
):
    return await lookup_appointments(db, clinic_id, phone, include_cancelled=include_cancelled)

@router.patch("/{appointment_id}/status", response_model=AppointmentOut)
async def set_status(
    clinic_id: str,
    appointment_id: int,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    return await change_status(db, clinic_id, appointment_id, payload.status, cache=cache)

@router.post("/{appointment_id}/reschedule", response_model=AppointmentOut)
async def reschedule(
    clinic_id: str,
    appointment_id: int,
    payload: RescheduleRequest,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    return await reschedule_appointment(db, clinic_id, appointment_id, payload.date, payload.time, cache=cache)

@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(
    clinic_id: str,
    retention_days: int = Query(settings.CLEANUP_RETENTION_DAYS, ge=1),
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    return await cleanup_old_appointments(db, clinic_id, retention_days=retention_days, cache=cache)
