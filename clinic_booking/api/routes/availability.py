# clinic_booking/api/routes/availability.py

from __future__ import annotations
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.api.deps import get_query_cache
from clinic_booking.db.session import get_session
from clinic_booking.schemas.availability import DayAvailability
from clinic_booking.services.availability import get_available_slots
from clinic_booking.services.query_cache import QueryCache

router = APIRouter(prefix="/clinics/{clinic_id}", tags=["availability"])

@router.get("/availability", response_model=DayAvailability)
async def availability(
    clinic_id: str,
    on_date: date = Query(..., alias="date", description="YYYY-MM-DD"),
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    return await get_available_slots(db, clinic_id, on_date, cache=cache)
