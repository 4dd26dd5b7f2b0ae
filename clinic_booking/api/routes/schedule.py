# clinic_booking/api/routes/schedule.py

from __future__ import annotations
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.api.deps import get_query_cache
from clinic_booking.crud.scheduling import (
    create_disabled_slot,
    delete_disabled_slot,
    get_disabled_slots,
    get_scheduling_settings,
    upsert_scheduling_settings,
)
from clinic_booking.db.session import get_session
from clinic_booking.schemas.scheduling import (
    DisabledSlotCreate,
    DisabledSlotOut,
    SchedulingSettings,
    SchedulingSettingsUpdate,
)
from clinic_booking.services.availability import disabled_slots_key, disabled_slots_prefix, settings_key
from clinic_booking.services.query_cache import QueryCache

router = APIRouter(prefix="/clinics/{clinic_id}", tags=["schedule"])

@router.get("/settings", response_model=SchedulingSettings)
async def read_settings(clinic_id: str, db: AsyncSession = Depends(get_session)):
    return await get_scheduling_settings(db, clinic_id)

@router.put("/settings", response_model=SchedulingSettings)
async def write_settings(
    clinic_id: str,
    payload: SchedulingSettingsUpdate,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    saved = await upsert_scheduling_settings(db, clinic_id, payload)
    if cache is not None:
        await cache.invalidate(settings_key(clinic_id))
    return saved

@router.get("/disabled-slots", response_model=List[DisabledSlotOut])
async def list_disabled_slots(
    clinic_id: str,
    on_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_session),
):
    return await get_disabled_slots(db, clinic_id, on_date)

@router.post("/disabled-slots", response_model=DisabledSlotOut, status_code=201)
async def add_disabled_slot(
    clinic_id: str,
    payload: DisabledSlotCreate,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    slot = await create_disabled_slot(db, clinic_id, payload)
    if cache is not None:
        await cache.invalidate(disabled_slots_key(clinic_id, payload.date))
    return slot

@router.delete("/disabled-slots/{slot_id}", status_code=204)
async def remove_disabled_slot(
    clinic_id: str,
    slot_id: int,
    db: AsyncSession = Depends(get_session),
    cache: Optional[QueryCache] = Depends(get_query_cache),
):
    if not await delete_disabled_slot(db, clinic_id, slot_id):
        raise HTTPException(status_code=404, detail="Disabled slot not found")
    if cache is not None:
        await cache.invalidate(disabled_slots_prefix(clinic_id), prefix=True)
