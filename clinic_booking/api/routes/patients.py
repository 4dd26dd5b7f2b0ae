# clinic_booking/api/routes/patients.py

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.db.session import get_session
from clinic_booking.schemas.patient import (
    PatientPhoneOut,
    PatientWithPhones,
    PhoneCreate,
    PrimaryPhoneUpdate,
)
from clinic_booking.services.patient_matching import (
    add_phone_to_patient,
    get_patient_with_phones,
    set_primary_phone,
)

router = APIRouter(prefix="/clinics/{clinic_id}/patients", tags=["patients"])

@router.get("/{patient_id}", response_model=PatientWithPhones)
async def read_patient(clinic_id: str, patient_id: int, db: AsyncSession = Depends(get_session)):
    return await get_patient_with_phones(db, clinic_id, patient_id)

@router.post("/{patient_id}/phones", response_model=PatientPhoneOut, status_code=201)
async def add_phone(
    clinic_id: str,
    patient_id: int,
    payload: PhoneCreate,
    db: AsyncSession = Depends(get_session),
):
    return await add_phone_to_patient(db, clinic_id, patient_id, payload.phone, payload.phone_type)

@router.put("/{patient_id}/primary-phone", response_model=PatientPhoneOut)
async def primary_phone(
    clinic_id: str,
    patient_id: int,
    payload: PrimaryPhoneUpdate,
    db: AsyncSession = Depends(get_session),
):
    return await set_primary_phone(db, clinic_id, patient_id, payload.phone)
