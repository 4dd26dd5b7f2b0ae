# clinic_booking/crud/patient.py

from __future__ import annotations
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.errors import NotFoundError
from clinic_booking.db.models.patient import Patient, PatientPhone


def _phone_match(phone: str, clinic_id: str):
    registered = sa.select(PatientPhone.patient_id).where(PatientPhone.phone == phone)
    return sa.and_(
        Patient.clinic_id == clinic_id,
        sa.or_(Patient.phone == phone, Patient.id.in_(registered)),
    )


async def find_patients_by_phone(
    db: AsyncSession,
    phone: str,
    clinic_id: str,
) -> Sequence[Patient]:
    """Every patient of the clinic reachable on this phone, oldest record first."""
    q = (
        sa.select(Patient)
        .where(_phone_match(phone, clinic_id), Patient.is_active.is_(True))
        .order_by(Patient.id.asc())
    )
    res = await db.execute(q)
    return res.scalars().all()


async def find_patient_by_phone(
    db: AsyncSession,
    phone: str,
    clinic_id: str,
) -> Optional[Patient]:
    """Oldest active patient of the clinic on this phone, if any."""
    patients = await find_patients_by_phone(db, phone, clinic_id)
    return patients[0] if patients else None


async def get_patient(db: AsyncSession, clinic_id: str, patient_id: int) -> Optional[Patient]:
    res = await db.execute(
        sa.select(Patient).where(Patient.id == patient_id, Patient.clinic_id == clinic_id)
    )
    return res.scalar_one_or_none()


async def create_patient(
    db: AsyncSession,
    *,
    clinic_id: str,
    first_name: str,
    last_name: Optional[str],
    phone: str,
    email: Optional[str] = None,
) -> Patient:
    patient = Patient(
        clinic_id=clinic_id,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        email=email,
        is_active=True,
    )
    db.add(patient)
    await db.commit()
    await db.refresh(patient)
    return patient


async def add_patient_phone(
    db: AsyncSession,
    patient_id: int,
    phone: str,
    phone_type: str = "primary",
) -> PatientPhone:
    row = PatientPhone(
        patient_id=patient_id,
        phone=phone,
        phone_type=phone_type,
        is_primary=(phone_type == "primary"),
        is_verified=True,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def get_patient_phones(db: AsyncSession, patient_id: int) -> Sequence[PatientPhone]:
    q = (
        sa.select(PatientPhone)
        .where(PatientPhone.patient_id == patient_id)
        .order_by(PatientPhone.is_primary.desc(), PatientPhone.id.asc())
    )
    res = await db.execute(q)
    return res.scalars().all()


async def update_primary_phone(db: AsyncSession, patient_id: int, phone: str) -> PatientPhone:
    """
    Clear is_primary on every phone of the patient, then set it on `phone`.

    Both UPDATEs run in one transaction and commit together. Concurrent calls
    for the same patient serialize on the row locks taken by the first UPDATE,
    so the last committer wins with exactly one primary row. A concurrent
    add_patient_phone(..., "primary") is not covered by those locks and can
    still leave two primary rows.
    """
    await db.execute(
        sa.update(PatientPhone)
        .where(PatientPhone.patient_id == patient_id)
        .values(is_primary=False)
    )
    res = await db.execute(
        sa.update(PatientPhone)
        .where(PatientPhone.patient_id == patient_id, PatientPhone.phone == phone)
        .values(is_primary=True)
    )
    if res.rowcount == 0:
        # Never leave the patient without a primary phone
        await db.rollback()
        raise NotFoundError(f"Phone {phone} is not registered for patient {patient_id}")
    await db.commit()

    q = (
        sa.select(PatientPhone)
        .where(PatientPhone.patient_id == patient_id, PatientPhone.phone == phone)
        .order_by(PatientPhone.id.asc())
        .limit(1)
    )
    row = (await db.execute(q)).scalar_one()
    # Reload the identity-map instance after the bulk UPDATE
    await db.refresh(row)
    return row
