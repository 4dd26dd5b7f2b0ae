# clinic_booking/services/patient_matching.py
"""
Patient identity resolution for bookings.

A booking's name and phone are mapped to a patient record of the clinic:
- phone lookup first (the oldest patient on that phone), then an exact
  normalized full-name comparison against that one record
- same phone with a different name is treated as a different person and
  gets a new patient record; the existing record is never modified
"""
from __future__ import annotations

from typing import List, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clinic_booking.core.errors import NotFoundError
from clinic_booking.core.logging import get_logger
from clinic_booking.crud.patient import (
    add_patient_phone,
    create_patient,
    find_patient_by_phone,
    get_patient,
    get_patient_phones,
    update_primary_phone,
)
from clinic_booking.schemas.patient import (
    PatientMatchResult,
    PatientOut,
    PatientPhoneOut,
    PatientWithPhones,
)
from clinic_booking.utils.contact import collapse_whitespace

logger = get_logger(__name__)

TITLES = {"Dr.", "Dr", "Mr.", "Mr", "Mrs.", "Mrs", "Ms.", "Ms", "Prof.", "Prof"}


class SplitName(NamedTuple):
    first: str
    last: Optional[str]


def split_name(full_name: str) -> SplitName:
    """
    'Poorna Shetty'     -> ('Poorna', 'Shetty')
    'Dr. John Smith'    -> ('John', 'Smith')
    'Anil Kumar Rao'    -> ('Anil', 'Kumar Rao')
    'A B C D'           -> ('A', 'B C D')
    """
    cleaned = collapse_whitespace(full_name or "")
    if not cleaned:
        return SplitName("", None)

    tokens = cleaned.split(" ")
    if len(tokens) == 1:
        return SplitName(tokens[0], None)
    if len(tokens) == 2:
        return SplitName(tokens[0], tokens[1])
    if len(tokens) == 3:
        if tokens[0] in TITLES:
            return SplitName(tokens[1], tokens[2])
        return SplitName(tokens[0], f"{tokens[1]} {tokens[2]}")
    return SplitName(tokens[0], " ".join(tokens[1:]))


def normalize_name(name: str) -> str:
    return collapse_whitespace(name or "").lower()


def names_match(a: str, b: str) -> bool:
    return normalize_name(a) == normalize_name(b)


def _phones_out(rows) -> List[PatientPhoneOut]:
    return [PatientPhoneOut.model_validate(r) for r in rows]


async def find_or_create_patient(
    db: AsyncSession,
    *,
    full_name: str,
    phone: str,
    email: Optional[str],
    clinic_id: str,
) -> PatientMatchResult:
    existing = await find_patient_by_phone(db, phone, clinic_id)

    if existing is not None and names_match(full_name, existing.full_name):
        phones = await get_patient_phones(db, existing.id)
        logger.info("patient_matched", clinic_id=clinic_id, patient_id=existing.id, matched_by="phone")
        return PatientMatchResult(
            patient=PatientOut.model_validate(existing),
            is_new_patient=False,
            matched_by="phone",
            phones=_phones_out(phones),
        )

    # No record, or the phone is shared with somebody else: new patient
    first, last = split_name(full_name)
    patient = await create_patient(
        db,
        clinic_id=clinic_id,
        first_name=first,
        last_name=last,
        phone=phone,
        email=email,
    )
    phone_row = await add_patient_phone(db, patient.id, phone, "primary")

    if existing is not None:
        logger.warning(
            "patient_phone_shared",
            clinic_id=clinic_id,
            patient_id=patient.id,
            existing_patient_id=existing.id,
        )
    else:
        logger.info("patient_created", clinic_id=clinic_id, patient_id=patient.id)

    return PatientMatchResult(
        patient=PatientOut.model_validate(patient),
        is_new_patient=True,
        matched_by="new",
        phones=_phones_out([phone_row]),
    )


async def get_patient_with_phones(db: AsyncSession, clinic_id: str, patient_id: int) -> PatientWithPhones:
    patient = await get_patient(db, clinic_id, patient_id)
    if patient is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    phones = await get_patient_phones(db, patient_id)
    return PatientWithPhones(patient=PatientOut.model_validate(patient), phones=_phones_out(phones))


async def add_phone_to_patient(
    db: AsyncSession,
    clinic_id: str,
    patient_id: int,
    phone: str,
    phone_type: str = "secondary",
) -> PatientPhoneOut:
    if await get_patient(db, clinic_id, patient_id) is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    row = await add_patient_phone(db, patient_id, phone, phone_type)
    return PatientPhoneOut.model_validate(row)


async def set_primary_phone(db: AsyncSession, clinic_id: str, patient_id: int, phone: str) -> PatientPhoneOut:
    if await get_patient(db, clinic_id, patient_id) is None:
        raise NotFoundError(f"Patient {patient_id} not found")
    row = await update_primary_phone(db, patient_id, phone)
    logger.info("primary_phone_updated", clinic_id=clinic_id, patient_id=patient_id)
    return PatientPhoneOut.model_validate(row)
