# clinic_booking/schemas/patient.py
from __future__ import annotations
from datetime import datetime as _Datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_booking.utils.contact import normalize_phone


class PatientPhoneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    phone: str
    phone_type: str
    is_primary: bool


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: str
    first_name: str
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: Optional[_Datetime] = None


class PatientWithPhones(BaseModel):
    patient: PatientOut
    phones: List[PatientPhoneOut] = Field(default_factory=list)


class PatientMatchResult(BaseModel):
    patient: PatientOut
    is_new_patient: bool
    matched_by: Literal["phone", "new"]
    phones: List[PatientPhoneOut] = Field(default_factory=list)


class PhoneCreate(BaseModel):
    phone: str
    phone_type: Literal["secondary", "emergency", "family"] = "secondary"

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, v: str) -> str:
        return normalize_phone(v)


class PrimaryPhoneUpdate(BaseModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, v: str) -> str:
        return normalize_phone(v)
