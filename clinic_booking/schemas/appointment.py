# clinic_booking/schemas/appointment.py
from __future__ import annotations
from datetime import date as _Date, datetime as _Datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_booking.schemas.patient import PatientMatchResult
from clinic_booking.utils.contact import format_name, normalize_email, normalize_phone


class PatientInfo(BaseModel):
    """Contact details submitted with a booking, normalized."""

    name: str = Field(..., max_length=120)
    phone: str
    email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        v = format_name(v)
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, v: str) -> str:
        return normalize_phone(v)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return normalize_email(v)


class BookingRequest(BaseModel):
    """Raw booking payload; contact fields are validated by the booking service."""

    date: _Date
    time: str = Field(..., description='Slot label, e.g. "09:00 AM - 09:30 AM"')
    name: str = ""
    phone: str = ""
    email: Optional[str] = None


class RescheduleRequest(BaseModel):
    date: _Date
    time: str


class StatusUpdate(BaseModel):
    status: Literal["Confirmed", "Cancelled", "Completed"]


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clinic_id: str
    patient_id: Optional[int] = None
    name: str
    phone: str
    email: Optional[str] = None
    date: _Date
    time: str
    status: str
    original_date: Optional[_Date] = None
    original_time: Optional[str] = None
    created_at: Optional[_Datetime] = None
    updated_at: Optional[_Datetime] = None


class BookingResult(BaseModel):
    appointment: AppointmentOut
    patient_match: Optional[PatientMatchResult] = None
    # Appointment kept but not linked to a patient; needs manual linking
    reconciliation_required: bool = False


class CleanupResult(BaseModel):
    deleted: int
    cutoff_date: _Date
