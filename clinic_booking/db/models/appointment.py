# clinic_booking/db/models/appointment.py

from __future__ import annotations
from datetime import date as _Date, datetime, timezone
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from clinic_booking.db.session import Base, BigIntPK

ACTIVE_SLOT_INDEX = "uq_appointments_active_slot"

class AppointmentStatus:
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    RESCHEDULED = "Rescheduled"

    ALL = (CONFIRMED, CANCELLED, COMPLETED, RESCHEDULED)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # One live booking per (clinic, date, slot label); Cancelled rows free the slot.
        sa.Index(
            ACTIVE_SLOT_INDEX,
            "clinic_id", "date", "time",
            unique=True,
            postgresql_where=sa.text("status <> 'Cancelled'"),
            sqlite_where=sa.text("status <> 'Cancelled'"),
        ),
        sa.Index("ix_appointments_clinic_id_date", "clinic_id", "date"),
        sa.Index("ix_appointments_phone", "phone"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    clinic_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    # Filled in by identity resolution after the slot is claimed
    patient_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, sa.ForeignKey("patients.id", ondelete="SET NULL"), nullable=True
    )

    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(254))

    date: Mapped[_Date] = mapped_column(sa.Date, nullable=False)
    # Slot label, e.g. "09:00 AM - 09:30 AM"; the unit of uniqueness
    time: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=AppointmentStatus.CONFIRMED)

    original_date: Mapped[Optional[_Date]] = mapped_column(sa.Date)
    original_time: Mapped[Optional[str]] = mapped_column(sa.String(32))

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
