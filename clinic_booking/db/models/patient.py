# clinic_booking/db/models/patient.py

from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship
from clinic_booking.db.session import Base, BigIntPK


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        sa.Index("ix_patients_clinic_id", "clinic_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    clinic_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    first_name: Mapped[str] = mapped_column(sa.String(80), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(sa.String(120))
    # Phone captured at creation; the authoritative list lives in patient_phones
    phone: Mapped[Optional[str]] = mapped_column(sa.String(20))
    email: Mapped[Optional[str]] = mapped_column(sa.String(254))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    phones: Mapped[list["PatientPhone"]] = relationship(
        back_populates="patient",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class PatientPhone(Base):
    __tablename__ = "patient_phones"
    __table_args__ = (
        sa.Index("ix_patient_phones_phone", "phone"),
        sa.Index("ix_patient_phones_patient_id", "patient_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        BigIntPK, sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    phone_type: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="primary")
    is_primary: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    patient: Mapped["Patient"] = relationship(back_populates="phones")
