# clinic_booking/db/models/scheduling.py

from __future__ import annotations
from datetime import date as _Date, datetime, time as _Time, timezone
from typing import Optional
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from clinic_booking.db.session import Base, BigIntPK


class SchedulingSettingsRow(Base):
    """One row per clinic; overwritten by administrators, never deleted."""

    __tablename__ = "scheduling_settings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    clinic_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)

    # {"0": {"start_time": "09:00", ...}, ...} keyed by weekday, 0=Monday
    day_schedules: Mapped[dict] = mapped_column(sa.JSON, nullable=False, default=dict)
    weekly_holidays: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    custom_holidays: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)

    appointments_disabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    disable_until_date: Mapped[Optional[_Date]] = mapped_column(sa.Date)
    disable_until_time: Mapped[Optional[_Time]] = mapped_column(sa.Time)

    minimum_advance_notice_hours: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=24)

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


class DisabledSlot(Base):
    """Ad hoc, date-scoped block. Overlapping rows are tolerated."""

    __tablename__ = "disabled_slots"
    __table_args__ = (
        sa.CheckConstraint("start_time < end_time", name="ck_disabled_slots_window"),
        sa.Index("ix_disabled_slots_clinic_id_date", "clinic_id", "date"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    clinic_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    date: Mapped[_Date] = mapped_column(sa.Date, nullable=False)
    start_time: Mapped[_Time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[_Time] = mapped_column(sa.Time, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
