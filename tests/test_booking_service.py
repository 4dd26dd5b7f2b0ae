#!/usr/bin/env python3
"""
Tests for the booking service: claiming slots, conflicts, reschedules,
status changes and housekeeping.
"""

import asyncio
import pytest
import sqlalchemy as sa
from datetime import date, datetime, time, timedelta
from unittest.mock import AsyncMock, patch

from clinic_booking.core.errors import (
    BookingValidationError,
    ConflictReason,
    NotFoundError,
    SlotConflictError,
)
from clinic_booking.crud.appointment import get_appointment_by_id, insert_appointment
from clinic_booking.crud.scheduling import create_disabled_slot
from clinic_booking.db.models.appointment import Appointment, AppointmentStatus
from clinic_booking.schemas.scheduling import DisabledSlotCreate
from clinic_booking.services.availability import appointments_key, get_available_slots
from clinic_booking.services.booking import (
    book_slot,
    change_status,
    cleanup_old_appointments,
    lookup_appointments,
    reschedule_appointment,
    validate_patient_info,
)

NINE = "09:00 AM - 09:30 AM"
TEN = "10:00 AM - 10:30 AM"
OTHER_PATIENT = {"name": "Anil Kumar", "phone": "9123456780", "email": None}


async def count_appointments(db):
    return (await db.execute(sa.select(sa.func.count()).select_from(Appointment))).scalar_one()


@pytest.mark.unit
class TestValidatePatientInfo:
    def test_normalizes_fields(self, patient_info):
        info = validate_patient_info(patient_info)
        assert info.name == "Poorna Shetty"
        assert info.phone == "9876543210"
        assert info.email == "poorna@example.com"

    def test_blank_email_becomes_none(self):
        info = validate_patient_info({"name": "Poorna Shetty", "phone": "9876543210", "email": "  "})
        assert info.email is None

    @pytest.mark.parametrize("payload,field", [
        ({"name": "   ", "phone": "9876543210"}, "name"),
        ({"name": "Poorna", "phone": "12345"}, "phone"),
        ({"name": "Poorna", "phone": ""}, "phone"),
        ({"name": "Poorna", "phone": "9876543210", "email": "not-an-email"}, "email"),
    ])
    def test_first_invalid_field_is_reported(self, payload, field):
        with pytest.raises(BookingValidationError) as exc_info:
            validate_patient_info(payload)
        assert exc_info.value.field == field
        assert not exc_info.value.reason.startswith("Value error")


@pytest.mark.integration
class TestBookSlot:
    @pytest.mark.smoke
    async def test_successful_booking_new_patient(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        result = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)

        appt = result.appointment
        assert appt.status == AppointmentStatus.CONFIRMED
        assert (appt.date, appt.time) == (booking_date, NINE)
        assert appt.name == "Poorna Shetty"
        assert appt.phone == "9876543210"
        assert appt.email == "poorna@example.com"
        assert result.reconciliation_required is False
        assert result.patient_match.is_new_patient is True
        assert appt.patient_id == result.patient_match.patient.id

    async def test_returning_patient_is_reused(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        first = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        second = await book_slot(db_session, clinic_id, booking_date, TEN, patient_info, now=fixed_now)

        assert second.patient_match.is_new_patient is False
        assert second.patient_match.matched_by == "phone"
        assert second.appointment.patient_id == first.appointment.patient_id

    @pytest.mark.essential
    async def test_second_booking_of_same_slot_conflicts(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)

        with pytest.raises(SlotConflictError) as exc_info:
            await book_slot(db_session, clinic_id, booking_date, NINE, OTHER_PATIENT, now=fixed_now)

        assert exc_info.value.reason is ConflictReason.ALREADY_BOOKED
        assert await count_appointments(db_session) == 1

    @pytest.mark.slow
    async def test_concurrent_bookings_of_one_slot(
        self, file_session_factory, clinic_id, booking_date, fixed_now, patient_info,
    ):
        async def attempt(info):
            async with file_session_factory() as session:
                return await book_slot(session, clinic_id, booking_date, NINE, info, now=fixed_now)

        results = await asyncio.gather(attempt(patient_info), attempt(OTHER_PATIENT), return_exceptions=True)

        won = [r for r in results if not isinstance(r, BaseException)]
        lost = [r for r in results if isinstance(r, BaseException)]
        assert len(won) == 1
        assert len(lost) == 1
        assert isinstance(lost[0], SlotConflictError)
        assert lost[0].reason is ConflictReason.ALREADY_BOOKED

        async with file_session_factory() as session:
            assert await count_appointments(session) == 1

    async def test_same_label_on_other_clinic_or_date_is_independent(
        self, db_session, clinic_id, booking_date, fixed_now, patient_info
    ):
        await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await book_slot(db_session, "clinic-other", booking_date, NINE, patient_info, now=fixed_now)
        await book_slot(db_session, clinic_id, booking_date + timedelta(days=1), NINE, patient_info, now=fixed_now)
        assert await count_appointments(db_session) == 3

    async def test_cancelled_booking_frees_the_slot(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        first = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await change_status(db_session, clinic_id, first.appointment.id, AppointmentStatus.CANCELLED)

        again = await book_slot(db_session, clinic_id, booking_date, NINE, OTHER_PATIENT, now=fixed_now)
        assert again.appointment.status == AppointmentStatus.CONFIRMED

    async def test_slot_that_became_past_is_expired(self, db_session, clinic_id, booking_date, patient_info):
        late = datetime.combine(booking_date, time(12, 0))
        with pytest.raises(SlotConflictError) as exc_info:
            await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=late)
        assert exc_info.value.reason is ConflictReason.EXPIRED
        assert await count_appointments(db_session) == 0

    async def test_blocked_slot_is_unavailable(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        await create_disabled_slot(
            db_session, clinic_id,
            DisabledSlotCreate(date=booking_date, start_time=time(9, 0), end_time=time(10, 0)),
        )
        with pytest.raises(SlotConflictError) as exc_info:
            await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        assert exc_info.value.reason is ConflictReason.UNAVAILABLE

    async def test_label_not_offered_is_unavailable(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        # Inside the default lunch break
        with pytest.raises(SlotConflictError) as exc_info:
            await book_slot(db_session, clinic_id, booking_date, "01:00 PM - 01:30 PM", patient_info, now=fixed_now)
        assert exc_info.value.reason is ConflictReason.UNAVAILABLE

    async def test_closed_day_is_unavailable(self, db_session, clinic_id, fixed_now, patient_info):
        saturday = date(2026, 10, 24)
        with pytest.raises(SlotConflictError) as exc_info:
            await book_slot(db_session, clinic_id, saturday, NINE, patient_info, now=fixed_now)
        assert exc_info.value.reason is ConflictReason.UNAVAILABLE

    async def test_malformed_label_is_rejected(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        with pytest.raises(BookingValidationError) as exc_info:
            await book_slot(db_session, clinic_id, booking_date, "9am", patient_info, now=fixed_now)
        assert exc_info.value.field == "time"

    async def test_invalid_contact_writes_nothing(self, db_session, clinic_id, booking_date, fixed_now):
        with pytest.raises(BookingValidationError) as exc_info:
            await book_slot(
                db_session, clinic_id, booking_date, NINE,
                {"name": "Poorna Shetty", "phone": "+1 415 555 0100"}, now=fixed_now,
            )
        assert exc_info.value.field == "phone"
        assert await count_appointments(db_session) == 0

    async def test_failed_patient_link_keeps_the_booking(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        with patch(
            "clinic_booking.services.booking.find_or_create_patient",
            new_callable=AsyncMock,
            side_effect=RuntimeError("patients table unavailable"),
        ):
            result = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)

        assert result.reconciliation_required is True
        assert result.patient_match is None
        stored = await get_appointment_by_id(db_session, clinic_id, result.appointment.id)
        assert stored is not None
        assert stored.patient_id is None
        assert stored.status == AppointmentStatus.CONFIRMED

    async def test_booking_invalidates_cached_day(
        self, db_session, clinic_id, booking_date, fixed_now, patient_info, query_cache
    ):
        before = await get_available_slots(db_session, clinic_id, booking_date, now=fixed_now, cache=query_cache)
        assert NINE in before.bookable_labels

        await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now, cache=query_cache)

        after = await get_available_slots(db_session, clinic_id, booking_date, now=fixed_now, cache=query_cache)
        assert NINE not in after.bookable_labels


@pytest.mark.integration
class TestReschedule:
    async def test_moves_and_remembers_original_slot(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        booked = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        new_date = booking_date + timedelta(days=1)

        moved = await reschedule_appointment(db_session, clinic_id, booked.appointment.id, new_date, TEN, now=fixed_now)

        assert moved.status == AppointmentStatus.RESCHEDULED
        assert (moved.date, moved.time) == (new_date, TEN)
        assert (moved.original_date, moved.original_time) == (booking_date, NINE)

        # Old slot is free again
        await book_slot(db_session, clinic_id, booking_date, NINE, OTHER_PATIENT, now=fixed_now)

    async def test_original_slot_survives_second_move(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        booked = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        appt_id = booked.appointment.id
        await reschedule_appointment(db_session, clinic_id, appt_id, booking_date, TEN, now=fixed_now)
        moved = await reschedule_appointment(db_session, clinic_id, appt_id, booking_date, "11:00 AM - 11:30 AM", now=fixed_now)
        assert moved.original_time == NINE

    async def test_into_booked_slot_conflicts(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        mine = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await book_slot(db_session, clinic_id, booking_date, TEN, OTHER_PATIENT, now=fixed_now)

        with pytest.raises(SlotConflictError) as exc_info:
            await reschedule_appointment(db_session, clinic_id, mine.appointment.id, booking_date, TEN, now=fixed_now)
        assert exc_info.value.reason is ConflictReason.ALREADY_BOOKED

        stored = await get_appointment_by_id(db_session, clinic_id, mine.appointment.id)
        assert stored.time == NINE

    async def test_cancelled_appointment_cannot_move(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        booked = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await change_status(db_session, clinic_id, booked.appointment.id, AppointmentStatus.CANCELLED)

        with pytest.raises(BookingValidationError):
            await reschedule_appointment(db_session, clinic_id, booked.appointment.id, booking_date, TEN, now=fixed_now)

    async def test_unknown_appointment(self, db_session, clinic_id, booking_date, fixed_now):
        with pytest.raises(NotFoundError):
            await reschedule_appointment(db_session, clinic_id, 999, booking_date, TEN, now=fixed_now)


@pytest.mark.integration
class TestStatusAndLookup:
    async def test_unknown_status_is_rejected(self, db_session, clinic_id):
        with pytest.raises(BookingValidationError):
            await change_status(db_session, clinic_id, 1, "Lost")

    async def test_missing_appointment(self, db_session, clinic_id):
        with pytest.raises(NotFoundError):
            await change_status(db_session, clinic_id, 42, AppointmentStatus.COMPLETED)

    async def test_reactivating_into_rebooked_slot_conflicts(
        self, db_session, clinic_id, booking_date, fixed_now, patient_info
    ):
        first = await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await change_status(db_session, clinic_id, first.appointment.id, AppointmentStatus.CANCELLED)
        await book_slot(db_session, clinic_id, booking_date, NINE, OTHER_PATIENT, now=fixed_now)

        with pytest.raises(SlotConflictError):
            await change_status(db_session, clinic_id, first.appointment.id, AppointmentStatus.CONFIRMED)

    async def test_lookup_by_phone_in_any_format(self, db_session, clinic_id, booking_date, fixed_now, patient_info):
        await book_slot(db_session, clinic_id, booking_date, NINE, patient_info, now=fixed_now)
        await book_slot(db_session, clinic_id, booking_date, TEN, OTHER_PATIENT, now=fixed_now)

        found = await lookup_appointments(db_session, clinic_id, "098765-43210")
        assert [a.time for a in found] == [NINE]

    async def test_lookup_with_bad_phone(self, db_session, clinic_id):
        with pytest.raises(BookingValidationError):
            await lookup_appointments(db_session, clinic_id, "call me")


@pytest.mark.integration
class TestCleanup:
    async def test_only_old_finished_rows_are_deleted(self, db_session, clinic_id):
        old = date(2026, 1, 5)
        for label, status in [
            (NINE, AppointmentStatus.COMPLETED),
            (TEN, AppointmentStatus.CANCELLED),
            ("11:00 AM - 11:30 AM", AppointmentStatus.CONFIRMED),
        ]:
            await insert_appointment(
                db_session, clinic_id=clinic_id, name="Poorna Shetty", phone="9876543210",
                email=None, on_date=old, time_label=label, status=status,
            )
        await insert_appointment(
            db_session, clinic_id=clinic_id, name="Poorna Shetty", phone="9876543210",
            email=None, on_date=date(2026, 10, 1), time_label=NINE, status=AppointmentStatus.COMPLETED,
        )

        result = await cleanup_old_appointments(
            db_session, clinic_id, retention_days=90, today=date(2026, 10, 19)
        )

        assert result.deleted == 2
        assert result.cutoff_date == date(2026, 7, 21)
        assert await count_appointments(db_session) == 2

    async def test_cleanup_drops_only_this_clinics_cached_days(self, db_session, clinic_id, query_cache):
        old = date(2026, 1, 5)
        await insert_appointment(
            db_session, clinic_id=clinic_id, name="Poorna Shetty", phone="9876543210",
            email=None, on_date=old, time_label=NINE, status=AppointmentStatus.COMPLETED,
        )

        async def loader():
            return []

        await query_cache.get(appointments_key(clinic_id, old), loader, ttl=60)
        await query_cache.get(appointments_key(f"{clinic_id}0", old), loader, ttl=60)

        result = await cleanup_old_appointments(
            db_session, clinic_id, retention_days=90, today=date(2026, 10, 19), cache=query_cache,
        )

        assert result.deleted == 1
        assert query_cache.stats()["size"] == 1
