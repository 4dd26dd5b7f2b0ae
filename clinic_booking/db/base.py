# clinic_booking/db/base.py

"""
This file imports all the ORM models so Alembic can discover them.
Whenever you add a new model, import it here.
"""
from clinic_booking.db.models.scheduling import SchedulingSettingsRow, DisabledSlot
from clinic_booking.db.models.appointment import Appointment
from clinic_booking.db.models.patient import Patient, PatientPhone
from clinic_booking.db.session import engine, Base

async def init_db():
    """Create all tables directly (local development without migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
