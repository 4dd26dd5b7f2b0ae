# clinic_booking/api/deps.py
from typing import Optional

from fastapi import Request

from clinic_booking.services.query_cache import QueryCache


def get_query_cache(request: Request) -> Optional[QueryCache]:
    """Read cache created at startup; None disables caching."""
    return getattr(request.app.state, "query_cache", None)
