"""
Resolve a calendar date to the business's opening hours for that day.
"""

from datetime import date
from typing import Optional

from .models import DayHours, WeeklyAvailability


def hours_for(availability: Optional[WeeklyAvailability], day: date) -> DayHours:
    """
    Get the opening hours for ``day``, selected by ISO weekday.

    A business without any configured availability, or without an entry for
    that weekday, is closed: callers get ``DayHours.closed()`` and therefore
    zero slots.
    """
    if availability is None:
        return DayHours.closed()

    hours = availability.for_iso_weekday(day.isoweekday())
    if hours is None:
        return DayHours.closed()
    return hours
