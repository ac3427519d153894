"""
Domain-specific exception hierarchy for the scheduling engine.

"No result" business states (a closed day, a fully booked day, a conflicting
slot) are returned as data and never raised.
"""


class SchedulingError(Exception):
    """Base class for all engine-level errors."""


class InvalidDateRange(SchedulingError, ValueError):
    """Raised when a range ends before it starts or a date cannot be parsed."""


class InvalidTimeFormat(SchedulingError, ValueError):
    """Raised when a time-of-day string is not in a supported format."""


class InvalidRecurrencePattern(SchedulingError, ValueError):
    """Raised when a recurrence pattern lacks a field its frequency requires."""


class ExpansionLimitExceeded(SchedulingError):
    """Raised when a recurrence expansion hits its iteration ceiling."""


class PatternNotFound(SchedulingError):
    """Raised when a booking store has no pattern with the requested id."""
