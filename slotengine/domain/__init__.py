"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .availability import hours_for
from .conflict_detector import ConflictDetector, describe_alternative
from .exceptions import (
    ExpansionLimitExceeded,
    InvalidDateRange,
    InvalidRecurrencePattern,
    InvalidTimeFormat,
    PatternNotFound,
    SchedulingError,
)
from .models import (
    BiweeklyRecurrence,
    BusyInterval,
    ConflictResult,
    DailyRecurrence,
    DayHours,
    ExpansionResult,
    Frequency,
    GeneratedOccurrence,
    MonthlyRecurrence,
    RecurrencePattern,
    RecurrenceState,
    TimeRange,
    TimeSlot,
    WeeklyAvailability,
    WeeklyRecurrence,
    build_pattern,
)
from .recurrence import RecurrenceExpander
from .slot_generator import SlotGenerator, filter_by_advance_notice

__all__ = [
    "BiweeklyRecurrence",
    "BusyInterval",
    "ConflictDetector",
    "ConflictResult",
    "DailyRecurrence",
    "DayHours",
    "ExpansionLimitExceeded",
    "ExpansionResult",
    "Frequency",
    "GeneratedOccurrence",
    "InvalidDateRange",
    "InvalidRecurrencePattern",
    "InvalidTimeFormat",
    "MonthlyRecurrence",
    "PatternNotFound",
    "RecurrenceExpander",
    "RecurrencePattern",
    "RecurrenceState",
    "SchedulingError",
    "SlotGenerator",
    "TimeRange",
    "TimeSlot",
    "WeeklyAvailability",
    "WeeklyRecurrence",
    "build_pattern",
    "describe_alternative",
    "filter_by_advance_notice",
    "hours_for",
]
