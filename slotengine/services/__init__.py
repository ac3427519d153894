"""
Service layer helpers that orchestrate the booking store and domain logic.
"""

from .scheduling import (
    BookingOutcome,
    BookingStoreProtocol,
    GenerationSummary,
    SchedulingService,
    ValidationOutcome,
)

__all__ = [
    "BookingOutcome",
    "BookingStoreProtocol",
    "GenerationSummary",
    "SchedulingService",
    "ValidationOutcome",
]
