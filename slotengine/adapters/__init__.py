"""
Adapters layer - Booking store implementations.
"""

from .memory_store import InMemoryBookingStore, StoredBooking

__all__ = ["InMemoryBookingStore", "StoredBooking"]
