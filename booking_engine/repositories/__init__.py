from booking_engine.repositories.base import (
    AvailabilityRepository,
    AvailabilitySnapshot,
    BookingRepository,
    InsertResult,
    SessionTypeRepository,
    SettingsRepository,
    StatusUpdate,
)
from booking_engine.repositories.memory import (
    InMemoryAvailabilityRepository,
    InMemoryBookingRepository,
    InMemorySessionTypeRepository,
    InMemorySettingsRepository,
)

__all__ = [
    "AvailabilityRepository", "AvailabilitySnapshot", "BookingRepository",
    "InsertResult", "SessionTypeRepository", "SettingsRepository", "StatusUpdate",
    "InMemoryAvailabilityRepository", "InMemoryBookingRepository",
    "InMemorySessionTypeRepository", "InMemorySettingsRepository",
]
