from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.scheduling.lifecycle import BookingLifecycle, BookingTrigger
from booking_engine.scheduling.settings_resolver import SettingsResolver, effective_buffer
from booking_engine.scheduling.slot_generator import day_windows, generate_slots, slots_for_day

__all__ = [
    "BookingCoordinator", "BookingLifecycle", "BookingTrigger",
    "SettingsResolver", "effective_buffer",
    "day_windows", "generate_slots", "slots_for_day",
]
