"""Resolves the scheduling settings that apply to one request."""

import logging
from typing import Optional

from booking_engine.config import SchedulingDefaults, settings
from booking_engine.repositories.base import SettingsRepository
from booking_engine.schemas.scheduling_schema import SchedulingSettings, SessionType

logger = logging.getLogger(__name__)


class SettingsResolver:
    """Reads a builder's saved settings, falling back to configured defaults.

    Nothing is cached: every call sees the latest saved value.
    """

    def __init__(
        self,
        settings_repository: SettingsRepository,
        defaults: Optional[SchedulingDefaults] = None,
    ) -> None:
        self._repository = settings_repository
        self._defaults = defaults or settings.scheduling

    def resolve(self, builder_id: str) -> SchedulingSettings:
        stored = self._repository.get_settings(builder_id)
        if stored is not None:
            return stored
        logger.debug("No saved settings for builder %s, using defaults", builder_id)
        return SchedulingSettings(
            builder_id=builder_id,
            timezone=self._defaults.timezone,
            min_notice_minutes=self._defaults.min_notice_minutes,
            buffer_minutes=self._defaults.buffer_minutes,
            max_advance_days=self._defaults.max_advance_days,
        )


def effective_buffer(session_type: SessionType, builder_settings: SchedulingSettings) -> int:
    """Session type's own buffer when set, otherwise the builder's."""
    if session_type.buffer_minutes is not None:
        return session_type.buffer_minutes
    return builder_settings.buffer_minutes
