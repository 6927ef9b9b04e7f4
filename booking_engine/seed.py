"""Load builders, session types and actors from a JSON seed file into in-memory stores."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field

from booking_engine.identity import InMemoryIdentityProvider
from booking_engine.repositories.memory import (
    InMemoryAvailabilityRepository,
    InMemoryBookingRepository,
    InMemorySessionTypeRepository,
    InMemorySettingsRepository,
)
from booking_engine.scheduling.coordinator import BookingCoordinator
from booking_engine.schemas.booking_schema import Actor
from booking_engine.schemas.scheduling_schema import (
    AvailabilityException,
    AvailabilityRule,
    SchedulingSettings,
    SessionType,
)
from booking_engine.utils import utc_now

logger = logging.getLogger(__name__)


class BuilderSeed(BaseModel):
    """One builder with everything needed to generate slots."""

    settings: SchedulingSettings
    rules: list[AvailabilityRule] = Field(default_factory=list)
    exceptions: list[AvailabilityException] = Field(default_factory=list)
    session_types: list[SessionType] = Field(default_factory=list)


class SeedData(BaseModel):
    builders: list[BuilderSeed] = Field(default_factory=list)
    actors: list[Actor] = Field(default_factory=list)


def load_seed(path: Path) -> SeedData:
    """Load and validate a seed file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return SeedData(**data)


def build_coordinator(
    seed: SeedData,
    clock: Optional[Callable[[], datetime]] = None,
) -> BookingCoordinator:
    """Coordinator over fresh in-memory stores populated from ``seed``."""
    availability = InMemoryAvailabilityRepository()
    session_types = InMemorySessionTypeRepository()
    settings_repository = InMemorySettingsRepository()

    for builder in seed.builders:
        settings_repository.save_settings(builder.settings)
        for rule in builder.rules:
            availability.add_rule(rule)
        for exception in builder.exceptions:
            availability.add_exception(exception)
        for session_type in builder.session_types:
            session_types.save(session_type)

    logger.info(
        "Seeded %d builder(s) and %d actor(s)", len(seed.builders), len(seed.actors)
    )
    return BookingCoordinator(
        availability=availability,
        bookings=InMemoryBookingRepository(),
        session_types=session_types,
        settings_repository=settings_repository,
        identity=InMemoryIdentityProvider(seed.actors),
        clock=clock or utc_now,
    )
