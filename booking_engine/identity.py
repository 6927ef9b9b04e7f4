"""
Identity collaborator.

Authentication happens outside the engine; the coordinator only needs to
turn an actor id into an ``Actor`` with a role and decide who may touch a
booking.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from booking_engine.schemas.booking_schema import Actor, ActorRole, Booking

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """Resolves actor ids to identities."""

    @abstractmethod
    def resolve(self, actor_id: str) -> Optional[Actor]:
        """Return the actor, or None when the id is unknown."""


class InMemoryIdentityProvider(IdentityProvider):
    """Actors registered up front, keyed by id."""

    def __init__(self, actors: Optional[list[Actor]] = None) -> None:
        self._actors: dict[str, Actor] = {a.id: a for a in actors or []}
        self._lock = threading.Lock()

    def register(self, actor_id: str, role: ActorRole) -> Actor:
        actor = Actor(id=actor_id, role=role)
        with self._lock:
            self._actors[actor_id] = actor
        return actor

    def resolve(self, actor_id: str) -> Optional[Actor]:
        with self._lock:
            return self._actors.get(actor_id)


def can_manage_booking(actor: Actor, booking: Booking) -> bool:
    """Client and builder of the booking, or any admin."""
    if actor.role == ActorRole.ADMIN:
        return True
    if actor.role == ActorRole.BUILDER:
        return actor.id == booking.builder_id
    return actor.id == booking.client_id


def can_complete_booking(actor: Actor, booking: Booking) -> bool:
    """Only the booking's builder or an admin marks a session as delivered."""
    if actor.role == ActorRole.ADMIN:
        return True
    return actor.role == ActorRole.BUILDER and actor.id == booking.builder_id
