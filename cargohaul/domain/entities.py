"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``BookingState``: enforces the role-gated lifecycle
  (pending -> confirmed -> in-transit -> completed | cancelled) through the
  static ``TRANSITION_AUTHORITY`` table.
- Value objects for locations, route estimates and rate cards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import (
    ActorRole,
    BOOKING_TRANSITIONS,
    BookingStatus,
    TRANSITION_AUTHORITY,
)
from .errors import InvalidTransition, NotAuthorized, ValidationError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_min: int
    source: str


@dataclass(frozen=True)
class GeocodedAddress:
    location: Location
    formatted_address: str
    source: str


@dataclass(frozen=True)
class RateCard:
    rate_per_km: float
    minimum_charge: float

    def validate(self) -> None:
        if (
            self.rate_per_km is None
            or self.minimum_charge is None
            or self.rate_per_km <= 0
            or self.minimum_charge < 0
        ):
            raise ValidationError("Vehicle rates are not properly configured")


@dataclass(frozen=True)
class Actor:
    """Caller identity as asserted by the upstream authentication layer."""

    user_id: int
    role: ActorRole


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class BookingState:
    """The parts of a booking the state machine reasons about."""

    status: BookingStatus
    customer_id: int
    carrier_id: int
    version: int = 0

    def is_party(self, actor: Actor) -> bool:
        if actor.role == ActorRole.CUSTOMER:
            return actor.user_id == self.customer_id
        if actor.role == ActorRole.CARRIER:
            return actor.user_id == self.carrier_id
        return False

    def ensure_party(self, actor: Actor) -> None:
        if not self.is_party(actor):
            raise NotAuthorized("Not authorized to modify this booking")

    def check_transition(self, new_status: BookingStatus, actor: Actor) -> None:
        """Raise unless *actor* may move the booking to *new_status*."""
        self.ensure_party(actor)
        if new_status not in BOOKING_TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(
                f"Cannot change status from {self.status.value} to {new_status.value}"
            )
        allowed = TRANSITION_AUTHORITY.get((self.status, actor.role), set())
        if new_status not in allowed:
            raise NotAuthorized(
                f"A {actor.role.value} cannot change status from "
                f"{self.status.value} to {new_status.value}"
            )

    def transition_to(self, new_status: BookingStatus, actor: Actor) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        self.check_transition(new_status, actor)
        self.status = new_status
        self.version += 1

    def ensure_editable(self, actor: Actor) -> None:
        if actor.role != ActorRole.CUSTOMER or actor.user_id != self.customer_id:
            raise NotAuthorized("Only the booking's customer can edit it")
        if self.status != BookingStatus.PENDING:
            raise InvalidTransition(
                "Only pending bookings can be edited. Once confirmed by the "
                "carrier, changes require direct communication."
            )

    def ensure_trackable(self, actor: Actor) -> None:
        if actor.role != ActorRole.CARRIER or actor.user_id != self.carrier_id:
            raise NotAuthorized("Only the assigned carrier can update tracking")
        if self.status != BookingStatus.IN_TRANSIT:
            raise InvalidTransition(
                "Location can only be updated while the booking is in transit"
            )


def cancellation_reason_or_raise(reason: Optional[str]) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A cancellation reason is required")
    return cleaned
