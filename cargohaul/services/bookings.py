"""
Booking lifecycle service.

Every write is a compare-and-swap on the ``(status, version)`` the request
read, so two actors racing on the same booking cannot both win: the loser
gets ``InvalidTransition`` and the row is left as the winner wrote it.

Side effects that belong to the escrow (auto-refund, release prompts) are
delegated to ``EscrowCoordinator``; notifications are queued on the
request's ``Outbox`` and delivered after commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cargohaul.domain.distance import is_valid_location
from cargohaul.domain.entities import (
    Actor,
    BookingState,
    GeocodedAddress,
    Location,
    RateCard,
    cancellation_reason_or_raise,
)
from cargohaul.domain.enums import (
    ActorRole,
    BookingPaymentStatus,
    BookingStatus,
    CargoType,
    PaymentMethod,
)
from cargohaul.domain.errors import (
    InvalidTransition,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from cargohaul.domain.planning import PlanStop, plan_deliveries
from cargohaul.infrastructure.models import BookingModel, VehicleModel
from cargohaul.infrastructure.notifications import Outbox
from cargohaul.infrastructure.repositories import (
    BookingRepository,
    RatingRepository,
    VehicleRepository,
)
from cargohaul.services.escrow import EscrowCoordinator
from cargohaul.services.estimator import DistanceEstimator

logger = logging.getLogger(__name__)

BUSY_VEHICLE_WARNING = (
    "Note: This vehicle is currently on another delivery. "
    "Pickup may be delayed."
)

EDITABLE_FIELDS = frozenset(
    {
        "origin_address",
        "origin_lat",
        "origin_lng",
        "origin_contact",
        "pickup_time",
        "destination_address",
        "destination_lat",
        "destination_lng",
        "destination_contact",
        "dropoff_time",
        "cargo_type",
        "cargo_weight",
        "cargo_volume",
        "cargo_description",
        "cargo_pictures",
        "is_delicate",
        "special_instructions",
    }
)

# Edits may omit these but never null them.
_REQUIRED_FIELDS = ("cargo_type", "cargo_weight", "is_delicate")

_ROUTE_FIELDS = {
    "origin": ("origin_address", "origin_lat", "origin_lng"),
    "destination": ("destination_address", "destination_lat", "destination_lng"),
}

_STATUS_NOTICES = {
    BookingStatus.CONFIRMED: (
        "booking_confirmed", "Booking Confirmed",
        "Your booking has been confirmed by the carrier.",
    ),
    BookingStatus.IN_TRANSIT: (
        "booking_in_transit", "Cargo In Transit",
        "Your cargo has been picked up and is on its way.",
    ),
    BookingStatus.COMPLETED: (
        "booking_completed", "Delivery Completed",
        "Your cargo has been delivered.",
    ),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingResult:
    booking: BookingModel
    warning: Optional[str] = None


@dataclass
class BookingListing:
    booking: BookingModel
    plan_order: Optional[int] = None
    estimated_pickup_time: Optional[datetime] = None


def _state_of(booking: BookingModel) -> BookingState:
    return BookingState(
        status=BookingStatus(booking.status),
        customer_id=booking.customer_id,
        carrier_id=booking.carrier_id,
        version=booking.version,
    )


def _point(lat: Optional[float], lng: Optional[float]) -> Optional[Location]:
    if lat is None or lng is None:
        return None
    return Location(latitude=lat, longitude=lng)


def _check_weight(weight: Optional[float], vehicle: VehicleModel) -> None:
    if weight is None or weight <= 0:
        raise ValidationError("Cargo weight must be greater than zero")
    if weight > vehicle.capacity_tons:
        raise ValidationError(
            f"Cargo weight ({weight} tons) exceeds vehicle capacity "
            f"({vehicle.capacity_tons} tons)"
        )


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        estimator: DistanceEstimator,
        outbox: Outbox,
        escrow: EscrowCoordinator,
    ):
        self.bookings = BookingRepository(session)
        self.vehicles = VehicleRepository(session)
        self.ratings = RatingRepository(session)
        self.estimator = estimator
        self.outbox = outbox
        self.escrow = escrow

    async def _booking_or_404(self, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    async def _resolve_point(
        self, address: str, lat: Optional[float], lng: Optional[float]
    ) -> Location:
        point = _point(lat, lng)
        if is_valid_location(point):
            return point
        found = await self.estimator.geocode(address)
        return found.location

    # ── Queries ───────────────────────────────────────────────────────

    async def get_booking(self, actor: Actor, booking_id: int) -> BookingModel:
        booking = await self._booking_or_404(booking_id)
        if actor.role != ActorRole.ADMIN and not _state_of(booking).is_party(actor):
            raise NotAuthorized("Not authorized to view this booking")
        return booking

    async def list_my_bookings(self, actor: Actor) -> list[BookingListing]:
        """
        Customer: newest first.  Carrier: open jobs first in suggested
        pickup order, then the rest newest first.
        """
        if actor.role == ActorRole.CUSTOMER:
            rows = await self.bookings.list_for_customer(actor.user_id)
            return [BookingListing(b) for b in rows]
        if actor.role != ActorRole.CARRIER:
            raise NotAuthorized("Only customers and carriers have bookings")

        rows = await self.bookings.list_for_carrier(actor.user_id)
        open_jobs = {
            b.id: b
            for b in rows
            if b.status in (BookingStatus.CONFIRMED, BookingStatus.IN_TRANSIT)
        }
        plan = plan_deliveries(
            [
                PlanStop(
                    booking_id=b.id,
                    pickup=_point(b.origin_lat, b.origin_lng),
                    dropoff=_point(b.destination_lat, b.destination_lng),
                    pickup_time=b.pickup_time,
                )
                for b in open_jobs.values()
            ],
            minutes_per_km=self.estimator.minutes_per_km,
            now=_now(),
        )
        listing = [
            BookingListing(open_jobs[p.booking_id], p.order, p.estimated_pickup_time)
            for p in plan
        ]
        listing.extend(BookingListing(b) for b in rows if b.id not in open_jobs)
        return listing

    async def geocode(self, address: str) -> GeocodedAddress:
        address = (address or "").strip()
        if not address:
            raise ValidationError("Address is required")
        return await self.estimator.geocode(address)

    # ── Create ────────────────────────────────────────────────────────

    async def create_booking(self, actor: Actor, data: dict[str, Any]) -> BookingResult:
        """
        Price and persist a new ``pending`` booking.

        The estimator never fails, so a booking is always priced; the tier
        that produced the distance is stored in ``estimate_source``.
        """
        if actor.role != ActorRole.CUSTOMER:
            raise NotAuthorized("Only customers can create bookings")

        origin_address = (data.get("origin_address") or "").strip()
        destination_address = (data.get("destination_address") or "").strip()
        if not origin_address or not destination_address:
            raise ValidationError("Origin and destination addresses are required")

        vehicle = await self.vehicles.get_by_id(data["vehicle_id"])
        if vehicle is None:
            raise NotFound("Vehicle not found")
        if vehicle.carrier_id is None:
            raise ValidationError("Vehicle has no assigned carrier")
        rate_card = RateCard(vehicle.rate_per_km, vehicle.minimum_charge)
        rate_card.validate()
        _check_weight(data.get("cargo_weight"), vehicle)

        warning = None
        active_jobs = await self.bookings.count_active_for_vehicle(vehicle.id)
        if active_jobs:
            warning = BUSY_VEHICLE_WARNING
        elif not vehicle.is_available:
            raise ValidationError("Vehicle is not available for booking")

        origin = await self._resolve_point(
            origin_address, data.get("origin_lat"), data.get("origin_lng")
        )
        destination = await self._resolve_point(
            destination_address, data.get("destination_lat"), data.get("destination_lng")
        )
        route = await self.estimator.estimate(origin, destination)
        amount = self.estimator.quote(route.distance_km, rate_card)

        booking = BookingModel(
            customer_id=actor.user_id,
            carrier_id=vehicle.carrier_id,
            vehicle_id=vehicle.id,
            origin_address=origin_address,
            origin_lat=origin.latitude,
            origin_lng=origin.longitude,
            origin_contact=data.get("origin_contact"),
            pickup_time=data.get("pickup_time"),
            destination_address=destination_address,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            destination_contact=data.get("destination_contact"),
            dropoff_time=data.get("dropoff_time"),
            cargo_type=CargoType(data.get("cargo_type") or CargoType.GENERAL),
            cargo_weight=data["cargo_weight"],
            cargo_volume=data.get("cargo_volume"),
            cargo_description=data.get("cargo_description"),
            cargo_pictures=data.get("cargo_pictures"),
            is_delicate=bool(data.get("is_delicate")),
            special_instructions=data.get("special_instructions"),
            distance_km=route.distance_km,
            duration_min=route.duration_min,
            estimate_source=route.source,
            rate_per_km=rate_card.rate_per_km,
            minimum_charge=rate_card.minimum_charge,
            estimated_amount=amount,
            status=BookingStatus.PENDING,
            version=0,
            payment_status=BookingPaymentStatus.PENDING,
            payment_method=PaymentMethod(
                data.get("payment_method") or PaymentMethod.MOBILE_MONEY
            ),
        )
        await self.bookings.create(booking)
        logger.info(
            "Booking %s created: %.1f km via %s, amount %.2f",
            booking.id, route.distance_km, route.source, amount,
        )
        self.outbox.add(
            vehicle.carrier_id, "booking_created", "New Booking Request",
            f"New booking from {origin_address} to {destination_address}.",
            booking.id,
        )
        return BookingResult(booking=booking, warning=warning)

    # ── Edit ──────────────────────────────────────────────────────────

    async def edit_booking(
        self,
        actor: Actor,
        booking_id: int,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> BookingModel:
        """Customer edit of a ``pending`` booking.  Route changes re-price."""
        booking = await self._booking_or_404(booking_id)
        _state_of(booking).ensure_editable(actor)
        if expected_version is not None and expected_version != booking.version:
            raise InvalidTransition("Booking was modified concurrently")

        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if not changes:
            return booking

        values = dict(changes)
        cleared = sorted(k for k in _REQUIRED_FIELDS if k in values and values[k] is None)
        if cleared:
            raise ValidationError(f"Fields cannot be cleared: {', '.join(cleared)}")
        for key in ("origin_address", "destination_address"):
            if key in values:
                values[key] = (values[key] or "").strip()
                if not values[key]:
                    raise ValidationError("Origin and destination addresses are required")

        if "cargo_weight" in values:
            vehicle = await self.vehicles.get_by_id(booking.vehicle_id)
            if vehicle is None:
                raise NotFound("Vehicle not found")
            _check_weight(values["cargo_weight"], vehicle)
        if "cargo_type" in values:
            values["cargo_type"] = CargoType(values["cargo_type"])

        route_changed = False
        points: dict[str, Location] = {}
        for end, (addr_key, lat_key, lng_key) in _ROUTE_FIELDS.items():
            if not any(k in values for k in (addr_key, lat_key, lng_key)):
                points[end] = _point(getattr(booking, lat_key), getattr(booking, lng_key))
                continue
            route_changed = True
            address = values.get(addr_key, getattr(booking, addr_key))
            if addr_key in values and lat_key not in values and lng_key not in values:
                # New address without coordinates: old coordinates are stale.
                lat = lng = None
            else:
                lat = values.get(lat_key, getattr(booking, lat_key))
                lng = values.get(lng_key, getattr(booking, lng_key))
            point = await self._resolve_point(address, lat, lng)
            values[lat_key], values[lng_key] = point.latitude, point.longitude
            points[end] = point

        if route_changed:
            route = await self.estimator.estimate(points["origin"], points["destination"])
            values["distance_km"] = route.distance_km
            values["duration_min"] = route.duration_min
            values["estimate_source"] = route.source
            values["estimated_amount"] = self.estimator.quote(
                route.distance_km,
                RateCard(booking.rate_per_km, booking.minimum_charge),
            )

        ok = await self.bookings.update_if_current(
            booking.id,
            expected_status=BookingStatus.PENDING,
            expected_version=booking.version,
            values=values,
        )
        if not ok:
            raise InvalidTransition("Booking was modified concurrently")
        await self.bookings.reload(booking)

        logger.info("Booking %s edited by customer %s", booking.id, actor.user_id)
        self.outbox.add(
            booking.carrier_id, "booking_updated", "Booking Updated",
            "The customer has updated booking details.",
            booking.id,
        )
        return booking

    # ── Status ────────────────────────────────────────────────────────

    async def update_status(
        self,
        actor: Actor,
        booking_id: int,
        new_status: BookingStatus,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> BookingModel:
        booking = await self._booking_or_404(booking_id)
        state = _state_of(booking)
        if expected_version is not None and expected_version != booking.version:
            raise InvalidTransition("Booking was modified concurrently")
        seen_status, seen_version = state.status, state.version
        state.transition_to(new_status, actor)

        values: dict[str, Any] = {"status": new_status}
        if new_status == BookingStatus.CANCELLED:
            reason = cancellation_reason_or_raise(reason)
            values.update(
                cancellation_reason=reason,
                cancelled_by=actor.user_id,
                cancelled_at=_now(),
            )

        ok = await self.bookings.update_if_current(
            booking.id,
            expected_status=seen_status,
            expected_version=seen_version,
            values=values,
        )
        if not ok:
            raise InvalidTransition("Booking was modified concurrently")
        await self.bookings.reload(booking)
        logger.info(
            "Booking %s: %s -> %s by %s %s",
            booking.id, seen_status.value, new_status.value,
            actor.role.value, actor.user_id,
        )

        if new_status == BookingStatus.CANCELLED:
            await self.escrow.on_booking_cancelled(booking, actor, reason)
            other = (
                booking.carrier_id
                if actor.user_id == booking.customer_id
                else booking.customer_id
            )
            self.outbox.add(
                other, "booking_cancelled", "Booking Cancelled",
                f"Booking was cancelled by the {actor.role.value}. Reason: {reason}",
                booking.id,
            )
        else:
            kind, title, message = _STATUS_NOTICES[new_status]
            self.outbox.add(booking.customer_id, kind, title, message, booking.id)

        if new_status == BookingStatus.COMPLETED:
            await self.escrow.on_booking_completed(booking)
            if await self.ratings.get_for_pair(booking.id, booking.customer_id) is None:
                self.outbox.add(
                    booking.customer_id, "review_prompt", "Rate Your Delivery",
                    "How was your delivery? Leave a review for the carrier.",
                    booking.id,
                )

        return await self.bookings.reload(booking)

    # ── Tracking ──────────────────────────────────────────────────────

    async def update_tracking(
        self,
        actor: Actor,
        booking_id: int,
        latitude: float,
        longitude: float,
        estimated_arrival: Optional[datetime] = None,
    ) -> BookingModel:
        booking = await self._booking_or_404(booking_id)
        _state_of(booking).ensure_trackable(actor)
        if not is_valid_location(Location(latitude, longitude)):
            raise ValidationError("Invalid coordinates")

        values: dict[str, Any] = {
            "current_lat": latitude,
            "current_lng": longitude,
            "tracking_updated_at": _now(),
        }
        if estimated_arrival is not None:
            values["estimated_arrival"] = estimated_arrival

        ok = await self.bookings.update_if_current(
            booking.id,
            expected_status=BookingStatus.IN_TRANSIT,
            expected_version=None,
            values=values,
        )
        if not ok:
            raise InvalidTransition(
                "Location can only be updated while the booking is in transit"
            )
        await self.bookings.reload(booking)
        self.outbox.add(
            booking.customer_id, "location_updated", "Cargo Location Updated",
            "The carrier has shared a new location for your cargo.",
            booking.id,
        )
        return booking

    # ── Cash ──────────────────────────────────────────────────────────

    async def mark_cash_collected(self, actor: Actor, booking_id: int) -> BookingModel:
        """Carrier confirms cash settled by hand.  Cash never enters escrow."""
        booking = await self._booking_or_404(booking_id)
        if actor.role != ActorRole.CARRIER or actor.user_id != booking.carrier_id:
            raise NotAuthorized("Only the assigned carrier can confirm cash collection")
        if booking.payment_method != PaymentMethod.CASH:
            raise ValidationError("Booking is not a cash booking")
        if booking.status not in (BookingStatus.IN_TRANSIT, BookingStatus.COMPLETED):
            raise InvalidTransition(
                "Cash can only be collected once the cargo is in transit"
            )
        if booking.payment_status == BookingPaymentStatus.PAID:
            raise InvalidTransition("Cash collection was already recorded")

        await self.bookings.set_payment_mirror(
            booking.id, payment_status=BookingPaymentStatus.PAID
        )
        await self.bookings.reload(booking)
        logger.info("Cash collected for booking %s", booking.id)
        self.outbox.add(
            booking.customer_id, "cash_collected", "Payment Recorded",
            "The carrier has confirmed receipt of your cash payment.",
            booking.id,
        )
        return booking
