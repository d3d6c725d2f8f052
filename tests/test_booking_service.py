"""
Booking service tests against in-memory SQLite.

Covers creation (pricing, vehicle checks, warnings), edits, the role-gated
status lifecycle with its escrow side effects, tracking and cash collection.
"""

from __future__ import annotations

import pytest

from cargohaul.domain.entities import GeocodedAddress, Location, RouteEstimate
from cargohaul.domain.enums import (
    BookingPaymentStatus,
    BookingStatus,
    CargoType,
    EscrowStatus,
    PaymentMethod,
    PaymentStatus,
)
from cargohaul.domain.errors import (
    InvalidTransition,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from cargohaul.infrastructure.models import VehicleModel
from cargohaul.services.bookings import BUSY_VEHICLE_WARNING, BookingService
from cargohaul.services.estimator import DistanceEstimator
from tests.conftest import NAIROBI, WESTLANDS, insert_booking, insert_held_payment


def booking_request(world, **overrides) -> dict:
    data = {
        "vehicle_id": world.vehicle_id,
        "origin_address": "Nairobi CBD",
        "origin_lat": NAIROBI[0],
        "origin_lng": NAIROBI[1],
        "destination_address": "Westlands",
        "destination_lat": WESTLANDS[0],
        "destination_lng": WESTLANDS[1],
        "cargo_type": "furniture",
        "cargo_weight": 3.0,
        "payment_method": "mobile-money",
    }
    data.update(overrides)
    return data


def fixed_estimator(distance_km: float) -> DistanceEstimator:
    async def tier(origin, destination):
        return RouteEstimate(distance_km, 30, "fixed")

    return DistanceEstimator(route_tiers=[tier])


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_short_trip_charged_minimum(self, db_session, world, outbox, escrow):
        service = BookingService(db_session, fixed_estimator(12.0), outbox, escrow)
        result = await service.create_booking(world.customer, booking_request(world))

        b = result.booking
        assert b.status == BookingStatus.PENDING
        assert b.version == 0
        assert b.estimated_amount == 800.0
        assert b.estimate_source == "fixed"
        assert b.carrier_id == world.carrier.user_id
        assert b.payment_status == BookingPaymentStatus.PENDING
        assert result.warning is None
        assert outbox.kinds() == ["booking_created"]
        assert outbox.messages[0].recipient_id == world.carrier.user_id

    @pytest.mark.asyncio
    async def test_long_trip_charged_per_km(self, db_session, world, outbox, escrow):
        service = BookingService(db_session, fixed_estimator(40.0), outbox, escrow)
        result = await service.create_booking(world.customer, booking_request(world))
        assert result.booking.estimated_amount == 2000.0

    @pytest.mark.asyncio
    async def test_offline_estimate_when_providers_absent(self, bookings, world):
        result = await bookings.create_booking(world.customer, booking_request(world))
        assert result.booking.estimate_source == "offline"
        assert result.booking.distance_km > 0
        assert result.booking.duration_min > 0

    @pytest.mark.asyncio
    async def test_missing_coordinates_are_geocoded(self, db_session, world, outbox, escrow):
        async def geocoder(address):
            return GeocodedAddress(Location(-1.0333, 37.0693), "Thika, Kenya", "stub")

        estimator = DistanceEstimator(geocode_tiers=[geocoder])
        service = BookingService(db_session, estimator, outbox, escrow)
        result = await service.create_booking(
            world.customer,
            booking_request(world, destination_lat=None, destination_lng=None,
                            destination_address="Thika"),
        )
        assert result.booking.destination_lat == -1.0333
        assert result.booking.destination_lng == 37.0693

    @pytest.mark.asyncio
    async def test_carrier_cannot_create(self, bookings, world):
        with pytest.raises(NotAuthorized):
            await bookings.create_booking(world.carrier, booking_request(world))

    @pytest.mark.asyncio
    async def test_unknown_vehicle(self, bookings, world):
        with pytest.raises(NotFound):
            await bookings.create_booking(world.customer, booking_request(world, vehicle_id=999))

    @pytest.mark.asyncio
    async def test_overweight_rejected(self, bookings, world):
        with pytest.raises(ValidationError, match="exceeds vehicle capacity"):
            await bookings.create_booking(world.customer, booking_request(world, cargo_weight=10.5))

    @pytest.mark.asyncio
    async def test_unconfigured_rate_card_rejected(self, db_session, bookings, world):
        vehicle = await db_session.get(VehicleModel, world.vehicle_id)
        vehicle.rate_per_km = 0
        await db_session.flush()
        with pytest.raises(ValidationError, match="not properly configured"):
            await bookings.create_booking(world.customer, booking_request(world))

    @pytest.mark.asyncio
    async def test_unavailable_idle_vehicle_rejected(self, db_session, bookings, world):
        vehicle = await db_session.get(VehicleModel, world.vehicle_id)
        vehicle.is_available = False
        await db_session.flush()
        with pytest.raises(ValidationError, match="not available"):
            await bookings.create_booking(world.customer, booking_request(world))

    @pytest.mark.asyncio
    async def test_busy_vehicle_accepts_with_warning(self, db_session, bookings, world):
        await insert_booking(db_session, world, status=BookingStatus.IN_TRANSIT)
        result = await bookings.create_booking(world.customer, booking_request(world))
        assert result.warning == BUSY_VEHICLE_WARNING
        assert result.booking.id is not None


class TestEditBooking:
    @pytest.mark.asyncio
    async def test_edit_pending_notifies_carrier(self, db_session, bookings, world, outbox):
        booking = await insert_booking(db_session, world)
        edited = await bookings.edit_booking(
            world.customer, booking.id, {"special_instructions": "Call on arrival"}
        )
        assert edited.special_instructions == "Call on arrival"
        assert edited.version == 1
        assert outbox.kinds() == ["booking_updated"]
        assert outbox.messages[0].recipient_id == world.carrier.user_id

    @pytest.mark.asyncio
    async def test_route_change_reprices(self, db_session, world, outbox, escrow):
        service = BookingService(db_session, fixed_estimator(40.0), outbox, escrow)
        booking = await insert_booking(db_session, world, estimated_amount=800.0, distance_km=12.0)
        edited = await service.edit_booking(
            world.customer, booking.id,
            {"destination_address": "Thika", "destination_lat": -1.0333, "destination_lng": 37.0693},
        )
        assert edited.distance_km == 40.0
        assert edited.estimated_amount == 2000.0
        assert edited.estimate_source == "fixed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [BookingStatus.CONFIRMED, BookingStatus.IN_TRANSIT, BookingStatus.COMPLETED]
    )
    async def test_edit_after_pending_rejected(self, db_session, bookings, world, status):
        booking = await insert_booking(db_session, world, status=status)
        with pytest.raises(InvalidTransition, match="Only pending bookings can be edited"):
            await bookings.edit_booking(world.customer, booking.id, {"cargo_weight": 1.0})

    @pytest.mark.asyncio
    async def test_overweight_edit_rejected(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world)
        with pytest.raises(ValidationError):
            await bookings.edit_booking(world.customer, booking.id, {"cargo_weight": 50.0})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["cargo_type", "cargo_weight", "is_delicate"])
    async def test_required_field_cannot_be_nulled(self, db_session, bookings, world, field):
        booking = await insert_booking(db_session, world)
        with pytest.raises(ValidationError, match=f"cannot be cleared: {field}"):
            await bookings.edit_booking(world.customer, booking.id, {field: None})

        booking = await bookings.bookings.reload(booking)
        assert booking.cargo_type == CargoType.GENERAL
        assert booking.cargo_weight == 2.0
        assert booking.is_delicate is False
        assert booking.version == 0

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world, version=3)
        with pytest.raises(InvalidTransition, match="modified concurrently"):
            await bookings.edit_booking(
                world.customer, booking.id, {"cargo_weight": 1.0}, expected_version=2
            )


class TestStatusLifecycle:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, db_session, bookings, world, outbox):
        booking = await insert_booking(db_session, world)
        for status in (BookingStatus.CONFIRMED, BookingStatus.IN_TRANSIT, BookingStatus.COMPLETED):
            booking = await bookings.update_status(world.carrier, booking.id, status)
        assert booking.status == BookingStatus.COMPLETED
        assert booking.version == 3
        assert "review_prompt" in outbox.kinds()

    @pytest.mark.asyncio
    async def test_customer_cannot_confirm(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world)
        with pytest.raises(NotAuthorized):
            await bookings.update_status(world.customer, booking.id, BookingStatus.CONFIRMED)
        booking = await bookings.get_booking(world.customer, booking.id)
        assert booking.status == BookingStatus.PENDING
        assert booking.version == 0

    @pytest.mark.asyncio
    async def test_customer_cancels_pending(self, db_session, bookings, world, outbox):
        booking = await insert_booking(db_session, world)
        booking = await bookings.update_status(
            world.customer, booking.id, BookingStatus.CANCELLED, reason="changed plans"
        )
        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_by == world.customer.user_id
        assert booking.cancellation_reason == "changed plans"
        assert booking.cancelled_at is not None
        assert outbox.messages[-1].recipient_id == world.carrier.user_id

        # immutable thereafter
        for actor, status in (
            (world.carrier, BookingStatus.CONFIRMED),
            (world.customer, BookingStatus.CANCELLED),
        ):
            with pytest.raises(InvalidTransition):
                await bookings.update_status(actor, booking.id, status, reason="again")

    @pytest.mark.asyncio
    async def test_cancel_requires_reason(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world)
        with pytest.raises(ValidationError):
            await bookings.update_status(world.customer, booking.id, BookingStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_stranger_rejected(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world)
        with pytest.raises(NotAuthorized):
            await bookings.update_status(world.other_carrier, booking.id, BookingStatus.CONFIRMED)

    @pytest.mark.asyncio
    async def test_expected_version_mismatch(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world, version=5)
        with pytest.raises(InvalidTransition, match="modified concurrently"):
            await bookings.update_status(
                world.carrier, booking.id, BookingStatus.CONFIRMED, expected_version=4
            )

    @pytest.mark.asyncio
    async def test_cancel_refunds_held_escrow(self, db_session, bookings, escrow, world, outbox):
        booking = await insert_booking(db_session, world, status=BookingStatus.CONFIRMED)
        payment = await insert_held_payment(db_session, booking)

        booking = await bookings.update_status(
            world.carrier, booking.id, BookingStatus.CANCELLED, reason="truck broke down"
        )
        payment = await escrow.payments.get_by_id(payment.id)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.escrow_status == EscrowStatus.REFUNDED
        assert payment.refund_reason == "Booking cancelled by carrier: truck broke down"
        assert booking.payment_status == BookingPaymentStatus.REFUNDED
        assert "payment_refunded" in outbox.kinds()

    @pytest.mark.asyncio
    async def test_cancel_leaves_released_escrow_for_support(
        self, db_session, bookings, escrow, world, outbox
    ):
        booking = await insert_booking(db_session, world, status=BookingStatus.CONFIRMED)
        payment = await insert_held_payment(db_session, booking)
        payment.escrow_status = EscrowStatus.RELEASED
        await db_session.flush()

        await bookings.update_status(
            world.carrier, booking.id, BookingStatus.CANCELLED, reason="no driver"
        )
        payment = await escrow.payments.get_by_id(payment.id)
        assert payment.escrow_status == EscrowStatus.RELEASED
        assert "refund_requires_support" in outbox.kinds()

    @pytest.mark.asyncio
    async def test_completion_flags_held_escrow_without_releasing(
        self, db_session, bookings, escrow, world, outbox
    ):
        booking = await insert_booking(db_session, world, status=BookingStatus.IN_TRANSIT)
        payment = await insert_held_payment(db_session, booking)

        await bookings.update_status(world.carrier, booking.id, BookingStatus.COMPLETED)
        payment = await escrow.payments.get_by_id(payment.id)
        assert payment.escrow_status == EscrowStatus.HELD
        assert "escrow_awaiting_release" in outbox.kinds()
        note = next(m for m in outbox.messages if m.kind == "escrow_awaiting_release")
        assert note.recipient_id is None


class TestTrackingAndCash:
    @pytest.mark.asyncio
    async def test_carrier_updates_location(self, db_session, bookings, world, outbox):
        booking = await insert_booking(db_session, world, status=BookingStatus.IN_TRANSIT)
        booking = await bookings.update_tracking(world.carrier, booking.id, -1.27, 36.81)
        assert (booking.current_lat, booking.current_lng) == (-1.27, 36.81)
        assert booking.tracking_updated_at is not None
        assert outbox.kinds() == ["location_updated"]
        assert outbox.messages[0].recipient_id == world.customer.user_id

    @pytest.mark.asyncio
    async def test_tracking_rejected_before_transit(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world, status=BookingStatus.CONFIRMED)
        with pytest.raises(InvalidTransition):
            await bookings.update_tracking(world.carrier, booking.id, -1.27, 36.81)

    @pytest.mark.asyncio
    async def test_customer_cannot_track(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world, status=BookingStatus.IN_TRANSIT)
        with pytest.raises(NotAuthorized):
            await bookings.update_tracking(world.customer, booking.id, -1.27, 36.81)

    @pytest.mark.asyncio
    async def test_cash_collected(self, db_session, bookings, world):
        booking = await insert_booking(
            db_session, world, status=BookingStatus.IN_TRANSIT,
            payment_method=PaymentMethod.CASH,
        )
        booking = await bookings.mark_cash_collected(world.carrier, booking.id)
        assert booking.payment_status == BookingPaymentStatus.PAID
        with pytest.raises(InvalidTransition, match="already recorded"):
            await bookings.mark_cash_collected(world.carrier, booking.id)

    @pytest.mark.asyncio
    async def test_cash_not_before_transit(self, db_session, bookings, world):
        booking = await insert_booking(
            db_session, world, status=BookingStatus.CONFIRMED,
            payment_method=PaymentMethod.CASH,
        )
        with pytest.raises(InvalidTransition):
            await bookings.mark_cash_collected(world.carrier, booking.id)


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_booking_requires_party_or_admin(self, db_session, bookings, world):
        booking = await insert_booking(db_session, world)
        assert (await bookings.get_booking(world.admin, booking.id)).id == booking.id
        with pytest.raises(NotAuthorized):
            await bookings.get_booking(world.other_customer, booking.id)

    @pytest.mark.asyncio
    async def test_carrier_listing_is_planned(self, db_session, bookings, world):
        done = await insert_booking(db_session, world, status=BookingStatus.COMPLETED)
        first = await insert_booking(db_session, world, status=BookingStatus.CONFIRMED)
        second = await insert_booking(
            db_session, world, status=BookingStatus.IN_TRANSIT,
            origin_lat=WESTLANDS[0], origin_lng=WESTLANDS[1],
        )

        listing = await bookings.list_my_bookings(world.carrier)
        open_ids = [item.booking.id for item in listing if item.plan_order is not None]
        assert set(open_ids) == {first.id, second.id}
        assert [item.plan_order for item in listing[:2]] == [1, 2]
        assert listing[-1].booking.id == done.id
        assert listing[-1].plan_order is None

    @pytest.mark.asyncio
    async def test_customer_listing(self, db_session, bookings, world):
        await insert_booking(db_session, world)
        listing = await bookings.list_my_bookings(world.customer)
        assert len(listing) == 1
        assert await bookings.list_my_bookings(world.other_customer) == []

    @pytest.mark.asyncio
    async def test_geocode_requires_address(self, bookings):
        with pytest.raises(ValidationError):
            await bookings.geocode("   ")
