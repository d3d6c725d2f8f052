"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models map only plain
latitude / longitude floats (PostGIS geometry lives in the migration), so
the real metadata is created as-is.  Outbound HTTP is stubbed with
``httpx.MockTransport``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from cargohaul.domain.entities import Actor
from cargohaul.domain.enums import (
    ActorRole,
    BookingPaymentStatus,
    BookingStatus,
    CargoType,
    EscrowStatus,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)
from cargohaul.infrastructure.database import Base
from cargohaul.infrastructure.gateway import MpesaGateway
from cargohaul.infrastructure.models import (
    BookingModel,
    PaymentModel,
    UserModel,
    VehicleModel,
)
from cargohaul.infrastructure.notifications import Outbox
from cargohaul.services.bookings import BookingService
from cargohaul.services.escrow import EscrowCoordinator
from cargohaul.services.estimator import DistanceEstimator

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# Nairobi CBD -> Westlands
NAIROBI = (-1.2864, 36.8172)
WESTLANDS = (-1.2676, 36.8108)


@dataclass
class World:
    """Seeded users and vehicle."""

    customer: Actor
    carrier: Actor
    admin: Actor
    other_customer: Actor
    other_carrier: Actor
    vehicle_id: int


# ── DB ────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def world(session_factory) -> World:
    async with session_factory() as session:
        customer = UserModel(name="Wanjiru", email="wanjiru@example.com", role=ActorRole.CUSTOMER)
        carrier = UserModel(name="Haulage Ltd", email="haulage@example.com", role=ActorRole.CARRIER)
        admin = UserModel(name="Ops", email="ops@example.com", role=ActorRole.ADMIN)
        other_customer = UserModel(name="Otieno", email="otieno@example.com", role=ActorRole.CUSTOMER)
        other_carrier = UserModel(name="Movers", email="movers@example.com", role=ActorRole.CARRIER)
        session.add_all([customer, carrier, admin, other_customer, other_carrier])
        await session.flush()

        vehicle = VehicleModel(
            carrier_id=carrier.id,
            registration_number="KCA 101A",
            vehicle_type=VehicleType.TRUCK,
            capacity_tons=10.0,
            rate_per_km=50.0,
            minimum_charge=800.0,
            is_available=True,
        )
        session.add(vehicle)
        await session.commit()

        return World(
            customer=Actor(customer.id, ActorRole.CUSTOMER),
            carrier=Actor(carrier.id, ActorRole.CARRIER),
            admin=Actor(admin.id, ActorRole.ADMIN),
            other_customer=Actor(other_customer.id, ActorRole.CUSTOMER),
            other_carrier=Actor(other_carrier.id, ActorRole.CARRIER),
            vehicle_id=vehicle.id,
        )


async def insert_booking(
    session: AsyncSession, world: World, **overrides
) -> BookingModel:
    """Insert a booking directly, bypassing the service."""
    values = dict(
        customer_id=world.customer.user_id,
        carrier_id=world.carrier.user_id,
        vehicle_id=world.vehicle_id,
        origin_address="Nairobi CBD",
        origin_lat=NAIROBI[0],
        origin_lng=NAIROBI[1],
        destination_address="Westlands",
        destination_lat=WESTLANDS[0],
        destination_lng=WESTLANDS[1],
        cargo_type=CargoType.GENERAL,
        cargo_weight=2.0,
        distance_km=40.0,
        duration_min=72,
        estimate_source="offline",
        rate_per_km=50.0,
        minimum_charge=800.0,
        estimated_amount=2000.0,
        status=BookingStatus.PENDING,
        version=0,
        payment_status=BookingPaymentStatus.PENDING,
        payment_method=PaymentMethod.MOBILE_MONEY,
    )
    values.update(overrides)
    booking = BookingModel(**values)
    session.add(booking)
    await session.flush()
    return booking


async def insert_held_payment(
    session: AsyncSession, booking: BookingModel, amount: int = 2000
) -> PaymentModel:
    payment = PaymentModel(
        booking_id=booking.id,
        customer_id=booking.customer_id,
        carrier_id=booking.carrier_id,
        amount=amount,
        method=PaymentMethod.MOBILE_MONEY,
        payer_phone="254712345678",
        checkout_request_id=f"ws_CO_{booking.id}",
        status=PaymentStatus.COMPLETED,
        escrow_status=EscrowStatus.HELD,
    )
    session.add(payment)
    await session.flush()
    booking.payment_id = payment.id
    booking.payment_status = BookingPaymentStatus.PAID
    await session.flush()
    return payment


# ── Outbound HTTP stubs ───────────────────────────────────────────────


def gateway_handler(
    response_code: str = "0", checkout_id: str = "ws_CO_0001"
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth/v1/generate"):
            return httpx.Response(200, json={"access_token": "token", "expires_in": "3599"})
        if request.url.path.endswith("/mpesa/stkpush/v1/processrequest"):
            return httpx.Response(
                200,
                json={
                    "MerchantRequestID": "29115-34620561-1",
                    "CheckoutRequestID": checkout_id,
                    "ResponseCode": response_code,
                    "ResponseDescription": "Success. Request accepted for processing",
                    "CustomerMessage": "Success. Request accepted for processing",
                },
            )
        return httpx.Response(404)

    return handler


def make_gateway(handler: Callable[[httpx.Request], httpx.Response]) -> MpesaGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MpesaGateway(
        client,
        base_url="https://sandbox.example.test",
        consumer_key="key",
        consumer_secret="secret",
        shortcode="174379",
        passkey="passkey",
        callback_url="https://api.example.test/api/v1/payments/callback",
        timeout=2.0,
    )


def success_callback(checkout_id: str = "ws_CO_0001", receipt: str = "QKL1234XYZ") -> dict:
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": 2000},
                        {"Name": "MpesaReceiptNumber", "Value": receipt},
                        {"Name": "PhoneNumber", "Value": 254712345678},
                    ]
                },
            }
        }
    }


def failed_callback(checkout_id: str = "ws_CO_0001") -> dict:
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_id,
                "ResultCode": 1032,
                "ResultDesc": "Request cancelled by user",
            }
        }
    }


# ── Services ──────────────────────────────────────────────────────────


@pytest.fixture
def outbox() -> Outbox:
    return Outbox()


@pytest.fixture
def offline_estimator() -> DistanceEstimator:
    return DistanceEstimator()


@pytest.fixture
def gateway() -> MpesaGateway:
    return make_gateway(gateway_handler())


@pytest.fixture
def escrow(db_session, gateway, outbox) -> EscrowCoordinator:
    return EscrowCoordinator(db_session, gateway, outbox)


@pytest.fixture
def bookings(db_session, offline_estimator, outbox, escrow) -> BookingService:
    return BookingService(db_session, offline_estimator, outbox, escrow)
