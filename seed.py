"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 customers, 5 carriers and 1 administrator
  - 8 vehicles (one per carrier plus spares), with rate cards
  - 5 sample bookings around Nairobi (pending, confirmed, in-transit,
    completed with held escrow, cancelled)
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from cargohaul.domain.distance import offline_estimate
from cargohaul.domain.entities import Location
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
from cargohaul.domain.pricing import fare
from cargohaul.infrastructure.database import async_session_factory, engine
from cargohaul.infrastructure.models import (
    BookingModel,
    PaymentModel,
    UserModel,
    VehicleModel,
)

CUSTOMERS = [
    {"name": "Wanjiru Kamau", "email": "wanjiru@example.com", "phone": "254712000001"},
    {"name": "Otieno Odhiambo", "email": "otieno@example.com", "phone": "254712000002"},
    {"name": "Amina Hassan", "email": "amina@example.com", "phone": "254712000003"},
    {"name": "Kiprop Chebet", "email": "kiprop@example.com", "phone": "254712000004"},
    {"name": "Njeri Mwangi", "email": "njeri@example.com", "phone": "254712000005"},
    {"name": "Baraka Mutua", "email": "baraka@example.com", "phone": "254712000006"},
]

CARRIERS = [
    {"name": "Mombasa Road Haulage", "email": "haulage@example.com", "phone": "254722000001"},
    {"name": "Rift Valley Movers", "email": "riftmovers@example.com", "phone": "254722000002"},
    {"name": "Thika Flatbeds", "email": "thika@example.com", "phone": "254722000003"},
    {"name": "Kisumu Cargo Link", "email": "kisumu@example.com", "phone": "254722000004"},
    {"name": "Jua Kali Pickups", "email": "juakali@example.com", "phone": "254722000005"},
]

VEHICLES = [
    # (carrier index, registration, type, capacity tons, rate/km, minimum)
    (0, "KCA 101A", VehicleType.TRUCK, 10.0, 120.0, 3000.0),
    (0, "KCA 102A", VehicleType.CONTAINER, 28.0, 220.0, 8000.0),
    (1, "KCB 201B", VehicleType.LORRY, 5.0, 80.0, 1500.0),
    (2, "KCC 301C", VehicleType.FLATBED, 20.0, 180.0, 6000.0),
    (3, "KCD 401D", VehicleType.TRUCK, 12.0, 130.0, 3500.0),
    (4, "KCE 501E", VehicleType.PICKUP, 1.5, 50.0, 800.0),
    (4, "KCE 502E", VehicleType.PICKUP, 1.0, 45.0, 700.0),
    (1, "KCB 202B", VehicleType.LORRY, 7.0, 95.0, 2000.0),
]

# Nairobi landmarks (lat, lng)
PLACES = {
    "Industrial Area, Nairobi": (-1.3080, 36.8510),
    "Westlands, Nairobi": (-1.2676, 36.8108),
    "Thika Town": (-1.0333, 37.0693),
    "Jomo Kenyatta International Airport": (-1.3192, 36.9278),
    "Karen, Nairobi": (-1.3190, 36.7073),
    "Ruiru": (-1.1460, 36.9600),
    "Kitengela": (-1.4767, 36.9600),
    "Gikomba Market, Nairobi": (-1.2833, 36.8400),
}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        customers = [UserModel(role=ActorRole.CUSTOMER, **c) for c in CUSTOMERS]
        carriers = [UserModel(role=ActorRole.CARRIER, **c) for c in CARRIERS]
        admin = UserModel(
            name="Operations Desk", email="ops@example.com", role=ActorRole.ADMIN
        )
        session.add_all([*customers, *carriers, admin])
        await session.flush()
        print(f"  Created {len(customers)} customers, {len(carriers)} carriers, 1 admin")

        # ── Vehicles ──────────────────────────────────────────────────
        vehicles = []
        for carrier_idx, reg, vtype, capacity, rate, minimum in VEHICLES:
            m = VehicleModel(
                carrier_id=carriers[carrier_idx].id,
                registration_number=reg,
                vehicle_type=vtype,
                capacity_tons=capacity,
                rate_per_km=rate,
                minimum_charge=minimum,
                is_available=True,
            )
            session.add(m)
            vehicles.append(m)
        await session.flush()
        print(f"  Created {len(vehicles)} vehicles")

        # ── Bookings ──────────────────────────────────────────────────
        now = datetime.now(timezone.utc)
        bookings_data = [
            {
                "customer": 0, "vehicle": 0, "status": BookingStatus.PENDING,
                "from": "Industrial Area, Nairobi", "to": "Thika Town",
                "cargo": CargoType.CONSTRUCTION, "weight": 8.0,
            },
            {
                "customer": 1, "vehicle": 2, "status": BookingStatus.CONFIRMED,
                "from": "Westlands, Nairobi", "to": "Karen, Nairobi",
                "cargo": CargoType.FURNITURE, "weight": 2.5, "delicate": True,
            },
            {
                "customer": 2, "vehicle": 3, "status": BookingStatus.IN_TRANSIT,
                "from": "Jomo Kenyatta International Airport", "to": "Ruiru",
                "cargo": CargoType.ELECTRONICS, "weight": 6.0, "delicate": True,
            },
            {
                "customer": 3, "vehicle": 5, "status": BookingStatus.COMPLETED,
                "from": "Gikomba Market, Nairobi", "to": "Kitengela",
                "cargo": CargoType.FOOD, "weight": 1.2,
                "paid": True,
            },
            {
                "customer": 4, "vehicle": 4, "status": BookingStatus.CANCELLED,
                "from": "Ruiru", "to": "Industrial Area, Nairobi",
                "cargo": CargoType.AGRICULTURAL, "weight": 10.0,
            },
        ]

        for i, b in enumerate(bookings_data):
            vehicle = vehicles[b["vehicle"]]
            origin = PLACES[b["from"]]
            destination = PLACES[b["to"]]
            route = offline_estimate(Location(*origin), Location(*destination))
            booking = BookingModel(
                customer_id=customers[b["customer"]].id,
                carrier_id=vehicle.carrier_id,
                vehicle_id=vehicle.id,
                origin_address=b["from"],
                origin_lat=origin[0],
                origin_lng=origin[1],
                pickup_time=now + timedelta(hours=2 + i),
                destination_address=b["to"],
                destination_lat=destination[0],
                destination_lng=destination[1],
                cargo_type=b["cargo"],
                cargo_weight=b["weight"],
                is_delicate=b.get("delicate", False),
                distance_km=route.distance_km,
                duration_min=route.duration_min,
                estimate_source=route.source,
                rate_per_km=vehicle.rate_per_km,
                minimum_charge=vehicle.minimum_charge,
                estimated_amount=fare(route.distance_km, vehicle.rate_per_km, vehicle.minimum_charge),
                status=b["status"],
                payment_method=PaymentMethod.MOBILE_MONEY,
                payment_status=BookingPaymentStatus.PENDING,
            )
            if b["status"] == BookingStatus.CANCELLED:
                booking.cancellation_reason = "Changed plans"
                booking.cancelled_by = booking.customer_id
                booking.cancelled_at = now
            if b["status"] == BookingStatus.IN_TRANSIT:
                booking.current_lat, booking.current_lng = -1.2300, 36.9300
                booking.tracking_updated_at = now
            session.add(booking)
            await session.flush()

            if b.get("paid"):
                payment = PaymentModel(
                    booking_id=booking.id,
                    customer_id=booking.customer_id,
                    carrier_id=booking.carrier_id,
                    amount=int(round(booking.estimated_amount)),
                    method=PaymentMethod.MOBILE_MONEY,
                    payer_phone=CUSTOMERS[b["customer"]]["phone"],
                    checkout_request_id=f"ws_CO_SEED_{booking.id}",
                    merchant_request_id=f"SEED-{booking.id}",
                    transaction_reference=f"SEEDRCPT{booking.id:04d}",
                    status=PaymentStatus.COMPLETED,
                    escrow_status=EscrowStatus.HELD,
                    paid_at=now,
                )
                session.add(payment)
                await session.flush()
                booking.payment_id = payment.id
                booking.payment_status = BookingPaymentStatus.PAID

        await session.flush()
        print(f"  Created {len(bookings_data)} bookings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
