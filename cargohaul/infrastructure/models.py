"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``users``     -- customers, carriers and administrators (minimal)
* ``vehicles``  -- carrier vehicles with capacity and rate card
* ``bookings``  -- one transport job each, with route, cargo, pricing,
  payment mirror, tracking and cancellation metadata
* ``payments``  -- escrow-backed payment attempts (never deleted)
* ``ratings``   -- one per (booking, rater)

Indexes
-------
* **B-Tree** on ``status``, ``customer_id``, ``carrier_id``, ``vehicle_id``
  and the gateway ``checkout_request_id`` for the look-ups the engine makes.
* **GIST** on the computed origin / destination points is created by the
  migration only (listing screens use it; the engine reads plain floats).
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from cargohaul.domain.enums import (
    ActorRole,
    BookingPaymentStatus,
    BookingStatus,
    CargoType,
    EscrowStatus,
    PaymentMethod,
    PaymentStatus,
    RatingStatus,
    VehicleType,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(Enum(ActorRole), default=ActorRole.CUSTOMER, nullable=False)
    rating_average = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    carrier_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    registration_number = Column(String(20), unique=True, nullable=False)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.TRUCK)
    capacity_tons = Column(Float, nullable=False)
    rate_per_km = Column(Float, nullable=True)  # currency / km
    minimum_charge = Column(Float, nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    rating_average = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_vehicles_carrier", "carrier_id"),
        Index("idx_vehicles_available", "is_available"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)

    # Route
    origin_address = Column(String(500), nullable=False)
    origin_lat = Column(Float, nullable=True)
    origin_lng = Column(Float, nullable=True)
    origin_contact = Column(String(120), nullable=True)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    destination_address = Column(String(500), nullable=False)
    destination_lat = Column(Float, nullable=True)
    destination_lng = Column(Float, nullable=True)
    destination_contact = Column(String(120), nullable=True)
    dropoff_time = Column(DateTime(timezone=True), nullable=True)

    # Cargo
    cargo_type = Column(Enum(CargoType), nullable=False)
    cargo_weight = Column(Float, nullable=False)  # tons
    cargo_volume = Column(Float, nullable=True)  # cubic metres
    cargo_description = Column(Text, nullable=True)
    cargo_pictures = Column(JSON, nullable=True)
    is_delicate = Column(Boolean, default=False, nullable=False)
    special_instructions = Column(Text, nullable=True)

    # Pricing (rate card snapshot at booking time)
    distance_km = Column(Float, nullable=False)
    duration_min = Column(Integer, nullable=False)
    estimate_source = Column(String(20), nullable=True)
    rate_per_km = Column(Float, nullable=False)
    minimum_charge = Column(Float, nullable=False)
    estimated_amount = Column(Float, nullable=False)
    actual_amount = Column(Float, nullable=True)
    cancellation_fee = Column(Float, nullable=True)

    status = Column(
        Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    version = Column(Integer, default=0, nullable=False)

    # Payment sub-record
    payment_id = Column(Integer, nullable=True)
    payment_status = Column(
        Enum(BookingPaymentStatus),
        default=BookingPaymentStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(
        Enum(PaymentMethod), default=PaymentMethod.MOBILE_MONEY, nullable=False
    )

    # Tracking (latest point only)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    tracking_updated_at = Column(DateTime(timezone=True), nullable=True)
    estimated_arrival = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_customer", "customer_id"),
        Index("idx_bookings_carrier", "carrier_id"),
        Index("idx_bookings_vehicle_status", "vehicle_id", "status"),
    )
    __mapper_args__ = {"eager_defaults": True}


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    method = Column(
        Enum(PaymentMethod), default=PaymentMethod.MOBILE_MONEY, nullable=False
    )
    payer_phone = Column(String(20), nullable=True)

    # Gateway references
    merchant_request_id = Column(String(100), nullable=True)
    checkout_request_id = Column(String(100), nullable=True)
    response_code = Column(String(10), nullable=True)
    response_description = Column(String(255), nullable=True)
    customer_message = Column(String(255), nullable=True)
    transaction_reference = Column(String(100), nullable=True)

    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    escrow_status = Column(Enum(EscrowStatus), nullable=True)
    failure_reason = Column(String(255), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refund_reason = Column(Text, nullable=True)
    operator_note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_payments_booking", "booking_id"),
        Index("idx_payments_checkout", "checkout_request_id"),
        Index("idx_payments_escrow", "escrow_status"),
    )
    __mapper_args__ = {"eager_defaults": True}


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    rater_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rated_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    rated_role = Column(Enum(ActorRole), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    score = Column(Integer, nullable=False)
    review = Column(String(500), nullable=True)
    categories = Column(JSON, nullable=True)
    status = Column(Enum(RatingStatus), default=RatingStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("booking_id", "rater_id", name="uq_ratings_booking_rater"),
        Index("idx_ratings_rated_user", "rated_user_id"),
    )
