"""Initial schema with PostGIS extension and all core tables.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Enum labels are the Python member names (SQLAlchemy's default mapping).
actorrole = postgresql.ENUM(
    "CUSTOMER", "CARRIER", "ADMIN", name="actorrole", create_type=False
)
vehicletype = postgresql.ENUM(
    "PICKUP", "LORRY", "TRUCK", "CONTAINER", "FLATBED",
    name="vehicletype", create_type=False,
)
cargotype = postgresql.ENUM(
    "GENERAL", "FURNITURE", "CONSTRUCTION", "AGRICULTURAL",
    "ELECTRONICS", "FOOD", "OTHER",
    name="cargotype", create_type=False,
)
bookingstatus = postgresql.ENUM(
    "PENDING", "CONFIRMED", "IN_TRANSIT", "COMPLETED", "CANCELLED",
    name="bookingstatus", create_type=False,
)
bookingpaymentstatus = postgresql.ENUM(
    "PENDING", "PROCESSING", "PAID", "FAILED", "REFUNDED",
    name="bookingpaymentstatus", create_type=False,
)
paymentmethod = postgresql.ENUM(
    "CASH", "MOBILE_MONEY", name="paymentmethod", create_type=False
)
paymentstatus = postgresql.ENUM(
    "PENDING", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED", "REFUNDED",
    name="paymentstatus", create_type=False,
)
escrowstatus = postgresql.ENUM(
    "HELD", "RELEASED", "REFUNDED", name="escrowstatus", create_type=False
)
ratingstatus = postgresql.ENUM(
    "ACTIVE", "MODERATED", "DELETED", name="ratingstatus", create_type=False
)

ENUMS = (
    actorrole,
    vehicletype,
    cargotype,
    bookingstatus,
    bookingpaymentstatus,
    paymentmethod,
    paymentstatus,
    escrowstatus,
    ratingstatus,
)


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", actorrole, nullable=False, server_default="CUSTOMER"),
        sa.Column("rating_average", sa.Float, nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("carrier_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("registration_number", sa.String(20), unique=True, nullable=False),
        sa.Column("vehicle_type", vehicletype, server_default="TRUCK"),
        sa.Column("capacity_tons", sa.Float, nullable=False),
        sa.Column("rate_per_km", sa.Float, nullable=True),
        sa.Column("minimum_charge", sa.Float, nullable=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("rating_average", sa.Float, nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_vehicles_carrier", "vehicles", ["carrier_id"])
    op.create_index("idx_vehicles_available", "vehicles", ["is_available"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("carrier_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=False),
        # Route
        sa.Column("origin_address", sa.String(500), nullable=False),
        sa.Column("origin_lat", sa.Float, nullable=True),
        sa.Column("origin_lng", sa.Float, nullable=True),
        sa.Column(
            "origin_point",
            Geometry("POINT", srid=4326, spatial_index=False),
            sa.Computed(
                "ST_SetSRID(ST_MakePoint(origin_lng, origin_lat), 4326)",
                persisted=True,
            ),
        ),
        sa.Column("origin_contact", sa.String(120), nullable=True),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("destination_address", sa.String(500), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=True),
        sa.Column("destination_lng", sa.Float, nullable=True),
        sa.Column(
            "destination_point",
            Geometry("POINT", srid=4326, spatial_index=False),
            sa.Computed(
                "ST_SetSRID(ST_MakePoint(destination_lng, destination_lat), 4326)",
                persisted=True,
            ),
        ),
        sa.Column("destination_contact", sa.String(120), nullable=True),
        sa.Column("dropoff_time", sa.DateTime(timezone=True), nullable=True),
        # Cargo
        sa.Column("cargo_type", cargotype, nullable=False),
        sa.Column("cargo_weight", sa.Float, nullable=False),
        sa.Column("cargo_volume", sa.Float, nullable=True),
        sa.Column("cargo_description", sa.Text, nullable=True),
        sa.Column("cargo_pictures", sa.JSON, nullable=True),
        sa.Column("is_delicate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("special_instructions", sa.Text, nullable=True),
        # Pricing
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("duration_min", sa.Integer, nullable=False),
        sa.Column("estimate_source", sa.String(20), nullable=True),
        sa.Column("rate_per_km", sa.Float, nullable=False),
        sa.Column("minimum_charge", sa.Float, nullable=False),
        sa.Column("estimated_amount", sa.Float, nullable=False),
        sa.Column("actual_amount", sa.Float, nullable=True),
        sa.Column("cancellation_fee", sa.Float, nullable=True),
        # Lifecycle
        sa.Column("status", bookingstatus, nullable=False, server_default="PENDING"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        # Payment sub-record
        sa.Column("payment_id", sa.Integer, nullable=True),
        sa.Column(
            "payment_status", bookingpaymentstatus,
            nullable=False, server_default="PENDING",
        ),
        sa.Column(
            "payment_method", paymentmethod,
            nullable=False, server_default="MOBILE_MONEY",
        ),
        # Tracking
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("tracking_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_arrival", sa.DateTime(timezone=True), nullable=True),
        # Cancellation
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("cancelled_by", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(status = 'CANCELLED') = (cancellation_reason IS NOT NULL "
            "AND cancelled_by IS NOT NULL)",
            name="ck_bookings_cancellation_metadata",
        ),
    )
    op.create_index(
        "idx_bookings_origin", "bookings", ["origin_point"], postgresql_using="gist"
    )
    op.create_index(
        "idx_bookings_destination",
        "bookings",
        ["destination_point"],
        postgresql_using="gist",
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_carrier", "bookings", ["carrier_id"])
    op.create_index("idx_bookings_vehicle_status", "bookings", ["vehicle_id", "status"])

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("carrier_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("method", paymentmethod, nullable=False, server_default="MOBILE_MONEY"),
        sa.Column("payer_phone", sa.String(20), nullable=True),
        sa.Column("merchant_request_id", sa.String(100), nullable=True),
        sa.Column("checkout_request_id", sa.String(100), nullable=True),
        sa.Column("response_code", sa.String(10), nullable=True),
        sa.Column("response_description", sa.String(255), nullable=True),
        sa.Column("customer_message", sa.String(255), nullable=True),
        sa.Column("transaction_reference", sa.String(100), nullable=True),
        sa.Column("status", paymentstatus, nullable=False, server_default="PENDING"),
        sa.Column("escrow_status", escrowstatus, nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.Text, nullable=True),
        sa.Column("operator_note", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_payments_booking", "payments", ["booking_id"])
    op.create_index("idx_payments_checkout", "payments", ["checkout_request_id"])
    op.create_index("idx_payments_escrow", "payments", ["escrow_status"])

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("rater_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rated_user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rated_role", actorrole, nullable=False),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("review", sa.String(500), nullable=True),
        sa.Column("categories", sa.JSON, nullable=True),
        sa.Column("status", ratingstatus, nullable=False, server_default="ACTIVE"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("booking_id", "rater_id", name="uq_ratings_booking_rater"),
        sa.CheckConstraint("score BETWEEN 1 AND 5", name="ck_ratings_score"),
    )
    op.create_index("idx_ratings_rated_user", "ratings", ["rated_user_id"])


def downgrade() -> None:
    op.drop_table("ratings")
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("vehicles")
    op.drop_table("users")
    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
