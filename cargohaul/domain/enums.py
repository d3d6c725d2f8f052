"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_TRANSIT = "in-transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    CARRIER = "carrier"
    ADMIN = "admin"


# Transition authority: (current status, actor role) -> statuses that role may request.
# Terminal statuses have no entries.
TRANSITION_AUTHORITY: dict[tuple[BookingStatus, ActorRole], set[BookingStatus]] = {
    (BookingStatus.PENDING, ActorRole.CARRIER): {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    },
    (BookingStatus.PENDING, ActorRole.CUSTOMER): {BookingStatus.CANCELLED},
    (BookingStatus.CONFIRMED, ActorRole.CARRIER): {
        BookingStatus.IN_TRANSIT,
        BookingStatus.CANCELLED,
    },
    (BookingStatus.IN_TRANSIT, ActorRole.CARRIER): {BookingStatus.COMPLETED},
}

# State machine: maps current status -> set of valid next statuses (any role)
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    status: {
        target
        for (current, _role), targets in TRANSITION_AUTHORITY.items()
        if current == status
        for target in targets
    }
    for status in BookingStatus
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)

ACTIVE_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_TRANSIT,
)


class CargoType(str, enum.Enum):
    GENERAL = "general"
    FURNITURE = "furniture"
    CONSTRUCTION = "construction"
    AGRICULTURAL = "agricultural"
    ELECTRONICS = "electronics"
    FOOD = "food"
    OTHER = "other"


class VehicleType(str, enum.Enum):
    PICKUP = "pickup"
    LORRY = "lorry"
    TRUCK = "truck"
    CONTAINER = "container"
    FLATBED = "flatbed"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile-money"


class BookingPaymentStatus(str, enum.Enum):
    """Mirror of the payment state kept on the booking."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EscrowStatus(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class RatingStatus(str, enum.Enum):
    ACTIVE = "active"
    MODERATED = "moderated"
    DELETED = "deleted"
