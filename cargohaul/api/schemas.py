"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from cargohaul.domain.enums import (
    ActorRole,
    BookingStatus,
    CargoType,
    EscrowStatus,
    PaymentMethod,
    PaymentStatus,
)


# ── Requests ──────────────────────────────────────────────────────────


class BookingCreateRequest(BaseModel):
    vehicle_id: int
    origin_address: str = Field(..., min_length=1, max_length=500)
    origin_lat: Optional[float] = Field(None, ge=-90, le=90)
    origin_lng: Optional[float] = Field(None, ge=-180, le=180)
    origin_contact: Optional[str] = Field(None, max_length=120)
    pickup_time: Optional[datetime] = None
    destination_address: str = Field(..., min_length=1, max_length=500)
    destination_lat: Optional[float] = Field(None, ge=-90, le=90)
    destination_lng: Optional[float] = Field(None, ge=-180, le=180)
    destination_contact: Optional[str] = Field(None, max_length=120)
    dropoff_time: Optional[datetime] = None
    cargo_type: CargoType = CargoType.GENERAL
    cargo_weight: float = Field(..., gt=0, description="Weight in tons.")
    cargo_volume: Optional[float] = Field(None, gt=0, description="Cubic metres.")
    cargo_description: Optional[str] = None
    cargo_pictures: Optional[list[str]] = None
    is_delicate: bool = False
    special_instructions: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY


class BookingEditRequest(BaseModel):
    """Only the fields sent are changed."""

    origin_address: Optional[str] = Field(None, min_length=1, max_length=500)
    origin_lat: Optional[float] = Field(None, ge=-90, le=90)
    origin_lng: Optional[float] = Field(None, ge=-180, le=180)
    origin_contact: Optional[str] = Field(None, max_length=120)
    pickup_time: Optional[datetime] = None
    destination_address: Optional[str] = Field(None, min_length=1, max_length=500)
    destination_lat: Optional[float] = Field(None, ge=-90, le=90)
    destination_lng: Optional[float] = Field(None, ge=-180, le=180)
    destination_contact: Optional[str] = Field(None, max_length=120)
    dropoff_time: Optional[datetime] = None
    cargo_type: Optional[CargoType] = None
    cargo_weight: Optional[float] = Field(None, gt=0)
    cargo_volume: Optional[float] = Field(None, gt=0)
    cargo_description: Optional[str] = None
    cargo_pictures: Optional[list[str]] = None
    is_delicate: Optional[bool] = None
    special_instructions: Optional[str] = None
    expected_version: Optional[int] = Field(
        None, description="Reject the edit if the booking changed since this version."
    )


class StatusUpdateRequest(BaseModel):
    status: BookingStatus
    reason: Optional[str] = Field(None, max_length=1000)
    expected_version: Optional[int] = None


class TrackingUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    estimated_arrival: Optional[datetime] = None


class GeocodeRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)


class PaymentInitiateRequest(BaseModel):
    booking_id: int
    phone_number: str = Field(..., min_length=9, max_length=20)


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    note: Optional[str] = Field(None, max_length=1000)
    allow_released: bool = Field(
        False,
        description="Manual override: refund a payment already released to the carrier.",
    )


class RatingCreateRequest(BaseModel):
    booking_id: int
    score: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)
    categories: Optional[dict[str, int]] = None


# ── Responses ─────────────────────────────────────────────────────────


class LocationResponse(BaseModel):
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    contact: Optional[str] = None
    scheduled_time: Optional[datetime] = None


class CargoResponse(BaseModel):
    type: CargoType
    weight: float
    volume: Optional[float] = None
    description: Optional[str] = None
    pictures: Optional[list[str]] = None
    is_delicate: bool = False


class PricingResponse(BaseModel):
    distance_km: float
    duration_min: int
    estimate_source: Optional[str] = None
    rate_per_km: float
    minimum_charge: float
    estimated_amount: float
    actual_amount: Optional[float] = None
    cancellation_fee: Optional[float] = None


class PaymentSummary(BaseModel):
    payment_id: Optional[int] = None
    status: str
    method: str


class TrackingResponse(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    updated_at: Optional[datetime] = None
    estimated_arrival: Optional[datetime] = None


class CancellationResponse(BaseModel):
    reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: int
    customer_id: int
    carrier_id: int
    vehicle_id: int
    status: BookingStatus
    version: int
    origin: LocationResponse
    destination: LocationResponse
    cargo: CargoResponse
    special_instructions: Optional[str] = None
    pricing: PricingResponse
    payment: PaymentSummary
    tracking: Optional[TrackingResponse] = None
    cancellation: Optional[CancellationResponse] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, b: Any) -> "BookingResponse":
        tracking = None
        if b.current_lat is not None:
            tracking = TrackingResponse(
                latitude=b.current_lat,
                longitude=b.current_lng,
                updated_at=b.tracking_updated_at,
                estimated_arrival=b.estimated_arrival,
            )
        cancellation = None
        if b.status == BookingStatus.CANCELLED:
            cancellation = CancellationResponse(
                reason=b.cancellation_reason,
                cancelled_by=b.cancelled_by,
                cancelled_at=b.cancelled_at,
            )
        return cls(
            id=b.id,
            customer_id=b.customer_id,
            carrier_id=b.carrier_id,
            vehicle_id=b.vehicle_id,
            status=b.status,
            version=b.version,
            origin=LocationResponse(
                address=b.origin_address,
                latitude=b.origin_lat,
                longitude=b.origin_lng,
                contact=b.origin_contact,
                scheduled_time=b.pickup_time,
            ),
            destination=LocationResponse(
                address=b.destination_address,
                latitude=b.destination_lat,
                longitude=b.destination_lng,
                contact=b.destination_contact,
                scheduled_time=b.dropoff_time,
            ),
            cargo=CargoResponse(
                type=b.cargo_type,
                weight=b.cargo_weight,
                volume=b.cargo_volume,
                description=b.cargo_description,
                pictures=b.cargo_pictures,
                is_delicate=b.is_delicate,
            ),
            special_instructions=b.special_instructions,
            pricing=PricingResponse(
                distance_km=b.distance_km,
                duration_min=b.duration_min,
                estimate_source=b.estimate_source,
                rate_per_km=b.rate_per_km,
                minimum_charge=b.minimum_charge,
                estimated_amount=b.estimated_amount,
                actual_amount=b.actual_amount,
                cancellation_fee=b.cancellation_fee,
            ),
            payment=PaymentSummary(
                payment_id=b.payment_id,
                status=b.payment_status.value,
                method=b.payment_method.value,
            ),
            tracking=tracking,
            cancellation=cancellation,
            created_at=b.created_at,
            updated_at=b.updated_at,
        )


class BookingCreatedResponse(BaseModel):
    booking: BookingResponse
    estimated_price: float
    warning: Optional[str] = None


class BookingListItem(BaseModel):
    booking: BookingResponse
    plan_order: Optional[int] = None
    estimated_pickup_time: Optional[datetime] = None


class GeocodeResponse(BaseModel):
    latitude: float
    longitude: float
    formatted_address: str
    source: str


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    customer_id: int
    carrier_id: int
    amount: int
    method: PaymentMethod
    payer_phone: Optional[str] = None
    status: PaymentStatus
    escrow_status: Optional[EscrowStatus] = None
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    customer_message: Optional[str] = None
    transaction_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    operator_note: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EscrowBucket(BaseModel):
    total: int
    count: int


class EscrowSummaryResponse(BaseModel):
    held: EscrowBucket
    released: EscrowBucket
    refunded: EscrowBucket
    in_system: EscrowBucket


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class RatingResponse(BaseModel):
    id: int
    booking_id: int
    rater_id: int
    rated_user_id: int
    rated_role: ActorRole
    vehicle_id: Optional[int] = None
    score: int
    review: Optional[str] = None
    categories: Optional[dict[str, int]] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CanReviewResponse(BaseModel):
    booking_id: int
    can_review: bool


class HealthResponse(BaseModel):
    status: str = "ok"
