"""
Booking endpoints
=================

POST  /api/v1/bookings                      -- create a booking (201)
GET   /api/v1/bookings/mine                 -- caller's bookings (carrier: plan order)
POST  /api/v1/bookings/geocode              -- resolve an address
GET   /api/v1/bookings/{id}                 -- booking detail
PATCH /api/v1/bookings/{id}                 -- edit a pending booking
PUT   /api/v1/bookings/{id}/status          -- advance / cancel
PATCH /api/v1/bookings/{id}/tracking        -- carrier location update
POST  /api/v1/bookings/{id}/cash-collected  -- carrier confirms cash payment
"""

from fastapi import APIRouter, Depends, Request

from cargohaul.api.dependencies import get_actor, get_booking_service
from cargohaul.api.middleware import limiter
from cargohaul.api.schemas import (
    BookingCreatedResponse,
    BookingCreateRequest,
    BookingEditRequest,
    BookingListItem,
    BookingResponse,
    GeocodeRequest,
    GeocodeResponse,
    StatusUpdateRequest,
    TrackingUpdateRequest,
)
from cargohaul.config import settings
from cargohaul.domain.entities import Actor
from cargohaul.services.bookings import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    status_code=201,
    response_model=BookingCreatedResponse,
    summary="Create a booking",
    responses={201: {"description": "Booking priced and persisted as pending."}},
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    result = await service.create_booking(actor, body.model_dump())
    return BookingCreatedResponse(
        booking=BookingResponse.from_model(result.booking),
        estimated_price=result.booking.estimated_amount,
        warning=result.warning,
    )


@router.get(
    "/mine",
    response_model=list[BookingListItem],
    summary="List the caller's bookings",
    description="Carriers get their confirmed and in-transit jobs first, in suggested pickup order.",
)
@limiter.limit(settings.rate_limit)
async def list_my_bookings(
    request: Request,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    listing = await service.list_my_bookings(actor)
    return [
        BookingListItem(
            booking=BookingResponse.from_model(item.booking),
            plan_order=item.plan_order,
            estimated_pickup_time=item.estimated_pickup_time,
        )
        for item in listing
    ]


@router.post("/geocode", response_model=GeocodeResponse, summary="Resolve an address")
@limiter.limit(settings.rate_limit)
async def geocode(
    request: Request,
    body: GeocodeRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    found = await service.geocode(body.address)
    return GeocodeResponse(
        latitude=found.location.latitude,
        longitude=found.location.longitude,
        formatted_address=found.formatted_address,
        source=found.source,
    )


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_model(await service.get_booking(actor, booking_id))


@router.patch(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Edit a pending booking",
    description="Customer only, while pending. Route changes re-price the booking.",
)
@limiter.limit(settings.rate_limit)
async def edit_booking(
    request: Request,
    booking_id: int,
    body: BookingEditRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    changes = body.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    booking = await service.edit_booking(actor, booking_id, changes, expected_version)
    return BookingResponse.from_model(booking)


@router.put(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Change booking status",
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    booking_id: int,
    body: StatusUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.update_status(
        actor, booking_id, body.status, body.reason, body.expected_version
    )
    return BookingResponse.from_model(booking)


@router.patch(
    "/{booking_id}/tracking",
    response_model=BookingResponse,
    summary="Update cargo location",
)
@limiter.limit(settings.rate_limit)
async def update_tracking(
    request: Request,
    booking_id: int,
    body: TrackingUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.update_tracking(
        actor, booking_id, body.latitude, body.longitude, body.estimated_arrival
    )
    return BookingResponse.from_model(booking)


@router.post(
    "/{booking_id}/cash-collected",
    response_model=BookingResponse,
    summary="Confirm cash collected",
)
@limiter.limit(settings.rate_limit)
async def cash_collected(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.from_model(await service.mark_cash_collected(actor, booking_id))
