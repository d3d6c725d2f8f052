"""
Payment endpoints
=================

POST /api/v1/payments/initiate   -- start an STK push (202; outcome arrives by callback)
POST /api/v1/payments/callback   -- gateway webhook
GET  /api/v1/payments/{id}       -- payment detail
"""

from fastapi import APIRouter, Body, Depends, Request

from cargohaul.api.dependencies import get_actor, get_escrow
from cargohaul.api.middleware import limiter
from cargohaul.api.schemas import CallbackAck, PaymentInitiateRequest, PaymentResponse
from cargohaul.config import settings
from cargohaul.domain.entities import Actor
from cargohaul.services.escrow import EscrowCoordinator

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/initiate",
    status_code=202,
    response_model=PaymentResponse,
    summary="Initiate a mobile-money payment",
    responses={
        202: {
            "description": (
                "Payment request recorded. Status is processing when the "
                "gateway accepted the push, failed when it did not."
            )
        }
    },
)
@limiter.limit(settings.rate_limit)
async def initiate_payment(
    request: Request,
    body: PaymentInitiateRequest,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.initiate(actor, body.booking_id, body.phone_number)


@router.post(
    "/callback",
    response_model=CallbackAck,
    summary="Gateway payment callback",
    description="Always acknowledged; unknown and duplicate callbacks are ignored.",
)
async def payment_callback(
    payload: dict = Body(...),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    await escrow.handle_callback(payload)
    return CallbackAck()


@router.get("/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
@limiter.limit(settings.rate_limit)
async def get_payment(
    request: Request,
    payment_id: int,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.get_payment(actor, payment_id)
