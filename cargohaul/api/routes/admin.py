"""
Admin / observability endpoints
===============================

POST /api/v1/admin/payments/{id}/release       -- release held escrow to the carrier
POST /api/v1/admin/payments/{id}/refund        -- approve a refund
GET  /api/v1/admin/payments/awaiting-release   -- completed bookings with held escrow
GET  /api/v1/admin/payments/escrow-summary     -- totals per escrow status
GET  /api/v1/admin/health                      -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from cargohaul.api.dependencies import get_actor, get_escrow
from cargohaul.api.middleware import limiter
from cargohaul.api.schemas import (
    EscrowSummaryResponse,
    HealthResponse,
    PaymentResponse,
    RefundRequest,
)
from cargohaul.config import settings
from cargohaul.domain.entities import Actor
from cargohaul.services.escrow import EscrowCoordinator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/payments/awaiting-release",
    response_model=list[PaymentResponse],
    summary="List payments held for completed bookings",
)
@limiter.limit(settings.rate_limit)
async def awaiting_release(
    request: Request,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.awaiting_release(actor)


@router.get(
    "/payments/escrow-summary",
    response_model=EscrowSummaryResponse,
    summary="Escrow totals per status",
)
@limiter.limit(settings.rate_limit)
async def escrow_summary(
    request: Request,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.escrow_summary(actor)


@router.post(
    "/payments/{payment_id}/release",
    response_model=PaymentResponse,
    summary="Release escrow to the carrier",
)
@limiter.limit(settings.rate_limit)
async def release_payment(
    request: Request,
    payment_id: int,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.release(actor, payment_id)


@router.post(
    "/payments/{payment_id}/refund",
    response_model=PaymentResponse,
    summary="Approve a refund",
    description=(
        "Refunds held escrow. A payment already released to the carrier "
        "needs allow_released=true."
    ),
)
@limiter.limit(settings.rate_limit)
async def refund_payment(
    request: Request,
    payment_id: int,
    body: RefundRequest,
    actor: Actor = Depends(get_actor),
    escrow: EscrowCoordinator = Depends(get_escrow),
):
    return await escrow.refund(
        actor, payment_id, body.reason, note=body.note,
        allow_released=body.allow_released,
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
