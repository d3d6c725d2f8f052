"""
Rating endpoints
================

POST /api/v1/ratings                        -- rate the other party of a completed booking
GET  /api/v1/ratings/booking/{id}/check     -- may the caller still rate this booking?
"""

from fastapi import APIRouter, Depends, Request

from cargohaul.api.dependencies import get_actor, get_rating_gate
from cargohaul.api.middleware import limiter
from cargohaul.api.schemas import CanReviewResponse, RatingCreateRequest, RatingResponse
from cargohaul.config import settings
from cargohaul.domain.entities import Actor
from cargohaul.services.ratings import RatingGate

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.post("", status_code=201, response_model=RatingResponse, summary="Submit a rating")
@limiter.limit(settings.rate_limit)
async def submit_rating(
    request: Request,
    body: RatingCreateRequest,
    actor: Actor = Depends(get_actor),
    gate: RatingGate = Depends(get_rating_gate),
):
    return await gate.submit(
        actor, body.booking_id, body.score, body.review, body.categories
    )


@router.get(
    "/booking/{booking_id}/check",
    response_model=CanReviewResponse,
    summary="Check review eligibility",
)
@limiter.limit(settings.rate_limit)
async def can_review(
    request: Request,
    booking_id: int,
    actor: Actor = Depends(get_actor),
    gate: RatingGate = Depends(get_rating_gate),
):
    return CanReviewResponse(
        booking_id=booking_id,
        can_review=await gate.can_review(booking_id, actor.user_id),
    )
