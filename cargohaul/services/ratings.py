"""
Rating Gate -- one review per (booking, rater), only after delivery.

Checks run in a fixed order so the caller always gets the most specific
reason: missing booking, not a party, not completed, already reviewed, then
input range.  The unique constraint on ``(booking_id, rater_id)`` turns a
racing second insert into ``DuplicateReview`` as well.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cargohaul.domain.entities import Actor
from cargohaul.domain.enums import ActorRole, BookingStatus, RatingStatus
from cargohaul.domain.errors import (
    DuplicateReview,
    NotAuthorized,
    NotEligible,
    NotFound,
    ValidationError,
)
from cargohaul.infrastructure.models import RatingModel
from cargohaul.infrastructure.repositories import (
    BookingRepository,
    RatingRepository,
    UserRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)

MAX_REVIEW_LENGTH = 500
RATING_CATEGORIES = frozenset(
    {"punctuality", "communication", "service", "vehicle_condition"}
)


def _rolling_average(average: float, count: int, score: int) -> tuple[float, int]:
    total = (average or 0.0) * (count or 0) + score
    count = (count or 0) + 1
    return round(total / count, 2), count


class RatingGate:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.bookings = BookingRepository(session)
        self.ratings = RatingRepository(session)
        self.users = UserRepository(session)
        self.vehicles = VehicleRepository(session)

    async def can_review(self, booking_id: int, rater_id: int) -> bool:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None or rater_id not in (booking.customer_id, booking.carrier_id):
            return False
        if booking.status != BookingStatus.COMPLETED:
            return False
        return await self.ratings.get_for_pair(booking_id, rater_id) is None

    async def submit(
        self,
        actor: Actor,
        booking_id: int,
        score: int,
        text: Optional[str] = None,
        categories: Optional[dict[str, int]] = None,
    ) -> RatingModel:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")

        if actor.role == ActorRole.CUSTOMER and actor.user_id == booking.customer_id:
            rated_user_id, rated_role = booking.carrier_id, ActorRole.CARRIER
        elif actor.role == ActorRole.CARRIER and actor.user_id == booking.carrier_id:
            rated_user_id, rated_role = booking.customer_id, ActorRole.CUSTOMER
        else:
            raise NotAuthorized("Not authorized to rate this booking")

        if booking.status != BookingStatus.COMPLETED:
            raise NotEligible("Can only rate completed bookings")
        if await self.ratings.get_for_pair(booking.id, actor.user_id) is not None:
            raise DuplicateReview("You have already rated this booking")

        if not isinstance(score, int) or not 1 <= score <= 5:
            raise ValidationError("Score must be between 1 and 5")
        if text is not None and len(text) > MAX_REVIEW_LENGTH:
            raise ValidationError(
                f"Review text must be at most {MAX_REVIEW_LENGTH} characters"
            )
        for name, value in (categories or {}).items():
            if name not in RATING_CATEGORIES:
                raise ValidationError(f"Unknown rating category: {name}")
            if not isinstance(value, int) or not 1 <= value <= 5:
                raise ValidationError(f"Category {name} must be between 1 and 5")

        rating = RatingModel(
            booking_id=booking.id,
            rater_id=actor.user_id,
            rated_user_id=rated_user_id,
            rated_role=rated_role,
            vehicle_id=booking.vehicle_id if rated_role == ActorRole.CARRIER else None,
            score=score,
            review=text,
            categories=categories or None,
            status=RatingStatus.ACTIVE,
        )
        try:
            async with self.session.begin_nested():
                await self.ratings.create(rating)
        except IntegrityError as exc:
            raise DuplicateReview("You have already rated this booking") from exc

        rated = await self.users.get_by_id(rated_user_id)
        if rated is not None:
            rated.rating_average, rated.rating_count = _rolling_average(
                rated.rating_average, rated.rating_count, score
            )
        if rating.vehicle_id is not None:
            vehicle = await self.vehicles.get_by_id(rating.vehicle_id)
            if vehicle is not None:
                vehicle.rating_average, vehicle.rating_count = _rolling_average(
                    vehicle.rating_average, vehicle.rating_count, score
                )
        await self.session.flush()

        logger.info(
            "Booking %s rated %s by %s %s",
            booking.id, score, actor.role.value, actor.user_id,
        )
        return rating
