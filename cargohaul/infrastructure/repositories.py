"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

State changes on bookings and payments are **compare-and-swap** writes:
``UPDATE ... WHERE id = :id AND <expected prior state>``.  A write computed
against a stale read affects zero rows and the caller turns that into an
``InvalidTransition``; nothing is blindly overwritten.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, PaymentModel, RatingModel, UserModel, VehicleModel
from cargohaul.domain.enums import (
    ACTIVE_STATUSES,
    BookingStatus,
    EscrowStatus,
    PaymentStatus,
)

_UNSET: Any = object()


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(
            BookingModel, booking_id, populate_existing=True
        )

    async def reload(self, booking: BookingModel) -> BookingModel:
        await self.session.refresh(booking)
        return booking

    async def count_active_for_vehicle(self, vehicle_id: int) -> int:
        query = (
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.vehicle_id == vehicle_id)
            .where(BookingModel.status.in_(ACTIVE_STATUSES))
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def list_for_customer(self, customer_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.customer_id == customer_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_carrier(self, carrier_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.carrier_id == carrier_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return list(result.scalars().all())

    async def update_if_current(
        self,
        booking_id: int,
        *,
        expected_status: BookingStatus,
        expected_version: int | None,
        values: dict[str, Any],
    ) -> bool:
        """
        Apply *values* only if the row still has *expected_status* (and
        *expected_version*, when given).  Bumps ``version``.

        Returns ``False`` when the row changed underneath the caller.
        """
        stmt = (
            update(BookingModel)
            .where(BookingModel.id == booking_id)
            .where(BookingModel.status == expected_status)
            .values(**values, version=BookingModel.version + 1)
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            stmt = stmt.where(BookingModel.version == expected_version)
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_payment_mirror(
        self, booking_id: int, *, payment_status, payment_id: Any = _UNSET
    ) -> None:
        """Update the payment sub-record; does not touch ``version``."""
        values: dict[str, Any] = {"payment_status": payment_status}
        if payment_id is not _UNSET:
            values["payment_id"] = payment_id
        await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, payment: PaymentModel) -> PaymentModel:
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_id(self, payment_id: int) -> Optional[PaymentModel]:
        return await self.session.get(
            PaymentModel, payment_id, populate_existing=True
        )

    async def reload(self, payment: PaymentModel) -> PaymentModel:
        await self.session.refresh(payment)
        return payment

    async def get_by_checkout_request_id(
        self, checkout_request_id: str
    ) -> Optional[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel).where(
                PaymentModel.checkout_request_id == checkout_request_id
            )
        )
        return result.scalars().first()

    async def list_for_booking(self, booking_id: int) -> list[PaymentModel]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.booking_id == booking_id)
            .order_by(PaymentModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def has_completed_for_booking(self, booking_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(PaymentModel)
            .where(PaymentModel.booking_id == booking_id)
            .where(PaymentModel.status == PaymentStatus.COMPLETED)
        )
        return (result.scalar() or 0) > 0

    async def swap(
        self,
        payment_id: int,
        *,
        expected_status: PaymentStatus,
        expected_escrow: Optional[EscrowStatus] | Any = _UNSET,
        values: dict[str, Any],
    ) -> bool:
        """
        Conditional update: set *values* only if the payment is currently in
        *expected_status* (and *expected_escrow*, when given; ``None`` means
        "not yet in escrow").  Returns ``False`` if another writer won.
        """
        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .where(PaymentModel.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if expected_escrow is not _UNSET:
            if expected_escrow is None:
                stmt = stmt.where(PaymentModel.escrow_status.is_(None))
            else:
                stmt = stmt.where(PaymentModel.escrow_status == expected_escrow)
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def awaiting_release(self) -> list[PaymentModel]:
        """Completed bookings whose funds are still held in escrow."""
        result = await self.session.execute(
            select(PaymentModel)
            .join(BookingModel, BookingModel.id == PaymentModel.booking_id)
            .where(BookingModel.status == BookingStatus.COMPLETED)
            .where(PaymentModel.status == PaymentStatus.COMPLETED)
            .where(PaymentModel.escrow_status == EscrowStatus.HELD)
            .order_by(PaymentModel.paid_at)
        )
        return list(result.scalars().all())

    async def escrow_totals(self) -> dict[EscrowStatus, tuple[int, int]]:
        """Map escrow status -> (total amount, count)."""
        result = await self.session.execute(
            select(
                PaymentModel.escrow_status,
                func.coalesce(func.sum(PaymentModel.amount), 0),
                func.count(),
            )
            .where(PaymentModel.escrow_status.is_not(None))
            .group_by(PaymentModel.escrow_status)
        )
        return {row[0]: (int(row[1]), int(row[2])) for row in result.all()}


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, rating: RatingModel) -> RatingModel:
        self.session.add(rating)
        await self.session.flush()
        return rating

    async def get_for_pair(
        self, booking_id: int, rater_id: int
    ) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel)
            .where(RatingModel.booking_id == booking_id)
            .where(RatingModel.rater_id == rater_id)
        )
        return result.scalar_one_or_none()


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)
