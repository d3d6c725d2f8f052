"""
Escrow Payment Coordinator
==========================

Payment state machine::

    pending -> processing -> completed -> refunded
                          -> failed
                          -> cancelled

Escrow state machine (only for confirmed mobile-money payments)::

    (none) -> held -> released
                   -> refunded
              released -> refunded   (manual override only)

Every escrow move is a compare-and-swap on the payment row, so a second
release or refund of the same payment loses and is rejected.  Admin actions
on one payment are additionally serialised with a Redis lock when a client
is available.  The booking's payment mirror is updated in the same unit of
work.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from cargohaul.domain.entities import Actor
from cargohaul.domain.enums import (
    ActorRole,
    BookingPaymentStatus,
    BookingStatus,
    EscrowStatus,
    PaymentMethod,
    PaymentStatus,
)
from cargohaul.domain.errors import (
    InvalidTransition,
    NotAuthorized,
    NotFound,
    UpstreamUnavailable,
    ValidationError,
)
from cargohaul.infrastructure.gateway import GatewayError, MpesaGateway, normalize_phone
from cargohaul.infrastructure.locks import DistributedLock, LockNotAcquired
from cargohaul.infrastructure.models import BookingModel, PaymentModel
from cargohaul.infrastructure.notifications import OPERATORS, Outbox
from cargohaul.infrastructure.repositories import BookingRepository, PaymentRepository

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stk_callback(payload: Any) -> dict:
    body = payload.get("Body") if isinstance(payload, dict) else None
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    return callback if isinstance(callback, dict) else {}


def _callback_item(callback: dict, name: str) -> Any:
    metadata = callback.get("CallbackMetadata")
    items = metadata.get("Item") if isinstance(metadata, dict) else None
    for item in items if isinstance(items, list) else []:
        if isinstance(item, dict) and item.get("Name") == name:
            return item.get("Value")
    return None


class EscrowCoordinator:
    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[MpesaGateway],
        outbox: Outbox,
        redis: Optional[aioredis.Redis] = None,
        lock_ttl_seconds: int = 30,
    ):
        self.payments = PaymentRepository(session)
        self.bookings = BookingRepository(session)
        self.gateway = gateway
        self.outbox = outbox
        self.redis = redis
        self.lock_ttl_seconds = lock_ttl_seconds

    # ── Lookups ───────────────────────────────────────────────────────

    async def _payment_or_404(self, payment_id: int) -> PaymentModel:
        payment = await self.payments.get_by_id(payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        return payment

    async def _booking_or_404(self, booking_id: int) -> BookingModel:
        booking = await self.bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking

    async def get_payment(self, actor: Actor, payment_id: int) -> PaymentModel:
        payment = await self._payment_or_404(payment_id)
        if actor.role != ActorRole.ADMIN and actor.user_id not in (
            payment.customer_id,
            payment.carrier_id,
        ):
            raise NotAuthorized("Not authorized to view this payment")
        return payment

    # ── Initiation ────────────────────────────────────────────────────

    async def initiate(
        self, actor: Actor, booking_id: int, payer_phone: str
    ) -> PaymentModel:
        """
        Start a mobile-money payment for *booking_id*.

        Gateway failures are recorded as a ``failed`` payment (the customer
        retries, possibly with another number); only a missing gateway
        configuration raises ``UpstreamUnavailable``.
        """
        booking = await self._booking_or_404(booking_id)
        if actor.role != ActorRole.CUSTOMER or actor.user_id != booking.customer_id:
            raise NotAuthorized("Only the booking's customer can pay for it")
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidTransition("Cannot pay for a cancelled booking")
        if booking.payment_method == PaymentMethod.CASH:
            raise ValidationError("Cash bookings are settled directly with the carrier")
        if await self.payments.has_completed_for_booking(booking.id):
            raise InvalidTransition("Booking is already paid")

        phone = normalize_phone(payer_phone)
        if phone is None:
            raise ValidationError(
                "Invalid phone number format. Use 0712345678 or 254712345678"
            )
        if self.gateway is None or not self.gateway.configured:
            raise UpstreamUnavailable("Mobile-money gateway is not configured")

        amount = int(round(booking.estimated_amount))
        payment = PaymentModel(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            carrier_id=booking.carrier_id,
            amount=amount,
            method=PaymentMethod.MOBILE_MONEY,
            payer_phone=phone,
        )

        try:
            accepted = await self.gateway.stk_push(
                phone, amount, account_reference=str(booking.id)
            )
        except GatewayError as exc:
            logger.warning("STK push for booking %s failed: %s", booking.id, exc)
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = str(exc)[:255]
            await self.payments.create(payment)
            await self.bookings.set_payment_mirror(
                booking.id,
                payment_status=BookingPaymentStatus.FAILED,
                payment_id=payment.id,
            )
            return payment

        payment.status = PaymentStatus.PROCESSING
        payment.merchant_request_id = accepted.merchant_request_id
        payment.checkout_request_id = accepted.checkout_request_id
        payment.response_code = accepted.response_code
        payment.response_description = accepted.response_description
        payment.customer_message = accepted.customer_message
        await self.payments.create(payment)
        await self.bookings.set_payment_mirror(
            booking.id,
            payment_status=BookingPaymentStatus.PROCESSING,
            payment_id=payment.id,
        )
        logger.info("Payment %s processing for booking %s", payment.id, booking.id)
        return payment

    # ── Gateway callback ──────────────────────────────────────────────

    async def handle_callback(self, payload: dict) -> Optional[PaymentModel]:
        """
        Apply a gateway result.  Unknown, late and duplicate callbacks are
        acknowledged and ignored (the swap from ``processing`` fails).
        """
        callback = _stk_callback(payload)
        checkout_id = callback.get("CheckoutRequestID")
        if not checkout_id:
            logger.warning("Callback without CheckoutRequestID ignored")
            return None

        payment = await self.payments.get_by_checkout_request_id(checkout_id)
        if payment is None:
            logger.warning("Callback for unknown checkout %s ignored", checkout_id)
            return None

        try:
            result_code = int(callback.get("ResultCode"))
        except (TypeError, ValueError):
            logger.warning("Callback for %s has no usable ResultCode", checkout_id)
            return None

        if result_code == 0:
            reference = _callback_item(callback, "MpesaReceiptNumber") or callback.get(
                "MerchantRequestID"
            )
            swapped = await self.payments.swap(
                payment.id,
                expected_status=PaymentStatus.PROCESSING,
                expected_escrow=None,
                values={
                    "status": PaymentStatus.COMPLETED,
                    "escrow_status": EscrowStatus.HELD,
                    "paid_at": _now(),
                    "transaction_reference": reference,
                },
            )
            if not swapped:
                await self.payments.reload(payment)
                if payment.status == PaymentStatus.CANCELLED:
                    self._flag_manual_refund(
                        payment, f"booking {payment.booking_id} was cancelled"
                    )
                else:
                    logger.info("Duplicate callback for payment %s ignored", payment.id)
                return payment

            await self.payments.reload(payment)
            booking = await self.bookings.get_by_id(payment.booking_id)
            if booking is None or booking.status == BookingStatus.CANCELLED:
                self._flag_manual_refund(
                    payment, f"booking {payment.booking_id} was cancelled"
                )
                return payment
            already_paid = [
                p for p in await self.payments.list_for_booking(payment.booking_id)
                if p.id != payment.id and p.status == PaymentStatus.COMPLETED
            ]
            if already_paid:
                self._flag_manual_refund(
                    payment,
                    f"booking {payment.booking_id} was already paid by "
                    f"payment {already_paid[0].id}",
                )
                return payment

            await self.bookings.set_payment_mirror(
                payment.booking_id,
                payment_status=BookingPaymentStatus.PAID,
                payment_id=payment.id,
            )
            logger.info("Payment %s completed; %s held in escrow", payment.id, payment.amount)
            self.outbox.add(
                payment.customer_id, "payment_received", "Payment Received",
                f"Your payment of {payment.amount:,} has been received and is "
                f"held in escrow until delivery.",
                payment.booking_id,
            )
            self.outbox.add(
                payment.carrier_id, "payment_received", "Booking Paid",
                "The customer's payment is held in escrow and will be released "
                "after delivery.",
                payment.booking_id,
            )
            return payment

        description = callback.get("ResultDesc")
        if not isinstance(description, str) or not description.strip():
            description = "Payment failed"
        swapped = await self.payments.swap(
            payment.id,
            expected_status=PaymentStatus.PROCESSING,
            values={"status": PaymentStatus.FAILED, "failure_reason": description[:255]},
        )
        if swapped:
            booking = await self.bookings.get_by_id(payment.booking_id)
            if booking is not None and booking.payment_id == payment.id:
                await self.bookings.set_payment_mirror(
                    booking.id, payment_status=BookingPaymentStatus.FAILED
                )
            logger.info(
                "Payment %s failed at gateway: %s", payment.id, description
            )
        await self.payments.reload(payment)
        return payment

    def _flag_manual_refund(self, payment: PaymentModel, why: str) -> None:
        """Funds were captured that the booking no longer needs."""
        logger.error(
            "Payment %s confirmed after %s; manual refund required", payment.id, why
        )
        self.outbox.add(
            OPERATORS, "payment_needs_manual_refund", "Manual Refund Required",
            f"Payment {payment.id} was confirmed after {why}.",
            payment.booking_id,
        )

    # ── Administrator actions ─────────────────────────────────────────

    @asynccontextmanager
    async def _operator_lock(self, payment_id: int):
        if self.redis is None:
            yield
            return
        lock = DistributedLock.for_payment(
            self.redis, payment_id, ttl_seconds=self.lock_ttl_seconds
        )
        try:
            async with lock:
                yield
        except LockNotAcquired as exc:
            raise InvalidTransition(
                "Another operator action is in progress for this payment"
            ) from exc

    async def release(self, actor: Actor, payment_id: int) -> PaymentModel:
        """Escrow ``held -> released`` for a completed booking."""
        if actor.role != ActorRole.ADMIN:
            raise NotAuthorized("Only an administrator can release escrow")
        payment = await self._payment_or_404(payment_id)
        booking = await self._booking_or_404(payment.booking_id)
        if booking.status != BookingStatus.COMPLETED:
            raise InvalidTransition("Booking must be completed before escrow release")

        async with self._operator_lock(payment.id):
            swapped = await self.payments.swap(
                payment.id,
                expected_status=PaymentStatus.COMPLETED,
                expected_escrow=EscrowStatus.HELD,
                values={"escrow_status": EscrowStatus.RELEASED, "released_at": _now()},
            )
            await self.payments.reload(payment)
            if not swapped:
                current = payment.escrow_status.value if payment.escrow_status else "none"
                raise InvalidTransition(
                    f"Escrow can only be released while held (currently {current})"
                )

        logger.info("Escrow released for payment %s by admin %s", payment.id, actor.user_id)
        self.outbox.add(
            payment.carrier_id, "payment_released", "Payment Released",
            f"Payment of {payment.amount:,} has been released to your account.",
            payment.booking_id,
        )
        return payment

    async def refund(
        self,
        actor: Actor,
        payment_id: int,
        reason: str,
        note: Optional[str] = None,
        allow_released: bool = False,
    ) -> PaymentModel:
        """
        Escrow ``held -> refunded``.  ``released -> refunded`` is the manual
        exception path and needs ``allow_released``.
        """
        if actor.role != ActorRole.ADMIN:
            raise NotAuthorized("Only an administrator can approve refunds")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A refund reason is required")

        payment = await self._payment_or_404(payment_id)
        if payment.status == PaymentStatus.REFUNDED:
            raise InvalidTransition("Payment has already been refunded")
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidTransition("Payment cannot be refunded (not completed)")
        if payment.escrow_status == EscrowStatus.RELEASED and not allow_released:
            raise InvalidTransition(
                "Payment was already released to the carrier. "
                "Manual refund processing required."
            )

        source = payment.escrow_status
        async with self._operator_lock(payment.id):
            swapped = await self.payments.swap(
                payment.id,
                expected_status=PaymentStatus.COMPLETED,
                expected_escrow=source,
                values={
                    "status": PaymentStatus.REFUNDED,
                    "escrow_status": EscrowStatus.REFUNDED,
                    "refunded_at": _now(),
                    "refund_reason": reason,
                    "operator_note": note,
                },
            )
            await self.payments.reload(payment)
            if not swapped:
                raise InvalidTransition(
                    "Payment changed while the refund was being applied; reload and retry"
                )

        await self._mirror_refund(payment)
        logger.info(
            "Payment %s refunded by admin %s (from %s): %s",
            payment.id, actor.user_id, source.value if source else None, reason,
        )
        self.outbox.add(
            payment.customer_id, "payment_refunded", "Payment Refunded",
            f"Your payment of {payment.amount:,} has been refunded. Reason: {reason}",
            payment.booking_id,
        )
        return payment

    async def _mirror_refund(self, payment: PaymentModel) -> None:
        booking = await self.bookings.get_by_id(payment.booking_id)
        if booking is not None and booking.payment_id == payment.id:
            await self.bookings.set_payment_mirror(
                booking.id, payment_status=BookingPaymentStatus.REFUNDED
            )

    # ── Booking lifecycle hooks ───────────────────────────────────────

    async def on_booking_completed(self, booking: BookingModel) -> None:
        """Flag held escrow for operator release/refund.  Never releases."""
        if booking.payment_id is None:
            return
        payment = await self.payments.get_by_id(booking.payment_id)
        if (
            payment is not None
            and payment.status == PaymentStatus.COMPLETED
            and payment.escrow_status == EscrowStatus.HELD
        ):
            logger.info(
                "Booking %s completed; payment %s awaiting release/refund",
                booking.id, payment.id,
            )
            self.outbox.add(
                OPERATORS, "escrow_awaiting_release", "Escrow Awaiting Release",
                f"Booking {booking.id} is completed and payment {payment.id} "
                f"({payment.amount:,}) is held in escrow.",
                booking.id,
            )

    async def on_booking_cancelled(
        self, booking: BookingModel, actor: Actor, reason: str
    ) -> None:
        """
        Unwind every payment attempt of a cancelled booking, not only the
        latest one.  Problems here are logged; they never undo the
        cancellation.
        """
        refund_reason = f"Booking cancelled by {actor.role.value}: {reason}"
        for payment in await self.payments.list_for_booking(booking.id):
            current = payment.id == booking.payment_id
            if (
                payment.status == PaymentStatus.COMPLETED
                and payment.escrow_status == EscrowStatus.HELD
            ):
                await self._refund_for_cancellation(booking, payment, refund_reason, current)
            elif payment.escrow_status == EscrowStatus.RELEASED:
                logger.warning(
                    "Booking %s cancelled after payment %s was released; "
                    "manual refund required", booking.id, payment.id,
                )
                self.outbox.add(
                    booking.customer_id, "refund_requires_support",
                    "Refund Processing Required",
                    "Your booking was cancelled. Since payment was already released, "
                    "please contact support for refund processing.",
                    booking.id,
                )
            elif payment.status == PaymentStatus.PROCESSING:
                swapped = await self.payments.swap(
                    payment.id,
                    expected_status=PaymentStatus.PROCESSING,
                    values={"status": PaymentStatus.CANCELLED},
                )
                if swapped:
                    logger.info(
                        "Pending push %s cancelled with booking %s", payment.id, booking.id
                    )
                    if current:
                        await self.bookings.set_payment_mirror(
                            booking.id, payment_status=BookingPaymentStatus.PENDING
                        )

    async def _refund_for_cancellation(
        self, booking: BookingModel, payment: PaymentModel, reason: str, current: bool
    ) -> None:
        swapped = await self.payments.swap(
            payment.id,
            expected_status=PaymentStatus.COMPLETED,
            expected_escrow=EscrowStatus.HELD,
            values={
                "status": PaymentStatus.REFUNDED,
                "escrow_status": EscrowStatus.REFUNDED,
                "refunded_at": _now(),
                "refund_reason": reason,
            },
        )
        if not swapped:
            logger.error(
                "Automatic refund of payment %s lost a race; needs review", payment.id
            )
            return
        if current:
            await self.bookings.set_payment_mirror(
                booking.id, payment_status=BookingPaymentStatus.REFUNDED
            )
        logger.info("Payment %s refunded for cancelled booking %s", payment.id, booking.id)
        self.outbox.add(
            booking.customer_id, "payment_refunded", "Payment Refunded",
            f"Your payment of {payment.amount:,} has been refunded due to "
            f"booking cancellation.",
            booking.id,
        )

    # ── Reporting ─────────────────────────────────────────────────────

    async def awaiting_release(self, actor: Actor) -> list[PaymentModel]:
        if actor.role != ActorRole.ADMIN:
            raise NotAuthorized("Admin access required")
        return await self.payments.awaiting_release()

    async def escrow_summary(self, actor: Actor) -> dict[str, dict[str, int]]:
        if actor.role != ActorRole.ADMIN:
            raise NotAuthorized("Admin access required")
        totals = await self.payments.escrow_totals()
        summary = {
            status.value: {"total": totals.get(status, (0, 0))[0], "count": totals.get(status, (0, 0))[1]}
            for status in EscrowStatus
        }
        summary["in_system"] = {
            "total": summary["held"]["total"] + summary["released"]["total"],
            "count": summary["held"]["count"] + summary["released"]["count"],
        }
        return summary
