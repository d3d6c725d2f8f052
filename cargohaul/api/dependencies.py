"""FastAPI dependency injection helpers."""

from typing import AsyncIterator, Optional

import httpx
import redis.asyncio as aioredis
from fastapi import BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cargohaul.config import settings
from cargohaul.domain.entities import Actor
from cargohaul.domain.enums import ActorRole
from cargohaul.domain.errors import NotAuthorized
from cargohaul.infrastructure.database import async_session_factory
from cargohaul.infrastructure.gateway import MpesaGateway
from cargohaul.infrastructure.notifications import NotificationDispatcher, Outbox
from cargohaul.infrastructure.redis_client import get_redis
from cargohaul.services.bookings import BookingService
from cargohaul.services.escrow import EscrowCoordinator
from cargohaul.services.estimator import DistanceEstimator
from cargohaul.services.ratings import RatingGate


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_actor(
    x_user_id: Optional[int] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Caller identity, as set by the authenticating gateway in front of us."""
    if x_user_id is None or not x_user_role:
        raise NotAuthorized("Missing caller identity")
    try:
        role = ActorRole(x_user_role.lower())
    except ValueError:
        raise NotAuthorized(f"Unknown role: {x_user_role}") from None
    return Actor(user_id=x_user_id, role=role)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_estimator(
    client: httpx.AsyncClient = Depends(get_http_client),
) -> DistanceEstimator:
    return DistanceEstimator.from_settings(client, settings)


def get_gateway(
    client: httpx.AsyncClient = Depends(get_http_client),
) -> MpesaGateway:
    return MpesaGateway(
        client,
        base_url=settings.mpesa_base_url,
        consumer_key=settings.mpesa_consumer_key,
        consumer_secret=settings.mpesa_consumer_secret,
        shortcode=settings.mpesa_shortcode,
        passkey=settings.mpesa_passkey,
        callback_url=settings.mpesa_callback_url,
        timeout=settings.gateway_timeout_seconds,
    )


def get_dispatcher(
    client: httpx.AsyncClient = Depends(get_http_client),
) -> NotificationDispatcher:
    return NotificationDispatcher(
        client,
        webhook_url=settings.notification_webhook_url,
        timeout=settings.notification_timeout_seconds,
    )


def get_outbox(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Outbox:
    """Per-request outbox; flushed after the response is sent."""
    outbox = Outbox(dispatcher)
    background_tasks.add_task(outbox.flush)
    return outbox


def get_escrow(
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_gateway),
    outbox: Outbox = Depends(get_outbox),
    redis: aioredis.Redis = Depends(get_redis),
) -> EscrowCoordinator:
    return EscrowCoordinator(
        db, gateway, outbox, redis=redis,
        lock_ttl_seconds=settings.escrow_lock_ttl_seconds,
    )


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    estimator: DistanceEstimator = Depends(get_estimator),
    outbox: Outbox = Depends(get_outbox),
    escrow: EscrowCoordinator = Depends(get_escrow),
) -> BookingService:
    return BookingService(db, estimator, outbox, escrow)


def get_rating_gate(db: AsyncSession = Depends(get_db)) -> RatingGate:
    return RatingGate(db)
