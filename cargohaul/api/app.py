"""
FastAPI application factory.

* Registers routes for bookings, payments, ratings and admin.
* Opens / closes the shared outbound ``httpx.AsyncClient`` (routing,
  geocoding, payment gateway, notifications) via lifespan events.
* Maps domain errors to ``{"error": {"kind", "message"}}`` responses.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

import httpx
from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from cargohaul.api.errors import register_error_handlers
from cargohaul.api.middleware import limiter
from cargohaul.api.routes import admin, bookings, payments, ratings
from cargohaul.config import settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """One pooled HTTP client for every outbound call; closed on shutdown."""
    app.state.http_client = httpx.AsyncClient()
    yield
    await app.state.http_client.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="CargoHaul Booking & Escrow API",
        description=(
            "Prices cargo transport jobs with a tiered distance estimator, "
            "drives bookings through a role-gated lifecycle, holds mobile-money "
            "payments in escrow until an operator releases or refunds them, "
            "and gates post-delivery ratings."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_error_handlers(app)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(ratings.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
