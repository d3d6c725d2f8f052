"""
Distance / Fare Estimator
=========================

Tiered fallback chain, composed left to right::

    OpenRouteService  ->  OSRM  ->  offline (haversine x road factor)

Each tier is an async callable returning ``Optional[RouteEstimate]``; the
first usable answer wins.  The offline tier cannot fail, so ``estimate``
always returns a positive distance and duration and never raises.

Geocoding follows the same shape: OpenRouteService, then deterministic
pseudo-coordinates around the configured centre.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from cargohaul.config import Settings
from cargohaul.domain.distance import (
    fallback_coordinates,
    is_valid_location,
    offline_estimate,
)
from cargohaul.domain.entities import GeocodedAddress, Location, RateCard, RouteEstimate
from cargohaul.domain.pricing import PricingEngine
from cargohaul.infrastructure.routing import OpenRouteServiceClient, OsrmClient

logger = logging.getLogger(__name__)

RouteTier = Callable[[Location, Location], Awaitable[Optional[RouteEstimate]]]
GeocodeTier = Callable[[str], Awaitable[Optional[GeocodedAddress]]]

FALLBACK_GEOCODE_SOURCE = "fallback"


class DistanceEstimator:
    def __init__(
        self,
        route_tiers: Sequence[RouteTier] = (),
        geocode_tiers: Sequence[GeocodeTier] = (),
        *,
        road_factor: float = 1.35,
        minutes_per_km: float = 1.8,
        default_distance_km: float = 50.0,
        default_duration_min: int = 60,
        center: Location = Location(-1.2921, 36.8219),
        pricing: PricingEngine | None = None,
    ):
        self.route_tiers = list(route_tiers)
        self.geocode_tiers = list(geocode_tiers)
        self.road_factor = road_factor
        self.minutes_per_km = minutes_per_km
        self.default_distance_km = default_distance_km
        self.default_duration_min = default_duration_min
        self.center = center
        self.pricing = pricing or PricingEngine()

    @classmethod
    def from_settings(
        cls, client: httpx.AsyncClient, settings: Settings
    ) -> "DistanceEstimator":
        ors = OpenRouteServiceClient(
            client,
            api_key=settings.openrouteservice_api_key,
            base_url=settings.openrouteservice_base_url,
            timeout=settings.routing_timeout_seconds,
            country=settings.geocode_country,
        )
        osrm = OsrmClient(
            client,
            base_url=settings.osrm_base_url,
            timeout=settings.routing_timeout_seconds,
        )
        return cls(
            route_tiers=[ors.route, osrm.route],
            geocode_tiers=[ors.geocode],
            road_factor=settings.road_factor,
            minutes_per_km=settings.minutes_per_km,
            default_distance_km=settings.default_distance_km,
            default_duration_min=settings.default_duration_min,
            center=Location(settings.geocode_center_lat, settings.geocode_center_lng),
        )

    def offline(
        self, origin: Optional[Location], destination: Optional[Location]
    ) -> RouteEstimate:
        return offline_estimate(
            origin,
            destination,
            road_factor=self.road_factor,
            minutes_per_km=self.minutes_per_km,
            default_distance_km=self.default_distance_km,
            default_duration_min=self.default_duration_min,
        )

    async def estimate(
        self, origin: Optional[Location], destination: Optional[Location]
    ) -> RouteEstimate:
        """Distance and duration between two points.  Never raises."""
        if not (is_valid_location(origin) and is_valid_location(destination)):
            logger.warning("Invalid coordinates provided, using default estimate")
            return self.offline(origin, destination)

        for tier in self.route_tiers:
            try:
                result = await tier(origin, destination)
            except Exception:
                logger.exception("Routing tier %r raised; falling through", tier)
                continue
            if result is not None and result.distance_km > 0 and result.duration_min > 0:
                return result

        logger.info("All routing providers unavailable, using offline estimate")
        return self.offline(origin, destination)

    async def geocode(self, address: str) -> GeocodedAddress:
        """Resolve *address* to coordinates.  Never raises."""
        for tier in self.geocode_tiers:
            try:
                result = await tier(address)
            except Exception:
                logger.exception("Geocoding tier %r raised; falling through", tier)
                continue
            if result is not None and is_valid_location(result.location):
                return result

        logger.warning("Using fallback geocoding for %r", address)
        return GeocodedAddress(
            location=fallback_coordinates(
                address, self.center.latitude, self.center.longitude
            ),
            formatted_address=address,
            source=FALLBACK_GEOCODE_SOURCE,
        )

    def quote(self, distance_km: float, rate_card: RateCard) -> float:
        return self.pricing.quote(distance_km, rate_card)
