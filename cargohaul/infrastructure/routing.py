"""
Routing and geocoding provider clients.

Each method is one tier of a fallback chain and returns ``None`` instead of
raising when the provider is unconfigured, slow, failing or returns nothing
useful.  Timeouts are per call and come from settings.

* ``OpenRouteServiceClient`` -- primary; needs an API key.
* ``OsrmClient``             -- secondary; public or self-hosted OSRM.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from cargohaul.domain.entities import GeocodedAddress, Location, RouteEstimate

logger = logging.getLogger(__name__)

ORS_SOURCE = "openrouteservice"
OSRM_SOURCE = "osrm"

# Everything a tier treats as "no answer from this provider".
_TIER_FAILURES = (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError)


class OpenRouteServiceClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        base_url: str = "https://api.openrouteservice.org",
        timeout: float = 5.0,
        country: Optional[str] = None,
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.country = country

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteEstimate]:
        if not self.configured:
            return None
        try:
            resp = await self.client.get(
                f"{self.base_url}/v2/directions/driving-car",
                params={
                    "api_key": self.api_key,
                    # ORS takes "lng,lat"
                    "start": f"{origin.longitude},{origin.latitude}",
                    "end": f"{destination.longitude},{destination.latitude}",
                },
                headers={"Authorization": self.api_key},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            summary = _first_ors_summary(data)
            if summary is None:
                logger.warning("OpenRouteService returned no route")
                return None
            return RouteEstimate(
                distance_km=float(summary["distance"]) / 1000,
                duration_min=max(1, round(float(summary["duration"]) / 60)),
                source=ORS_SOURCE,
            )
        except _TIER_FAILURES as exc:
            logger.warning("OpenRouteService routing failed: %s", exc)
            return None

    async def geocode(self, address: str) -> Optional[GeocodedAddress]:
        if not self.configured:
            return None
        text = f"{address}, {self.country}" if self.country else address
        try:
            resp = await self.client.get(
                f"{self.base_url}/geocode/search",
                params={"api_key": self.api_key, "text": text, "size": 1},
                headers={"Authorization": self.api_key},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            features = resp.json().get("features") or []
            if not features:
                logger.warning("OpenRouteService geocoding found no match for %r", address)
                return None
            feature = features[0]
            lng, lat = feature["geometry"]["coordinates"][:2]
            props = feature.get("properties") or {}
            return GeocodedAddress(
                location=Location(latitude=float(lat), longitude=float(lng)),
                formatted_address=props.get("label") or props.get("name") or address,
                source=ORS_SOURCE,
            )
        except _TIER_FAILURES as exc:
            logger.warning("OpenRouteService geocoding failed: %s", exc)
            return None


def _first_ors_summary(data: dict) -> Optional[dict]:
    # JSON responses carry "routes"; GeoJSON responses carry "features".
    routes = data.get("routes")
    if routes:
        return routes[0]["summary"]
    features = data.get("features")
    if features:
        return features[0]["properties"]["summary"]
    return None


class OsrmClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = "https://router.project-osrm.org",
        timeout: float = 5.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteEstimate]:
        coords = (
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        try:
            resp = await self.client.get(
                f"{self.base_url}/route/v1/driving/{coords}",
                params={"overview": "false", "alternatives": "false"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            if data.get("code") != "Ok" or not data.get("routes"):
                logger.warning("OSRM returned no route (code=%s)", data.get("code"))
                return None
            route = data["routes"][0]
            return RouteEstimate(
                distance_km=float(route["distance"]) / 1000,
                duration_min=max(1, round(float(route["duration"]) / 60)),
                source=OSRM_SOURCE,
            )
        except _TIER_FAILURES as exc:
            logger.warning("OSRM routing failed: %s", exc)
            return None
