"""
Delivery Planning
=================

Orders a carrier's open jobs into a suggested pickup sequence.

1. **Seed** -- start with the job with the earliest scheduled pickup
   (jobs without a pickup time sort first).
2. **Nearest neighbour** -- from the current job's drop-off, pick the
   remaining job whose pickup is closest.
3. **ETA** -- each following pickup is estimated at the previous one plus
   ``minutes_per_km`` per km of repositioning, unless the job carries its
   own scheduled pickup time.

Distances are offline (Haversine) so planning never waits on a provider.

Complexity
----------
O(N^2) for N open jobs: each step scans the remaining jobs once.
The greedy heuristic does not minimise total deadhead distance.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .distance import haversine_km, is_valid_location
from .entities import Location

UNREACHABLE_KM = 999_999.0


@dataclass(frozen=True)
class PlanStop:
    booking_id: int
    pickup: Optional[Location]
    dropoff: Optional[Location]
    pickup_time: Optional[datetime] = None


@dataclass(frozen=True)
class PlannedStop:
    booking_id: int
    order: int
    estimated_pickup_time: Optional[datetime]


def _gap_km(a: Optional[Location], b: Optional[Location]) -> float:
    if not (is_valid_location(a) and is_valid_location(b)):
        return UNREACHABLE_KM
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def plan_deliveries(
    stops: list[PlanStop],
    minutes_per_km: float = 2.0,
    now: Optional[datetime] = None,
) -> list[PlannedStop]:
    """Return *stops* in suggested order.  O(N^2)."""
    if not stops:
        return []

    remaining = list(stops)
    current = min(
        remaining,
        key=lambda s: s.pickup_time.timestamp() if s.pickup_time else float("-inf"),
    )
    remaining.remove(current)
    eta = current.pickup_time or now
    planned = [PlannedStop(current.booking_id, 1, eta)]

    order = 2
    while remaining:
        here = current.dropoff or current.pickup
        nearest = min(remaining, key=lambda s: _gap_km(here, s.pickup))
        gap = _gap_km(here, nearest.pickup)

        if nearest.pickup_time is not None:
            eta = nearest.pickup_time
        elif eta is not None and gap < UNREACHABLE_KM:
            eta = eta + timedelta(minutes=math.ceil(gap * minutes_per_km))

        planned.append(PlannedStop(nearest.booking_id, order, eta))
        remaining.remove(nearest)
        current = nearest
        order += 1

    return planned
