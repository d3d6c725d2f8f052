"""
Fare calculation  (Strategy Pattern)
====================================

Formula
-------
Fare = max(Rate_Per_KM x Distance, Minimum_Charge)

The minimum-charge floor is always applied: a trip shorter than the
minimum-charge distance still costs the minimum.

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from .entities import RateCard


def fare(distance_km: float, rate_per_km: float, minimum_charge: float) -> float:
    return max(rate_per_km * distance_km, minimum_charge)


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, rate_card: RateCard) -> float: ...


class PerKmWithMinimumPricing(PricingStrategy):
    def calculate(self, distance_km: float, rate_card: RateCard) -> float:
        return round(
            fare(distance_km, rate_card.rate_per_km, rate_card.minimum_charge), 2
        )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the booking service."""

    def __init__(self, strategy: PricingStrategy | None = None):
        self.strategy = strategy or PerKmWithMinimumPricing()

    def quote(self, distance_km: float, rate_card: RateCard) -> float:
        rate_card.validate()
        return self.strategy.calculate(distance_km, rate_card)
