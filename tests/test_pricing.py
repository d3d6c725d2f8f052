"""Unit tests for the fare engine."""

import pytest

from cargohaul.domain.entities import RateCard
from cargohaul.domain.errors import ValidationError
from cargohaul.domain.pricing import (
    PerKmWithMinimumPricing,
    PricingEngine,
    fare,
)


class TestFare:
    def test_short_trip_pays_minimum(self):
        assert fare(12.0, 50.0, 800.0) == 800.0  # 600 < 800

    def test_long_trip_pays_per_km(self):
        assert fare(40.0, 50.0, 800.0) == 2000.0

    def test_zero_distance_pays_minimum(self):
        assert fare(0.0, 50.0, 800.0) == 800.0

    def test_breakeven_distance(self):
        assert fare(16.0, 50.0, 800.0) == 800.0

    @pytest.mark.parametrize("distance", [0.1, 3.3, 15.9, 16.1, 250.0, 1234.5])
    def test_matches_max_of_rate_and_minimum(self, distance):
        assert fare(distance, 50.0, 800.0) == max(50.0 * distance, 800.0)


class TestPricingStrategies:
    def test_per_km_with_minimum_rounds_to_cents(self):
        strategy = PerKmWithMinimumPricing()
        assert strategy.calculate(10.1234, RateCard(10.0, 0.0)) == 101.23


class TestPricingEngine:
    def setup_method(self):
        self.engine = PricingEngine()

    def test_quote_12_km(self):
        assert self.engine.quote(12.0, RateCard(50.0, 800.0)) == 800.0

    def test_quote_40_km(self):
        assert self.engine.quote(40.0, RateCard(50.0, 800.0)) == 2000.0

    def test_zero_minimum_charge_is_allowed(self):
        assert self.engine.quote(10.0, RateCard(50.0, 0.0)) == 500.0

    @pytest.mark.parametrize(
        "rate, minimum",
        [(0.0, 800.0), (-5.0, 800.0), (50.0, -1.0), (None, 800.0), (50.0, None)],
    )
    def test_invalid_rate_card_rejected(self, rate, minimum):
        with pytest.raises(ValidationError, match="not properly configured"):
            self.engine.quote(10.0, RateCard(rate, minimum))
