"""
Tests for affiliate_engine/services/tiers.py and utils/money.py - tier lookup,
rates, half-up commission rounding and dashboard progress.
"""
import pytest
from decimal import Decimal

from pydantic import ValidationError

from affiliate_engine.schemas.affiliates import TierThresholds
from affiliate_engine.services.tiers import (
    COMMISSION_RATES,
    DEFAULT_THRESHOLDS,
    TIER_ORDER,
    calculate_commission,
    commission_rate,
    next_tier,
    tier_for,
    tier_progress,
)
from affiliate_engine.utils.money import percent_of, to_money


class TestTierFor:
    @pytest.mark.parametrize("earnings,expected", [
        (0, "bronze"),
        (Decimal("499.99"), "bronze"),
        (500, "silver"),
        (Decimal("1999.99"), "silver"),
        (2000, "gold"),
        (4999, "gold"),
        (5000, "platinum"),
        (1_000_000, "platinum"),
    ])
    def test_default_thresholds(self, earnings, expected):
        """Boundaries are inclusive: reaching a threshold grants the tier."""
        assert tier_for(earnings) == expected

    def test_custom_thresholds(self):
        thresholds = TierThresholds(silver=100, gold=200, platinum=300)
        assert tier_for(150, thresholds) == "silver"
        assert tier_for(300, thresholds) == "platinum"

    def test_monotonic_in_earnings(self):
        """More earnings never yields a lower tier."""
        previous = 0
        for amount in range(0, 6000, 250):
            rank = TIER_ORDER.index(tier_for(amount))
            assert rank >= previous
            previous = rank


class TestRates:
    def test_rate_table(self):
        assert COMMISSION_RATES == {
            "bronze": Decimal("0.10"),
            "silver": Decimal("0.12"),
            "gold": Decimal("0.15"),
            "platinum": Decimal("0.20"),
        }

    def test_unknown_tier_pays_bronze(self):
        assert commission_rate("diamond") == Decimal("0.10")
        assert commission_rate(None) == Decimal("0.10")

    def test_case_insensitive(self):
        assert commission_rate("GOLD") == Decimal("0.15")


class TestCalculateCommission:
    def test_gold_booking(self):
        assert calculate_commission(200, "gold") == Decimal("30.00")

    def test_rounds_to_minor_unit(self):
        assert calculate_commission(Decimal("33.33"), "bronze") == Decimal("3.33")

    def test_half_up(self):
        """0.125 rounds up to 0.13, not banker's 0.12."""
        assert calculate_commission(Decimal("1.25"), "bronze") == Decimal("0.13")

    def test_float_input(self):
        assert calculate_commission(33.33, "bronze") == Decimal("3.33")

    def test_platinum(self):
        assert calculate_commission(Decimal("149.90"), "platinum") == Decimal("29.98")


class TestNextTier:
    def test_chain(self):
        assert next_tier("bronze") == "silver"
        assert next_tier("silver") == "gold"
        assert next_tier("gold") == "platinum"
        assert next_tier("platinum") is None


class TestTierProgress:
    def test_bronze_progress(self):
        progress = tier_progress(250)
        assert progress["tier"] == "bronze"
        assert progress["next_tier"] == "silver"
        assert progress["next_rate"] == Decimal("0.12")
        assert progress["remaining"] == Decimal("250.00")
        assert progress["percent"] == 50.0

    def test_gold_progress(self):
        progress = tier_progress(3500)
        assert progress["tier"] == "gold"
        assert progress["remaining"] == Decimal("1500.00")
        assert progress["percent"] == 50.0

    def test_platinum_has_no_next(self):
        progress = tier_progress(9000)
        assert progress["tier"] == "platinum"
        assert progress["next_tier"] is None
        assert progress["remaining"] is None
        assert progress["percent"] is None


class TestTierThresholds:
    def test_defaults(self):
        assert DEFAULT_THRESHOLDS.as_dict() == {
            "bronze": Decimal("0"),
            "silver": Decimal("500"),
            "gold": Decimal("2000"),
            "platinum": Decimal("5000"),
        }

    def test_rejects_non_increasing(self):
        with pytest.raises(ValidationError):
            TierThresholds(silver=500, gold=500, platinum=5000)

    def test_rejects_negative(self):
        with pytest.raises(ValidationError):
            TierThresholds(silver=-1, gold=10, platinum=20)

    def test_rejects_nonzero_bronze(self):
        with pytest.raises(ValidationError):
            TierThresholds(bronze=10, silver=500, gold=2000, platinum=5000)


class TestMoney:
    def test_to_money_quantizes(self):
        assert to_money("10") == Decimal("10.00")
        assert to_money(None) == Decimal("0.00")

    def test_to_money_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money("ten")

    @pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-Infinity", float("nan"), float("inf")])
    def test_to_money_rejects_non_finite(self, value):
        with pytest.raises(ValueError):
            to_money(value)

    def test_percent_of(self):
        assert percent_of(Decimal("99.99"), Decimal("0.15")) == Decimal("15.00")
