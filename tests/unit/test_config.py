"""
Unit tests for the scoring configuration loaded from the environment.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from src.config import ScoringConfig, parse_decimal


class TestParseDecimal:
    def test_missing_value_uses_default(self):
        assert parse_decimal(None, Decimal(3)) == Decimal(3)

    def test_parses_exact_decimal(self):
        assert parse_decimal("2.25", Decimal(1)) == Decimal("2.25")

    def test_strips_whitespace(self):
        assert parse_decimal(" 4 ", Decimal(1)) == Decimal(4)

    @pytest.mark.parametrize("raw", ["abc", "", "1,5", "NaN", "Infinity", "-1"])
    def test_invalid_values_fall_back_to_default(self, raw):
        assert parse_decimal(raw, Decimal(7)) == Decimal(7)

    def test_zero_is_accepted(self):
        """A zero weight is a legitimate way to switch a signal off."""
        assert parse_decimal("0", Decimal(5)) == Decimal(0)


class TestScoringConfig:
    def test_defaults(self):
        config = ScoringConfig.from_env({})

        assert config.view_weight == Decimal(1)
        assert config.cart_add_weight == Decimal(3)
        assert config.favorite_weight == Decimal(5)
        assert config.order_weight == Decimal(10)
        assert config.recency_boost == Decimal("1.5")
        assert config.trending_days == Decimal(7)

    def test_env_overrides(self):
        config = ScoringConfig.from_env(
            {
                "RECO_WEIGHT_VIEW": "2",
                "RECO_WEIGHT_ORDER": "20",
                "RECO_RECENCY_BOOST": "2.0",
                "RECO_TRENDING_DAYS": "14",
            }
        )

        assert config.view_weight == Decimal(2)
        assert config.order_weight == Decimal(20)
        assert config.recency_boost == Decimal("2.0")
        assert config.trending_days == Decimal(14)
        # untouched weights keep their defaults
        assert config.cart_add_weight == Decimal(3)

    def test_invalid_override_keeps_default(self):
        config = ScoringConfig.from_env({"RECO_WEIGHT_CART": "lots"})

        assert config.cart_add_weight == Decimal(3)

    def test_trending_window(self):
        assert ScoringConfig().trending_window == timedelta(days=7)
        assert ScoringConfig(trending_days=Decimal("0.5")).trending_window == timedelta(
            hours=12
        )

    def test_config_is_immutable(self):
        config = ScoringConfig()

        with pytest.raises(Exception):
            config.view_weight = Decimal(9)
