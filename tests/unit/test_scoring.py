"""
Unit tests for the popularity scorer.

Scores are exact decimals: a weighted sum of the activity counters, boosted
while the product is inside the trending window.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from src.config import ScoringConfig
from src.engine.scoring import (
    base_popularity,
    calculate_popularity_score,
    ensure_utc,
    is_recent,
)


class TestBasePopularity:
    def test_weighted_sum_of_counters(self, make_product, scoring_config):
        product = make_product(
            "p1", view_count=10, cart_count=2, favorite_count=1, order_count=3
        )

        # 10*1 + 2*3 + 1*5 + 3*10
        assert base_popularity(product, scoring_config) == Decimal(51)

    def test_no_activity_scores_zero(self, make_product, scoring_config):
        assert base_popularity(make_product("p1"), scoring_config) == Decimal(0)

    def test_custom_weights(self, make_product):
        config = ScoringConfig(view_weight=Decimal("0.5"), order_weight=Decimal(0))
        product = make_product("p1", view_count=3, order_count=100)

        assert base_popularity(product, config) == Decimal("1.5")


class TestRecencyBoost:
    def test_old_product_is_not_boosted(self, make_product, scoring_config, now):
        product = make_product("p1", view_count=50, cart_count=5, created_days_ago=40)

        assert calculate_popularity_score(product, scoring_config, now=now) == Decimal(65)

    def test_new_product_is_boosted(self, make_product, scoring_config, now):
        product = make_product("p1", view_count=10, created_days_ago=2)

        assert calculate_popularity_score(product, scoring_config, now=now) == Decimal(15)

    def test_boundary_is_inclusive(self, make_product, scoring_config, now):
        """A product exactly trending_days old still gets the boost."""
        product = make_product("p1", view_count=10, created_days_ago=7)

        assert calculate_popularity_score(product, scoring_config, now=now) == Decimal(15)

    def test_one_second_past_the_window_is_not_boosted(
        self, make_product, scoring_config, now
    ):
        product = make_product("p1", view_count=10, created_days_ago=7)
        later = now + timedelta(seconds=1)

        assert calculate_popularity_score(product, scoring_config, now=later) == Decimal(10)

    def test_naive_timestamps_are_treated_as_utc(self, scoring_config, now):
        created_at = (now - timedelta(days=3)).replace(tzinfo=None)

        assert is_recent(created_at, scoring_config, now)

    def test_ensure_utc_keeps_the_instant(self, now):
        naive = datetime(2025, 6, 1, 12, 0)

        assert ensure_utc(naive) == now


class TestMonotonicity:
    def test_more_activity_never_lowers_the_score(
        self, make_product, scoring_config, now
    ):
        base = make_product("p1", view_count=5, cart_count=1, created_days_ago=30)
        base_score = calculate_popularity_score(base, scoring_config, now=now)

        for field in ("view_count", "cart_count", "favorite_count", "order_count"):
            bumped = make_product(
                "p1",
                created_days_ago=30,
                **{
                    "view_count": 5,
                    "cart_count": 1,
                    "favorite_count": 0,
                    "order_count": 0,
                    field: getattr(base, field) + 1,
                },
            )
            assert calculate_popularity_score(bumped, scoring_config, now=now) > base_score

    def test_scores_are_exact_decimals(self, make_product, now):
        config = ScoringConfig(view_weight=Decimal("0.1"))
        product = make_product("p1", view_count=3, created_days_ago=30)

        assert calculate_popularity_score(product, config, now=now) == Decimal("0.3")
