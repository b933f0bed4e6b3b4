"""
Unit tests for Pydantic schemas used in the API layer.

Responses are camelCase on the wire; domain records are converted
through the from_* constructors.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

from src.engine.models import Reason, Recommendation, RecommendedProduct
from src.serve.schemas import (
    MixedRecommendationResponse,
    ProductSummary,
    RecommendationItem,
    RecommendedProductItem,
    ScoreRefreshResponse,
    SimilarProductsResponse,
)


class TestRecommendationItem:
    def test_from_domain(self):
        item = RecommendationItem.from_domain(
            Recommendation("p1", Decimal("12.5"), Reason.TRENDING)
        )

        assert item.product_id == "p1"
        assert item.score == 12.5
        assert item.reason == "trending"

    def test_serializes_camel_case(self):
        item = RecommendationItem(product_id="p1", score=1.0, reason="popular")

        assert item.model_dump(by_alias=True) == {
            "productId": "p1",
            "score": 1.0,
            "reason": "popular",
        }

    def test_accepts_both_field_names_and_aliases(self):
        by_name = RecommendationItem(product_id="p1", score=1.0, reason="popular")
        by_alias = RecommendationItem(productId="p1", score=1.0, reason="popular")

        assert by_name == by_alias


class TestProductSummary:
    def test_from_record(self, make_product):
        product = make_product(
            "p1",
            price="1299.99",
            images=("a.jpg", "b.jpg"),
            brand_id="brand-1",
            inventory=4,
            popularity_score=Decimal("33.5"),
        )

        summary = ProductSummary.from_record(product)
        data = summary.model_dump(by_alias=True)

        assert data["id"] == "p1"
        assert data["price"] == 1299.99
        assert data["images"] == ["a.jpg", "b.jpg"]
        assert data["categoryId"] == "cat-x"
        assert data["brandId"] == "brand-1"
        assert data["popularityScore"] == 33.5
        assert data["currency"] == "NPR"


class TestMixedRecommendationResponse:
    def test_round_trips_through_the_cache_format(self, make_product):
        resolved = RecommendedProduct(
            "p1", Decimal(3), Reason.SIMILAR, make_product("p1")
        )
        response = MixedRecommendationResponse(
            data=[RecommendedProductItem.from_resolved(resolved)], count=1
        )

        cached = response.model_dump_json(by_alias=True)
        restored = MixedRecommendationResponse.model_validate_json(cached)

        assert restored == response
        assert json.loads(cached)["data"][0]["product"]["slug"] == "p1"

    def test_success_defaults_to_true(self):
        response = MixedRecommendationResponse(data=[], count=0)

        assert response.success is True


class TestSimilarProductsResponse:
    def test_serialization(self):
        generated_at = datetime(2025, 6, 1, tzinfo=timezone.utc)
        response = SimilarProductsResponse(
            product_id="p1", similar=[], count=0, generated_at=generated_at
        )

        data = response.model_dump(by_alias=True)

        assert data["productId"] == "p1"
        assert data["generatedAt"] == generated_at


class TestScoreRefreshResponse:
    def test_fields(self):
        response = ScoreRefreshResponse(success=True, updated=10, failed=1, duration=0.5)

        assert response.model_dump() == {
            "success": True,
            "updated": 10,
            "failed": 1,
            "duration": 0.5,
        }
