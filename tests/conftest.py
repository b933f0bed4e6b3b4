"""
Shared pytest fixtures for the test suite.

Fixtures provide reusable test doubles and configuration for both
unit and integration tests.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.config import ScoringConfig
from src.engine.models import ProductRecord, UserInterestRecord
from src.engine.scoring import ensure_utc


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# In-memory catalog store
# -----------------------------------------------------------------------------


class FakeCatalogStore:
    """
    In-memory CatalogStore with the same filtering and ordering rules as the
    SQL store, plus failure and latency injection per method.
    """

    def __init__(self):
        self.products: dict[str, ProductRecord] = {}
        self.activities: list[tuple[str, datetime]] = []
        self.interests: dict[str, list[UserInterestRecord]] = {}
        self.purchases: dict[str, set[str]] = {}
        self.saved: dict[str, tuple[Decimal, datetime]] = {}
        self.fail: dict[str, Exception] = {}
        self.fail_save_ids: set[str] = set()
        self.delay: dict[str, float] = {}
        self.calls: list[str] = []
        self.requests: list[tuple[str, dict]] = []

    def add(self, *products: ProductRecord) -> None:
        for product in products:
            self.products[product.id] = product

    def record_activity(self, product_id: str, created_at: datetime, times: int = 1):
        self.activities.extend([(product_id, created_at)] * times)

    def requested(self, method: str) -> list[dict]:
        """Arguments of every call to `method`, in call order."""
        return [arguments for name, arguments in self.requests if name == method]

    async def _enter(self, method: str, **arguments) -> None:
        self.calls.append(method)
        self.requests.append((method, arguments))
        if method in self.delay:
            await asyncio.sleep(self.delay[method])
        if method in self.fail:
            raise self.fail[method]

    async def get_product(self, product_id):
        await self._enter("get_product")
        return self.products.get(product_id)

    async def list_active_products(
        self,
        *,
        category_ids=None,
        exclude_ids=None,
        min_price=None,
        max_price=None,
        order_by=("popularity_score",),
        limit=None,
    ):
        await self._enter(
            "list_active_products",
            category_ids=category_ids,
            exclude_ids=exclude_ids,
            order_by=order_by,
            limit=limit,
        )
        categories = set(category_ids) if category_ids is not None else None
        excluded = set(exclude_ids or ())

        products = [
            p
            for p in self.products.values()
            if p.is_active
            and (categories is None or p.category_id in categories)
            and p.id not in excluded
            and (min_price is None or p.price >= min_price)
            and (max_price is None or p.price <= max_price)
        ]
        if order_by:
            products.sort(key=lambda p: p.id)
            for column in reversed(order_by):
                products.sort(key=lambda p: getattr(p, column), reverse=True)
        return products[:limit] if limit is not None else products

    async def get_active_products_by_ids(self, product_ids):
        await self._enter("get_active_products_by_ids")
        return [
            self.products[pid]
            for pid in product_ids
            if pid in self.products and self.products[pid].is_active
        ]

    async def count_activity_since(self, since, limit):
        await self._enter("count_activity_since", since=since, limit=limit)
        counts: dict[str, int] = {}
        for product_id, created_at in self.activities:
            if product_id and ensure_utc(created_at) >= ensure_utc(since):
                counts[product_id] = counts.get(product_id, 0) + 1
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    async def list_user_interests(self, user_id):
        await self._enter("list_user_interests")
        interests = self.interests.get(user_id, [])
        return sorted(interests, key=lambda i: i.interest_score, reverse=True)

    async def list_purchased_product_ids(self, user_id):
        await self._enter("list_purchased_product_ids")
        return set(self.purchases.get(user_id, set()))

    async def save_popularity_score(self, product_id, score, updated_at):
        await self._enter("save_popularity_score")
        if product_id in self.fail_save_ids:
            raise ConnectionError(f"write failed for {product_id}")
        self.saved[product_id] = (score, updated_at)
        if product_id in self.products:
            self.products[product_id] = replace(
                self.products[product_id],
                popularity_score=score,
                last_score_update=updated_at,
            )

    async def ping(self):
        await self._enter("ping")


@pytest.fixture
def store():
    return FakeCatalogStore()


# -----------------------------------------------------------------------------
# Domain Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def scoring_config():
    """Default weights: view 1, cart 3, favorite 5, order 10, boost 1.5, 7 days."""
    return ScoringConfig()


@pytest.fixture
def make_product():
    """
    Factory for product records. Age is given in days relative to `now`
    (the fixed test clock unless overridden).
    """

    def _make(
        product_id,
        category_id="cat-x",
        price="100",
        created_days_ago=40,
        now=NOW,
        **fields,
    ):
        return ProductRecord(
            id=product_id,
            category_id=category_id,
            price=Decimal(price),
            created_at=now - timedelta(days=created_days_ago),
            name=fields.pop("name", f"Product {product_id}"),
            slug=fields.pop("slug", product_id.lower()),
            **fields,
        )

    return _make


@pytest.fixture
def interest():
    def _make(user_id, category_id, score):
        return UserInterestRecord(
            user_id=user_id, category_id=category_id, interest_score=Decimal(score)
        )

    return _make


# -----------------------------------------------------------------------------
# Mock Redis Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """
    Mock Redis client for unit tests.
    Simulates basic Redis operations without network calls.
    """
    redis_mock = MagicMock()
    redis_mock.get = MagicMock(return_value=None)
    redis_mock.set = MagicMock(return_value=True)
    redis_mock.delete = MagicMock(return_value=1)
    redis_mock.close = MagicMock()
    return redis_mock


@pytest.fixture
def mock_async_redis():
    """
    Async mock Redis client for integration tests with FastAPI.
    """
    redis_mock = AsyncMock()
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.aclose = AsyncMock()
    return redis_mock


# -----------------------------------------------------------------------------
# Sample Data Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sample_event():
    """Sample activity event as published by the storefront."""
    return {
        "product_id": "prod-1",
        "activity_type": "VIEW",
        "user_id": "user-1",
        "timestamp": 1748779200.0,
    }
