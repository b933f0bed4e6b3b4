import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from src.config import (
    GUEST_USER_ID,
    INTEREST_SCORE_DIVISOR,
    PERSONALIZED_OVERFETCH,
    POPULAR_FETCH_CAP,
    SIMILAR_PRICE_LOWER,
    SIMILAR_PRICE_UPPER,
    ScoringConfig,
    get_scoring_config,
)
from src.engine.exceptions import SourceError
from src.engine.models import (
    Reason,
    Recommendation,
    RecommendationFeed,
    SourceResult,
)
from src.engine.scoring import calculate_popularity_score, utcnow
from src.engine.store import CatalogStore
from src.observability.metrics import metrics

logger = logging.getLogger(__name__)


def is_known_user(user_id: Optional[str]) -> bool:
    return bool(user_id) and user_id != GUEST_USER_ID


async def run_source(
    source: str,
    fetch: Awaitable[list[Recommendation]],
    timeout: Optional[float] = None,
) -> SourceResult:
    """
    Await a candidate source inside its own error boundary.

    Failures and timeouts are logged and returned as a SourceResult carrying
    the error, never raised.
    """
    start_time = time.time()
    try:
        if timeout is None:
            items = await fetch
        else:
            items = await asyncio.wait_for(fetch, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"Source '{source}' timed out after {timeout}s")
        metrics.source_failures.labels(source=source, kind="timeout").inc()
        return SourceResult(source=source, error=SourceError(source, e))
    except Exception as e:
        logger.error(f"Source '{source}' failed. Reason: {e}")
        metrics.source_failures.labels(source=source, kind="error").inc()
        return SourceResult(source=source, error=SourceError(source, e))
    finally:
        metrics.source_duration.labels(source=source).observe(time.time() - start_time)

    metrics.source_candidates.labels(source=source).observe(len(items))
    return SourceResult(source=source, items=items)


class RecommendationEngine:
    """
    Candidate generation over the catalog store.

    Each source has a fetch_* variant returning a SourceResult and a get_*
    variant that collapses failures to an empty list.
    """

    def __init__(
        self,
        store: CatalogStore,
        config: Optional[ScoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or get_scoring_config()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ----- popular ----------------------------------------------------------

    async def _popular(self, limit: int) -> list[Recommendation]:
        products = await self.store.list_active_products(
            order_by=("popularity_score",), limit=limit
        )
        return [
            Recommendation(p.id, p.popularity_score, Reason.POPULAR) for p in products
        ]

    async def fetch_popular(
        self, limit: int = 20, timeout: Optional[float] = None
    ) -> SourceResult:
        return await run_source(Reason.POPULAR.value, self._popular(limit), timeout)

    async def get_popular(self, limit: int = 20) -> list[Recommendation]:
        """Top active products by their stored (cached) popularity score."""
        return (await self.fetch_popular(limit)).items_or_empty()

    async def _live_popular(
        self, limit: int, exclude_id: Optional[str]
    ) -> list[Recommendation]:
        products = await self.store.list_active_products(
            exclude_ids=[exclude_id] if exclude_id else None,
            order_by=("popularity_score", "view_count"),
            limit=min(limit, POPULAR_FETCH_CAP),
        )
        now = self.now()
        rescored = [
            Recommendation(
                p.id,
                calculate_popularity_score(p, self.config, now=now),
                Reason.POPULAR,
            )
            for p in products
        ]
        rescored.sort(key=lambda r: r.score, reverse=True)
        return rescored[:limit]

    async def fetch_live_popular(
        self,
        limit: int,
        exclude_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SourceResult:
        """
        Popular candidates ranked by the stored score but rescored from their
        live counters, so a stale cache does not leak into mixed results.
        """
        return await run_source(
            Reason.POPULAR.value, self._live_popular(limit, exclude_id), timeout
        )

    # ----- trending ---------------------------------------------------------

    async def _trending(self, limit: int) -> list[Recommendation]:
        since = self.now() - self.config.trending_window
        counts = await self.store.count_activity_since(since, limit)
        if not counts:
            return []

        active = await self.store.get_active_products_by_ids(
            [product_id for product_id, _ in counts]
        )
        active_ids = {p.id for p in active}

        # trending is activity-count based, not the cached popularity score
        return [
            Recommendation(
                product_id, Decimal(count) * self.config.recency_boost, Reason.TRENDING
            )
            for product_id, count in counts
            if product_id in active_ids
        ]

    async def fetch_trending(
        self, limit: int = 20, timeout: Optional[float] = None
    ) -> SourceResult:
        return await run_source(Reason.TRENDING.value, self._trending(limit), timeout)

    async def get_trending(self, limit: int = 20) -> list[Recommendation]:
        """Products with the most activity events inside the trending window."""
        return (await self.fetch_trending(limit)).items_or_empty()

    # ----- similar ----------------------------------------------------------

    async def _similar(self, product_id: str, limit: int) -> list[Recommendation]:
        anchor = await self.store.get_product(product_id)
        if anchor is None or not anchor.is_active or anchor.price <= 0:
            return []

        min_price = anchor.price * SIMILAR_PRICE_LOWER
        max_price = anchor.price * SIMILAR_PRICE_UPPER

        products = await self.store.list_active_products(
            category_ids=[anchor.category_id],
            exclude_ids=[anchor.id],
            min_price=min_price,
            max_price=max_price,
            order_by=("popularity_score",),
            limit=limit,
        )
        return [
            Recommendation(p.id, p.popularity_score, Reason.SIMILAR) for p in products
        ]

    async def fetch_similar(
        self, product_id: str, limit: int = 12, timeout: Optional[float] = None
    ) -> SourceResult:
        return await run_source(
            Reason.SIMILAR.value, self._similar(product_id, limit), timeout
        )

    async def get_similar(self, product_id: str, limit: int = 12) -> list[Recommendation]:
        """Same-category products priced within 30% of the anchor product."""
        return (await self.fetch_similar(product_id, limit)).items_or_empty()

    # ----- personalized -----------------------------------------------------

    async def _personalized(self, user_id: str, limit: int) -> list[Recommendation]:
        interests = await self.store.list_user_interests(user_id)
        if not interests:
            # cold start: no recorded interests yet
            metrics.recommendation_fallback.labels(reason="cold_start").inc()
            logger.info(f"No interests for user {user_id}, using popular products")
            popular = await self._popular(limit)
            return [r.retag(Reason.PERSONALIZED) for r in popular]

        purchased_ids = await self.store.list_purchased_product_ids(user_id)
        if purchased_ids:
            metrics.items_excluded_history.inc(len(purchased_ids))

        # interests arrive ordered by score, keep the first row per category
        interest_by_category: dict[str, Decimal] = {}
        for interest in interests:
            interest_by_category.setdefault(interest.category_id, interest.interest_score)

        candidates = await self.store.list_active_products(
            category_ids=list(interest_by_category),
            exclude_ids=purchased_ids or None,
            order_by=("popularity_score",),
            limit=limit * PERSONALIZED_OVERFETCH,
        )

        now = self.now()
        scored = []
        for product in candidates:
            base_score = calculate_popularity_score(product, self.config, now=now)
            multiplier = max(
                Decimal(1),
                interest_by_category[product.category_id] / INTEREST_SCORE_DIVISOR,
            )
            scored.append(
                Recommendation(product.id, base_score * multiplier, Reason.PERSONALIZED)
            )

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:limit]

    async def fetch_personalized(
        self, user_id: str, limit: int = 20, timeout: Optional[float] = None
    ) -> SourceResult:
        return await run_source(
            Reason.PERSONALIZED.value, self._personalized(user_id, limit), timeout
        )

    async def get_personalized(self, user_id: str, limit: int = 20) -> list[Recommendation]:
        """
        Rank unpurchased products from the user's interest categories by their
        live popularity, amplified by the user's interest in each category.
        """
        return (await self.fetch_personalized(user_id, limit)).items_or_empty()

    # ----- combined feed ----------------------------------------------------

    async def get_all(
        self,
        user_id: Optional[str] = None,
        personalized_limit: int = 12,
        popular_limit: int = 12,
        trending_limit: int = 12,
    ) -> RecommendationFeed:
        popular, trending = await asyncio.gather(
            self.get_popular(popular_limit), self.get_trending(trending_limit)
        )

        if is_known_user(user_id):
            personalized = await self.get_personalized(user_id, personalized_limit)
        else:
            metrics.recommendation_fallback.labels(reason="guest").inc()
            personalized = [
                r.retag(Reason.PERSONALIZED) for r in popular[:personalized_limit]
            ]

        return RecommendationFeed(
            personalized=personalized, popular=popular, trending=trending
        )
