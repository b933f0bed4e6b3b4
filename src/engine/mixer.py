import asyncio
import logging
from typing import Optional, Sequence

from src.config import DEFAULT_LIMIT, MIXED_OVERFETCH, SOURCE_TIMEOUT_SECONDS
from src.engine.models import (
    MixedPage,
    Reason,
    Recommendation,
    RecommendedProduct,
    SourceResult,
)
from src.engine.recommender import RecommendationEngine, is_known_user
from src.observability.metrics import metrics

logger = logging.getLogger(__name__)

# visiting order inside every interleave round; ties go to the earlier source
SOURCE_PRIORITY = (
    Reason.PERSONALIZED,
    Reason.SIMILAR,
    Reason.TRENDING,
    Reason.POPULAR,
)

# degraded-source label for a failed product lookup after merging
RESOLVE_SOURCE = "resolve"


def interleave_and_dedup(
    lists: Sequence[Sequence[Recommendation]],
    exclude_id: Optional[str],
    limit: int,
    offset: int = 0,
) -> list[Recommendation]:
    """
    Round-robin merge of pre-ranked candidate lists.

    Round i visits every list in the given order and takes its i-th item
    unless that product was already emitted (or is the excluded product).
    Merging stops once limit + offset items are buffered, then the
    [offset, offset + limit) page of the buffer is returned.

    Scores are never compared across lists: they live on different scales.
    """
    seen = {exclude_id} if exclude_id else set()
    target = limit + offset
    output: list[Recommendation] = []
    max_length = max((len(candidates) for candidates in lists), default=0)

    for i in range(max_length):
        if len(output) >= target:
            break
        for candidates in lists:
            if i >= len(candidates):
                continue
            item = candidates[i]
            if item.product_id in seen:
                continue
            seen.add(item.product_id)
            output.append(item)
            if len(output) >= target:
                break

    return output[offset : offset + limit]


class MixedRecommendationAssembler:
    """
    Builds the mixed recommendation list shown next to a product: personalized,
    similar, trending and popular candidates interleaved, deduplicated,
    paginated and resolved to full product records.
    """

    def __init__(
        self,
        engine: RecommendationEngine,
        source_timeout: Optional[float] = SOURCE_TIMEOUT_SECONDS,
    ):
        self.engine = engine
        self.source_timeout = source_timeout

    async def collect_sources(
        self, anchor_product_id: str, user_id: Optional[str], limit: int
    ) -> list[SourceResult]:
        """Fetch all four candidate lists concurrently, in priority order."""
        fetch_limit = limit * MIXED_OVERFETCH
        timeout = self.source_timeout

        async def personalized() -> SourceResult:
            if not is_known_user(user_id):
                return SourceResult(source=Reason.PERSONALIZED.value)
            return await self.engine.fetch_personalized(
                user_id, fetch_limit, timeout=timeout
            )

        return list(
            await asyncio.gather(
                personalized(),
                self.engine.fetch_similar(anchor_product_id, fetch_limit, timeout=timeout),
                self.engine.fetch_trending(fetch_limit, timeout=timeout),
                self.engine.fetch_live_popular(
                    fetch_limit, exclude_id=anchor_product_id, timeout=timeout
                ),
            )
        )

    async def assemble_page(
        self,
        anchor_product_id: str,
        user_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> MixedPage:
        """
        Same as assemble, but also reports which sources failed. A failed
        product lookup is reported as the "resolve" source.
        """
        results = await self.collect_sources(anchor_product_id, user_id, limit)

        degraded = [r.source for r in results if not r.ok]
        page = interleave_and_dedup(
            [r.items_or_empty() for r in results],
            exclude_id=anchor_product_id,
            limit=limit,
            offset=offset,
        )

        items: list[RecommendedProduct] = []
        if page:
            try:
                items = await self._resolve(page)
            except Exception as e:
                logger.error(f"Failed to resolve recommended products: {e}")
                degraded.append(RESOLVE_SOURCE)

        if degraded:
            metrics.recommendation_fallback.labels(reason="degraded").inc()
            logger.warning(
                f"Mixed recommendations for {anchor_product_id} degraded, "
                f"failed sources: {degraded}"
            )

        return MixedPage(items=items, degraded_sources=tuple(degraded))

    async def assemble(
        self,
        anchor_product_id: str,
        user_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[RecommendedProduct]:
        page = await self.assemble_page(anchor_product_id, user_id, limit, offset)
        return page.items

    async def resolve(self, page: list[Recommendation]) -> list[RecommendedProduct]:
        """
        Attach full product records in one batch read. Recommendations whose
        product no longer resolves (e.g. deactivated meanwhile) are dropped.
        """
        try:
            return await self._resolve(page)
        except Exception as e:
            logger.error(f"Failed to resolve recommended products: {e}")
            return []

    async def _resolve(self, page: list[Recommendation]) -> list[RecommendedProduct]:
        products = await self.engine.store.get_active_products_by_ids(
            [r.product_id for r in page]
        )

        by_id = {p.id: p for p in products}
        resolved = [
            RecommendedProduct(r.product_id, r.score, r.reason, by_id[r.product_id])
            for r in page
            if r.product_id in by_id
        ]

        dropped = len(page) - len(resolved)
        if dropped:
            metrics.unresolved_products.inc(dropped)
        return resolved
