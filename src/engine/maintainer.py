import asyncio
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from src.config import SCORE_UPDATE_CONCURRENCY, ScoringConfig, get_scoring_config
from src.engine.models import ProductRecord, ScoreUpdateReport
from src.engine.scoring import calculate_popularity_score, utcnow
from src.engine.store import CatalogStore
from src.observability.metrics import metrics

logger = logging.getLogger(__name__)


class ScoreMaintainer:
    """
    Recomputes and persists the cached popularity score of products.

    Both entry points are idempotent and safe to run concurrently: every write
    is an independent single-row update.
    """

    def __init__(
        self,
        store: CatalogStore,
        config: Optional[ScoringConfig] = None,
        concurrency: int = SCORE_UPDATE_CONCURRENCY,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or get_scoring_config()
        self.concurrency = max(1, concurrency)
        self._clock = clock

    async def _rescore(self, product: ProductRecord) -> Decimal:
        now = self._clock()
        score = calculate_popularity_score(product, self.config, now=now)
        await self.store.save_popularity_score(product.id, score, now)
        metrics.score_updates.labels(status="updated").inc()
        return score

    async def update_one(self, product_id: str) -> Optional[Decimal]:
        """Rescore a single product; a missing product is a silent no-op."""
        product = await self.store.get_product(product_id)
        if product is None:
            logger.debug(f"Product {product_id} not found, skipping score update")
            metrics.score_updates.labels(status="missing").inc()
            return None
        return await self._rescore(product)

    async def update_all(self) -> ScoreUpdateReport:
        """
        Rescore every active product in bounded-concurrency batches. A failed
        write is logged and skipped; the next run retries it.
        """
        start_time = time.time()
        products = await self.store.list_active_products(order_by=(), limit=None)
        logger.info(f"Updating popularity scores for {len(products)} active products...")

        report = ScoreUpdateReport()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def update(product: ProductRecord) -> None:
            async with semaphore:
                try:
                    await self._rescore(product)
                except Exception as e:
                    logger.error(f"Failed to update score for product {product.id}: {e}")
                    metrics.score_updates.labels(status="failed").inc()
                    report.failed += 1
                    report.failed_ids.append(product.id)
                    return
                report.updated += 1

        await asyncio.gather(*(update(p) for p in products))

        report.duration_s = time.time() - start_time
        metrics.score_batch_duration.observe(report.duration_s)
        logger.info(
            f"Popularity scores updated: {report.updated} ok, {report.failed} failed "
            f"in {report.duration_s:.2f}s"
        )
        return report
