from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union
from fastapi import FastAPI, Depends, Header, Response, Query, HTTPException, status
from pydantic import ValidationError
import redis.asyncio as redis
import time

from src.logging import setup_logging
from src.observability import setup_metrics, setup_tracing, metrics

from src.serve.dependencies import (
    get_assembler,
    get_engine,
    get_maintainer,
    get_redis_client,
    get_store,
)

from src.config import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_MIXED_CACHE_PREFIX,
    MIXED_CACHE_TTL_SECONDS,
    DEFAULT_LIMIT,
    MAX_LIMIT,
    GUEST_USER_ID,
    CACHE_CONTROL_OK,
    CACHE_CONTROL_DEGRADED,
    CRON_SECRET,
)
from src.engine.maintainer import ScoreMaintainer
from src.engine.mixer import MixedRecommendationAssembler
from src.engine.recommender import RecommendationEngine, is_known_user
from src.engine.store import CatalogStore
from src.store.database import create_db_engine, create_session_factory
from src.store.sql import SqlCatalogStore

from src.serve.schemas import (
    MixedRecommendationResponse,
    RecommendationFeedResponse,
    RecommendationItem,
    RecommendationListResponse,
    RecommendedProductItem,
    ScoreRefreshResponse,
    SimilarProductsResponse,
)

logger = setup_logging("api.log")


def parse_int(value: Union[str, int, None]) -> Optional[int]:
    """Query integers are parsed leniently: anything unparsable counts as missing."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clamp_limit(limit: Union[str, int, None], default: int = DEFAULT_LIMIT) -> int:
    """non-positive, unparsable or missing -> default, above MAX_LIMIT -> MAX_LIMIT"""
    limit = parse_int(limit)
    if limit is None or limit <= 0:
        return default
    return min(limit, MAX_LIMIT)


def clamp_offset(offset: Union[str, int, None]) -> int:
    offset = parse_int(offset)
    if offset is None or offset < 0:
        return 0
    return offset


def decode_cached_page(
    cache_key: str, cached: str
) -> Optional[MixedRecommendationResponse]:
    """A cache entry that no longer matches the response shape is a miss."""
    try:
        return MixedRecommendationResponse.model_validate_json(cached)
    except ValidationError as e:
        logger.warning(f"Discarding unreadable cache entry {cache_key}: {e}")
        metrics.cache_lookups.labels(result="error").inc()
        return None


def mixed_cache_key(anchor: str, user: Optional[str], limit: int, offset: int) -> str:
    user_part = user if is_known_user(user) else GUEST_USER_ID
    return f"{REDIS_MIXED_CACHE_PREFIX}{anchor}:{user_part}:{limit}:{offset}"


def user_type_of(user_id: Optional[str]) -> str:
    return "known" if is_known_user(user_id) else "guest"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing connections...")
    app.state.db_engine = create_db_engine()
    app.state.store = SqlCatalogStore(create_session_factory(app.state.db_engine))
    app.state.redis_client = redis.Redis(
        host=REDIS_HOST, port=REDIS_PORT, decode_responses=True
    )

    yield

    logger.info("Closing connections...")
    await app.state.redis_client.aclose()
    await app.state.db_engine.dispose()


app = FastAPI(title="RecommendationEngineAPI", lifespan=lifespan)

setup_metrics(app)
setup_tracing(app)


@app.get("/health/live")
async def health_check_live():
    return {"status": "ok"}


@app.get("/health/ready")
async def health_check(
    response: Response,
    redis_conn: redis.Redis = Depends(get_redis_client),
    store: CatalogStore = Depends(get_store),
):
    health_status = {
        "status": "ok",
        "components": {
            "store": {"status": "unknown", "latency_ms": 0},
            "redis": {"status": "unknown", "latency_ms": 0},
        },
    }
    has_error = False

    # relational store
    start_time = time.time()
    try:
        await store.ping()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["store"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
    except Exception as e:
        has_error = True
        health_status["components"]["store"] = {"status": "down", "error": str(e)}

    # redis
    start_time = time.time()
    try:
        await redis_conn.ping()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["redis"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
    except Exception as e:
        has_error = True
        health_status["components"]["redis"] = {"status": "down", "error": str(e)}

    if has_error:
        health_status["status"] = "error"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        response.status_code = status.HTTP_200_OK

    return health_status


@app.get("/recommendations", response_model=MixedRecommendationResponse)
async def mixed_recommendations(
    response: Response,
    anchor: str = Query(..., description="Product the recommendations are shown next to"),
    user: Optional[str] = Query(None, description="User id, omitted or 'guest' for guests"),
    limit: Optional[str] = Query(None, description=f"Page size, clamped to 1..{MAX_LIMIT}"),
    offset: Optional[str] = Query(None, description="Page offset, clamped to >= 0"),
    redis_conn: redis.Redis = Depends(get_redis_client),
    assembler: MixedRecommendationAssembler = Depends(get_assembler),
):
    """
    Mixed personalized / similar / trending / popular recommendations for a
    product page. Never fails: an unexpected error yields an empty page with a
    shorter cache lifetime. Only complete, non-empty pages are cached.
    """
    limit = clamp_limit(limit)
    offset = clamp_offset(offset)
    user_type = user_type_of(user)
    metrics.recommendation_requests.labels(endpoint="mixed", user_type=user_type).inc()

    cache_key = mixed_cache_key(anchor, user, limit, offset)

    # redis is a best-effort response cache only
    try:
        cached = await redis_conn.get(cache_key)
    except Exception as e:
        logger.warning(f"Mixed cache lookup failed for {cache_key}: {e}")
        metrics.cache_lookups.labels(result="error").inc()
        cached = None
    else:
        if not cached:
            metrics.cache_lookups.labels(result="miss").inc()

    hit = decode_cached_page(cache_key, cached) if cached else None
    if hit is not None:
        metrics.cache_lookups.labels(result="hit").inc()
        response.headers["Cache-Control"] = CACHE_CONTROL_OK
        return hit

    try:
        page = await assembler.assemble_page(
            anchor, user_id=user, limit=limit, offset=offset
        )
        data = [RecommendedProductItem.from_resolved(item) for item in page.items]
    except Exception as e:
        logger.error(f"Mixed recommendations failed for anchor {anchor}. Reason: {e}")
        metrics.recommendation_fallback.labels(reason="degraded").inc()
        metrics.empty_results.labels(endpoint="mixed").inc()
        response.headers["Cache-Control"] = CACHE_CONTROL_DEGRADED
        return MixedRecommendationResponse(success=True, data=[], count=0)

    result = MixedRecommendationResponse(success=True, data=data, count=len(data))

    if not data:
        metrics.empty_results.labels(endpoint="mixed").inc()
    if page.degraded or not data:
        response.headers["Cache-Control"] = CACHE_CONTROL_DEGRADED
        return result

    try:
        await redis_conn.set(
            cache_key,
            result.model_dump_json(by_alias=True),
            ex=MIXED_CACHE_TTL_SECONDS,
        )
    except Exception as e:
        logger.warning(f"Failed to cache mixed recommendations for {cache_key}: {e}")

    response.headers["Cache-Control"] = CACHE_CONTROL_OK
    return result


@app.get("/products/{product_id}/similar", response_model=SimilarProductsResponse)
async def similar_products(
    product_id: str,
    limit: Optional[str] = Query(None, description="Number of similar products"),
    store: CatalogStore = Depends(get_store),
    engine: RecommendationEngine = Depends(get_engine),
):
    product = await store.get_product(product_id)
    if product is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product {product_id} not found",
        )
    if not product.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Product {product_id} is not active",
        )

    metrics.recommendation_requests.labels(endpoint="similar", user_type="any").inc()
    similar = await engine.get_similar(product_id, clamp_limit(limit))
    if not similar:
        metrics.empty_results.labels(endpoint="similar").inc()

    return SimilarProductsResponse(
        product_id=product_id,
        similar=[RecommendationItem.from_domain(r) for r in similar],
        count=len(similar),
        generated_at=datetime.now(timezone.utc),
    )


@app.get("/recommendations/users/{user_id}", response_model=RecommendationFeedResponse)
async def user_recommendations(
    user_id: str,
    personalized_limit: Optional[str] = Query(None, alias="personalizedLimit"),
    popular_limit: Optional[str] = Query(None, alias="popularLimit"),
    trending_limit: Optional[str] = Query(None, alias="trendingLimit"),
    engine: RecommendationEngine = Depends(get_engine),
):
    metrics.recommendation_requests.labels(
        endpoint="feed", user_type=user_type_of(user_id)
    ).inc()

    feed = await engine.get_all(
        user_id,
        personalized_limit=clamp_limit(personalized_limit),
        popular_limit=clamp_limit(popular_limit),
        trending_limit=clamp_limit(trending_limit),
    )

    return RecommendationFeedResponse(
        personalized=[RecommendationItem.from_domain(r) for r in feed.personalized],
        popular=[RecommendationItem.from_domain(r) for r in feed.popular],
        trending=[RecommendationItem.from_domain(r) for r in feed.trending],
        user_id=user_id,
        generated_at=datetime.now(timezone.utc),
    )


@app.get("/recommendations/popular", response_model=RecommendationListResponse)
async def popular_products(
    limit: Optional[str] = Query(None, description="Number of products"),
    engine: RecommendationEngine = Depends(get_engine),
):
    metrics.recommendation_requests.labels(endpoint="popular", user_type="any").inc()
    popular = await engine.get_popular(clamp_limit(limit))
    if not popular:
        metrics.empty_results.labels(endpoint="popular").inc()
    return RecommendationListResponse(
        source="popular",
        recommendations=[RecommendationItem.from_domain(r) for r in popular],
        count=len(popular),
    )


@app.get("/recommendations/trending", response_model=RecommendationListResponse)
async def trending_products(
    limit: Optional[str] = Query(None, description="Number of products"),
    engine: RecommendationEngine = Depends(get_engine),
):
    metrics.recommendation_requests.labels(endpoint="trending", user_type="any").inc()
    trending = await engine.get_trending(clamp_limit(limit))
    if not trending:
        metrics.empty_results.labels(endpoint="trending").inc()
    return RecommendationListResponse(
        source="trending",
        recommendations=[RecommendationItem.from_domain(r) for r in trending],
        count=len(trending),
    )


@app.post("/admin/scores/refresh", response_model=ScoreRefreshResponse)
async def refresh_scores(
    authorization: Optional[str] = Header(None),
    maintainer: ScoreMaintainer = Depends(get_maintainer),
):
    """
    Recompute the stored popularity score of every active product.
    Meant to be hit by a scheduler with the shared cron secret.
    """
    if CRON_SECRET and authorization != f"Bearer {CRON_SECRET}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        report = await maintainer.update_all()
    except Exception as e:
        logger.error(f"Score refresh failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to refresh popularity scores: {e}",
        )

    return ScoreRefreshResponse(
        success=True,
        updated=report.updated,
        failed=report.failed,
        duration=round(report.duration_s, 3),
    )
