from fastapi import Request
import redis.asyncio as redis

from src.engine.maintainer import ScoreMaintainer
from src.engine.mixer import MixedRecommendationAssembler
from src.engine.recommender import RecommendationEngine
from src.engine.store import CatalogStore


async def get_redis_client(request: Request) -> redis.Redis:
    return request.app.state.redis_client


async def get_store(request: Request) -> CatalogStore:
    return request.app.state.store


async def get_engine(request: Request) -> RecommendationEngine:
    return RecommendationEngine(request.app.state.store)


async def get_assembler(request: Request) -> MixedRecommendationAssembler:
    return MixedRecommendationAssembler(RecommendationEngine(request.app.state.store))


async def get_maintainer(request: Request) -> ScoreMaintainer:
    return ScoreMaintainer(request.app.state.store)
