from src.engine.maintainer import ScoreMaintainer
from src.engine.mixer import MixedRecommendationAssembler, interleave_and_dedup
from src.engine.recommender import RecommendationEngine
from src.engine.scoring import calculate_popularity_score

__all__ = [
    "MixedRecommendationAssembler",
    "RecommendationEngine",
    "ScoreMaintainer",
    "calculate_popularity_score",
    "interleave_and_dedup",
]
