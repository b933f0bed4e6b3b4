from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.engine.models import ProductRecord, Recommendation, RecommendedProduct


class CamelModel(BaseModel):
    # responses are camelCase on the wire, snake_case in python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductSummary(CamelModel):
    id: str
    name: str
    slug: str
    price: float
    currency: str
    images: List[str] = Field(default_factory=list)
    inventory: int
    category_id: str
    brand_id: Optional[str] = None
    popularity_score: float

    @classmethod
    def from_record(cls, product: ProductRecord) -> "ProductSummary":
        return cls(
            id=product.id,
            name=product.name,
            slug=product.slug,
            price=float(product.price),
            currency=product.currency,
            images=list(product.images),
            inventory=product.inventory,
            category_id=product.category_id,
            brand_id=product.brand_id,
            popularity_score=float(product.popularity_score),
        )


class RecommendationItem(CamelModel):
    product_id: str
    score: float
    reason: str  # "personalized", "similar", "trending" or "popular"

    @classmethod
    def from_domain(cls, recommendation: Recommendation) -> "RecommendationItem":
        return cls(
            product_id=recommendation.product_id,
            score=float(recommendation.score),
            reason=recommendation.reason.value,
        )


class RecommendedProductItem(RecommendationItem):
    product: ProductSummary

    @classmethod
    def from_resolved(cls, item: RecommendedProduct) -> "RecommendedProductItem":
        return cls(
            product_id=item.product_id,
            score=float(item.score),
            reason=item.reason.value,
            product=ProductSummary.from_record(item.product),
        )


class MixedRecommendationResponse(CamelModel):
    success: bool = True
    data: List[RecommendedProductItem]
    count: int


class SimilarProductsResponse(CamelModel):
    product_id: str
    similar: List[RecommendationItem]
    count: int
    generated_at: datetime


class RecommendationFeedResponse(CamelModel):
    personalized: List[RecommendationItem]
    popular: List[RecommendationItem]
    trending: List[RecommendationItem]
    user_id: str
    generated_at: datetime


class RecommendationListResponse(CamelModel):
    source: str
    recommendations: List[RecommendationItem]
    count: int


class ScoreRefreshResponse(CamelModel):
    success: bool
    updated: int
    failed: int
    duration: float  # seconds
