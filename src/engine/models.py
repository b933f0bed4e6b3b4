from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from src.engine.exceptions import SourceError


class ActivityType(str, Enum):
    VIEW = "VIEW"
    CART_ADD = "CART_ADD"
    FAVORITE = "FAVORITE"
    ORDER = "ORDER"


class Reason(str, Enum):
    POPULAR = "popular"
    PERSONALIZED = "personalized"
    TRENDING = "trending"
    SIMILAR = "similar"


@dataclass(frozen=True)
class ProductRecord:
    """Read model of a catalog product, as seen by the recommendation engine."""

    id: str
    category_id: str
    price: Decimal
    created_at: datetime
    brand_id: Optional[str] = None
    name: str = ""
    slug: str = ""
    currency: str = "NPR"
    images: tuple[str, ...] = ()
    inventory: int = 0
    view_count: int = 0
    cart_count: int = 0
    favorite_count: int = 0
    order_count: int = 0
    popularity_score: Decimal = Decimal(0)
    last_score_update: Optional[datetime] = None
    is_active: bool = True


@dataclass(frozen=True)
class UserInterestRecord:
    user_id: str
    category_id: str
    interest_score: Decimal


@dataclass(frozen=True)
class Recommendation:
    product_id: str
    score: Decimal
    reason: Reason

    def retag(self, reason: Reason) -> "Recommendation":
        return replace(self, reason=reason)


@dataclass(frozen=True)
class RecommendedProduct:
    product_id: str
    score: Decimal
    reason: Reason
    product: ProductRecord


@dataclass(frozen=True)
class SourceResult:
    """
    Outcome of one candidate source.

    A failed source carries its error and no items, so callers can tell
    "legitimately empty" apart from "source failed" before collapsing both
    to an empty list.
    """

    source: str
    items: list[Recommendation] = field(default_factory=list)
    error: Optional[SourceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def items_or_empty(self) -> list[Recommendation]:
        return list(self.items) if self.ok else []


@dataclass(frozen=True)
class RecommendationFeed:
    personalized: list[Recommendation]
    popular: list[Recommendation]
    trending: list[Recommendation]


@dataclass
class ScoreUpdateReport:
    updated: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    duration_s: float = 0.0


@dataclass(frozen=True)
class MixedPage:
    """
    One page of mixed recommendations plus the sources that failed while
    building it. A degraded page is valid to show but not to cache.
    """

    items: list[RecommendedProduct] = field(default_factory=list)
    degraded_sources: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_sources)
