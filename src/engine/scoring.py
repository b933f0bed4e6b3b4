from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from src.config import ScoringConfig


class ActivityCounters(Protocol):
    view_count: int
    cart_count: int
    favorite_count: int
    order_count: int
    created_at: datetime


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive timestamps (as stored by the catalog) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_recent(created_at: datetime, config: ScoringConfig, now: datetime) -> bool:
    # inclusive: a product exactly trending_days old still gets the boost
    return ensure_utc(now) - ensure_utc(created_at) <= config.trending_window


def base_popularity(counters: ActivityCounters, config: ScoringConfig) -> Decimal:
    return (
        Decimal(counters.view_count or 0) * config.view_weight
        + Decimal(counters.cart_count or 0) * config.cart_add_weight
        + Decimal(counters.favorite_count or 0) * config.favorite_weight
        + Decimal(counters.order_count or 0) * config.order_weight
    )


def calculate_popularity_score(
    counters: ActivityCounters,
    config: ScoringConfig,
    now: Optional[datetime] = None,
) -> Decimal:
    """
    Weighted sum of the behavioral counters, multiplied by the recency boost
    while the product is younger than the trending window.

    The age is measured against `now` (defaults to the current time), so the
    same product loses its boost once it ages past the window.
    """
    score = base_popularity(counters, config)
    if is_recent(counters.created_at, config, now or utcnow()):
        return score * config.recency_boost
    return score
