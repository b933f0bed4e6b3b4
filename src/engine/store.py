from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence

from src.engine.models import ProductRecord, UserInterestRecord

# columns list_active_products may sort on (always descending)
ORDERABLE_COLUMNS = ("popularity_score", "view_count", "created_at")


class CatalogStore(Protocol):
    """
    Reads and writes the recommendation engine needs from the relational store.

    Every product read only ever returns active products, except get_product
    which returns the row whatever its state so callers can tell "missing"
    apart from "inactive".
    """

    async def get_product(self, product_id: str) -> Optional[ProductRecord]: ...

    async def list_active_products(
        self,
        *,
        category_ids: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        order_by: Sequence[str] = ("popularity_score",),
        limit: Optional[int] = None,
    ) -> list[ProductRecord]: ...

    async def get_active_products_by_ids(
        self, product_ids: Sequence[str]
    ) -> list[ProductRecord]: ...

    async def count_activity_since(
        self, since: datetime, limit: int
    ) -> list[tuple[str, int]]: ...

    async def list_user_interests(self, user_id: str) -> list[UserInterestRecord]: ...

    async def list_purchased_product_ids(self, user_id: str) -> set[str]: ...

    async def save_popularity_score(
        self, product_id: str, score: Decimal, updated_at: datetime
    ) -> None: ...

    async def ping(self) -> None: ...
