import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import Select, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.engine.models import ProductRecord, UserInterestRecord
from src.engine.store import ORDERABLE_COLUMNS
from src.observability import metrics, store_span
from src.store.tables import Order, OrderItem, Product, UserActivity, UserInterest

ORDER_COLUMNS = {
    "popularity_score": Product.popularity_score,
    "view_count": Product.view_count,
    "created_at": Product.created_at,
}


def to_db_time(moment: datetime) -> datetime:
    """The catalog stores naive UTC timestamps."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def to_product_record(row: Product) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        category_id=row.category_id,
        brand_id=row.brand_id,
        name=row.name,
        slug=row.slug,
        price=Decimal(row.price),
        currency=row.currency,
        images=tuple(row.images or ()),
        inventory=row.inventory or 0,
        view_count=row.view_count or 0,
        cart_count=row.cart_count or 0,
        favorite_count=row.favorite_count or 0,
        order_count=row.order_count or 0,
        popularity_score=Decimal(row.popularity_score or 0),
        last_score_update=row.last_score_update,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def build_active_products_query(
    *,
    category_ids: Optional[Iterable[str]] = None,
    exclude_ids: Optional[Iterable[str]] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    order_by: Sequence[str] = ("popularity_score",),
    limit: Optional[int] = None,
) -> Select:
    stmt = select(Product).where(Product.is_active.is_(True))

    if category_ids is not None:
        stmt = stmt.where(Product.category_id.in_(list(category_ids)))
    if exclude_ids:
        stmt = stmt.where(Product.id.not_in(list(exclude_ids)))
    # numeric comparison in the database, no float rounding on the band edges
    if min_price is not None:
        stmt = stmt.where(Product.price >= min_price)
    if max_price is not None:
        stmt = stmt.where(Product.price <= max_price)

    for column in order_by:
        if column not in ORDERABLE_COLUMNS:
            raise ValueError(f"Cannot order products by '{column}'")
        stmt = stmt.order_by(ORDER_COLUMNS[column].desc())
    if order_by:
        # deterministic ties
        stmt = stmt.order_by(Product.id)

    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


def build_activity_count_query(since: datetime, limit: int) -> Select:
    activity_count = func.count(UserActivity.id).label("activity_count")
    return (
        select(UserActivity.product_id, activity_count)
        .where(UserActivity.created_at >= to_db_time(since))
        .where(UserActivity.product_id.is_not(None))
        .group_by(UserActivity.product_id)
        .order_by(activity_count.desc(), UserActivity.product_id)
        .limit(limit)
    )


class SqlCatalogStore:
    """
    CatalogStore backed by the catalog's PostgreSQL database.

    Every call opens its own short-lived session, so concurrent candidate
    fetches never share a connection.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str, table: str, **attributes):
        start_time = time.time()
        try:
            with store_span(operation, table, **attributes) as span:
                async with self._session_factory() as session:
                    yield session, span
        finally:
            metrics.store_operation_duration.labels(operation=operation).observe(
                time.time() - start_time
            )

    async def get_product(self, product_id: str) -> Optional[ProductRecord]:
        async with self._session("get_product", "products") as (session, _):
            row = await session.get(Product, product_id)
        return to_product_record(row) if row else None

    async def list_active_products(
        self,
        *,
        category_ids: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        order_by: Sequence[str] = ("popularity_score",),
        limit: Optional[int] = None,
    ) -> list[ProductRecord]:
        stmt = build_active_products_query(
            category_ids=category_ids,
            exclude_ids=exclude_ids,
            min_price=min_price,
            max_price=max_price,
            order_by=order_by,
            limit=limit,
        )
        async with self._session("list_active_products", "products", limit=limit) as (
            session,
            span,
        ):
            rows = (await session.scalars(stmt)).all()
            span.set_attribute("db.store.results_count", len(rows))
        return [to_product_record(row) for row in rows]

    async def get_active_products_by_ids(
        self, product_ids: Sequence[str]
    ) -> list[ProductRecord]:
        if not product_ids:
            return []
        stmt = select(Product).where(
            Product.id.in_(list(product_ids)), Product.is_active.is_(True)
        )
        async with self._session(
            "get_active_products_by_ids", "products", ids_count=len(product_ids)
        ) as (session, span):
            rows = (await session.scalars(stmt)).all()
            span.set_attribute("db.store.results_count", len(rows))
        return [to_product_record(row) for row in rows]

    async def count_activity_since(
        self, since: datetime, limit: int
    ) -> list[tuple[str, int]]:
        stmt = build_activity_count_query(since, limit)
        async with self._session(
            "count_activity_since", "user_activities", limit=limit
        ) as (session, _):
            result = await session.execute(stmt)
            rows = result.all()
        return [(product_id, int(count)) for product_id, count in rows]

    async def list_user_interests(self, user_id: str) -> list[UserInterestRecord]:
        stmt = (
            select(UserInterest)
            .where(UserInterest.user_id == user_id)
            .order_by(UserInterest.interest_score.desc())
        )
        async with self._session("list_user_interests", "user_interests") as (
            session,
            _,
        ):
            rows = (await session.scalars(stmt)).all()
        return [
            UserInterestRecord(
                user_id=row.user_id,
                category_id=row.category_id,
                interest_score=Decimal(row.interest_score or 0),
            )
            for row in rows
        ]

    async def list_purchased_product_ids(self, user_id: str) -> set[str]:
        stmt = (
            select(OrderItem.product_id)
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.user_id == user_id)
            .distinct()
        )
        async with self._session("list_purchased_product_ids", "order_items") as (
            session,
            _,
        ):
            product_ids = (await session.scalars(stmt)).all()
        return set(product_ids)

    async def save_popularity_score(
        self, product_id: str, score: Decimal, updated_at: datetime
    ) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                {
                    Product.popularity_score: score,
                    Product.last_score_update: to_db_time(updated_at),
                }
            )
        )
        async with self._session("save_popularity_score", "products") as (session, _):
            await session.execute(stmt)
            await session.commit()

    async def ping(self) -> None:
        async with self._session("ping", "products") as (session, _):
            await session.execute(text("SELECT 1"))
