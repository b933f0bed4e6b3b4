"""
ORM mapping of the catalog tables read by the recommendation engine.

The schema is owned by the catalog application (camelCase column names);
only the columns the engine reads or writes are mapped here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    currency: Mapped[str] = mapped_column(Text, nullable=False, default="NPR")
    images: Mapped[Optional[list[str]]] = mapped_column(ARRAY(Text), nullable=True)
    inventory: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # behavioral counters, maintained by the catalog application
    view_count: Mapped[int] = mapped_column("viewCount", Integer, nullable=False, default=0)
    order_count: Mapped[int] = mapped_column("orderCount", Integer, nullable=False, default=0)
    favorite_count: Mapped[int] = mapped_column(
        "favoriteCount", Integer, nullable=False, default=0
    )
    cart_count: Mapped[int] = mapped_column("cartCount", Integer, nullable=False, default=0)

    # written by the score maintainer only
    popularity_score: Mapped[Decimal] = mapped_column(
        "popularityScore", Numeric, nullable=False, default=Decimal(0)
    )
    last_score_update: Mapped[Optional[datetime]] = mapped_column(
        "lastScoreUpdate", DateTime, nullable=True
    )

    category_id: Mapped[str] = mapped_column("categoryId", Text, nullable=False)
    brand_id: Mapped[Optional[str]] = mapped_column("brandId", Text, nullable=True)
    is_active: Mapped[bool] = mapped_column("isActive", Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime, nullable=False)


class UserActivity(Base):
    __tablename__ = "user_activities"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column("userId", Text, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column("sessionId", Text, nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(
        "productId", Text, ForeignKey("products.id"), nullable=True
    )
    # VIEW, CART_ADD, FAVORITE, ORDER
    activity_type: Mapped[str] = mapped_column("activityType", Text, nullable=False)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column("createdAt", DateTime, nullable=False)


class UserInterest(Base):
    __tablename__ = "user_interests"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column("userId", Text, nullable=False)
    category_id: Mapped[str] = mapped_column("categoryId", Text, nullable=False)
    interest_score: Mapped[Decimal] = mapped_column(
        "interestScore", Numeric, nullable=False, default=Decimal(0)
    )
    interaction_count: Mapped[int] = mapped_column(
        "interactionCount", Integer, nullable=False, default=0
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column("userId", Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    order_id: Mapped[str] = mapped_column("orderId", Text, ForeignKey("orders.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(
        "productId", Text, ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
