from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import DATABASE_URL, DB_ECHO, DB_POOL_SIZE


def create_db_engine(url: str = DATABASE_URL) -> AsyncEngine:
    return create_async_engine(
        url,
        pool_size=DB_POOL_SIZE,
        pool_pre_ping=True,
        echo=DB_ECHO,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)
