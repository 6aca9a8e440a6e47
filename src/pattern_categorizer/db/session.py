from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pattern_categorizer.core.config import settings


def build_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine for the pattern store.

    SQL echo stays off outside development since statement parameters carry
    merchant text.
    """
    return create_async_engine(
        database_url or settings.database_url,
        echo=(settings.db_echo if settings.app_env.lower() == "development" else False),
        future=True,
        **kwargs,
    )


async_engine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
