import os
import sys
from datetime import datetime
from itertools import count
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).parents[1] / "src"))

from pattern_categorizer import models  # noqa: F401  (registers every table)
from pattern_categorizer.categorization.snapshot import PatternSnapshot
from pattern_categorizer.core.config import Settings
from pattern_categorizer.models.base import Base
from pattern_categorizer.schemas.transaction import TransactionInput

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# 2024-03-12 is a Tuesday, 2024-03-16 a Saturday.
TUESDAY_MORNING = datetime(2024, 3, 12, 9, 30)
SATURDAY_EVENING = datetime(2024, 3, 16, 19, 15)


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def make_transaction():
    """Build TransactionInput values with sensible defaults."""
    ids = count(1000)

    def _make(**overrides) -> TransactionInput:
        data = {
            "id": next(ids),
            "merchant": "Some Merchant",
            "description": None,
            "amount": "25.00",
            "timestamp": TUESDAY_MORNING,
        }
        data.update(overrides)
        return TransactionInput(**data)

    return _make


@pytest.fixture
def make_pattern():
    """Build pattern-like rows for snapshots that never touch the database."""
    ids = count(1)

    def _make(category_id: int, pattern_type: str, pattern_value: str, **overrides):
        data = {
            "id": next(ids),
            "category_id": category_id,
            "pattern_type": pattern_type,
            "pattern_value": pattern_value,
            "confidence_weight": 1.0,
            "usage_count": 0,
            "success_count": 0,
            "success_rate": 0.0,
            "active": True,
            "last_used_at": None,
        }
        data.update(overrides)
        return SimpleNamespace(**data)

    return _make


@pytest.fixture
def make_composite():
    ids = count(1)

    def _make(category_id: int, operator: str, pattern_ids: list[int], **overrides):
        data = {
            "id": next(ids),
            "category_id": category_id,
            "name": f"composite {operator}",
            "operator": operator,
            "pattern_ids": pattern_ids,
            "conditions": {},
            "confidence_weight": 1.5,
            "usage_count": 0,
            "success_rate": 0.0,
            "active": True,
        }
        data.update(overrides)
        return SimpleNamespace(**data)

    return _make


@pytest.fixture
def build_snapshot():
    def _build(patterns=(), composites=(), preferences=(), categories=None) -> PatternSnapshot:
        return PatternSnapshot.build(
            patterns=patterns,
            composites=composites,
            preferences=preferences,
            categories=categories or {1: "Food & Dining", 2: "Transportation", 3: "Groceries"},
        )

    return _build


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with every table created."""
    kwargs = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **kwargs)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def file_sessions(tmp_path):
    """Session factory over a file database; each session gets its own connection."""
    url, kwargs = TEST_DATABASE_URL, {}
    if url.startswith("sqlite"):
        # In-memory SQLite shares one connection; a file gives real contention.
        url = f"sqlite+aiosqlite:///{tmp_path / 'categorizer.db'}"
        kwargs = {"connect_args": {"timeout": 30}}
    engine = create_async_engine(url, echo=False, **kwargs)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    """Provide test database session."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def seed_categories(db_session: AsyncSession) -> dict[str, models.Category]:
    """Create the categories used across integration tests."""
    categories = {}
    for name in ("Food & Dining", "Transportation", "Groceries", "Entertainment"):
        category = models.Category(name=name)
        db_session.add(category)
        categories[name] = category
    await db_session.commit()
    for category in categories.values():
        await db_session.refresh(category)
    return categories
