"""Category repository."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.models.category import Category
from pattern_categorizer.repositories.base import BaseRepository


class CategoryRepository(BaseRepository[Category]):
    """Repository for Category model."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Category)

    async def get_by_name(self, name: str) -> Category | None:
        result = await self.db.execute(select(Category).where(Category.name == name))
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str, description: str | None = None) -> Category:
        """Return the category called ``name``, creating it if needed."""
        category = await self.get_by_name(name)
        if category:
            return category
        return await self.create(Category(name=name, description=description))

    async def get_name_map(self) -> dict[int, str]:
        """All category names keyed by id."""
        result = await self.db.execute(select(Category.id, Category.name).order_by(Category.id))
        return {row.id: row.name for row in result}
