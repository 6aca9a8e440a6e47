"""User category preference repository."""
from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.types import ContextType
from pattern_categorizer.models.base import utcnow
from pattern_categorizer.models.preference import UserCategoryPreference
from pattern_categorizer.repositories.base import BaseRepository

DEFAULT_STRENGTH = 0.5


class PreferenceRepository(BaseRepository[UserCategoryPreference]):
    """Repository for UserCategoryPreference rows."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, UserCategoryPreference)

    async def get_preference(
        self, context_type: ContextType, context_value: str, category_id: int
    ) -> UserCategoryPreference | None:
        result = await self.db.execute(
            select(UserCategoryPreference)
            .where(
                UserCategoryPreference.context_type == context_type.value,
                UserCategoryPreference.context_value == context_value,
                UserCategoryPreference.category_id == category_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[UserCategoryPreference]:
        result = await self.db.execute(
            select(UserCategoryPreference)
            .order_by(UserCategoryPreference.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def adjust_strength(
        self, context_type: ContextType, context_value: str, category_id: int, delta: float
    ) -> bool:
        """Add ``delta`` to a preference's strength, clamped to [0, 1].

        A missing preference is created at the default strength when
        ``delta`` is positive; a negative delta on a missing preference is a
        no-op. Does not commit.

        Returns:
            True if a row was updated or created
        """
        if not context_value or not delta:
            return False

        strength = UserCategoryPreference.strength + delta
        values = {
            UserCategoryPreference.strength: case(
                (strength > 1.0, 1.0), (strength < 0.0, 0.0), else_=strength
            ),
            UserCategoryPreference.updated_at: utcnow(),
        }
        if delta > 0:
            values[UserCategoryPreference.usage_count] = UserCategoryPreference.usage_count + 1

        result = await self.db.execute(
            update(UserCategoryPreference)
            .where(
                UserCategoryPreference.context_type == context_type.value,
                UserCategoryPreference.context_value == context_value,
                UserCategoryPreference.category_id == category_id,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount or delta < 0:
            return bool(result.rowcount)

        self.db.add(
            UserCategoryPreference(
                context_type=context_type.value,
                context_value=context_value,
                category_id=category_id,
                strength=DEFAULT_STRENGTH,
                usage_count=1,
            )
        )
        await self.db.flush()
        return True
