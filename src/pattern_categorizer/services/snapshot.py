"""Load the pattern store into an immutable snapshot."""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.snapshot import PatternSnapshot
from pattern_categorizer.core.exceptions import PatternStoreUnavailableError
from pattern_categorizer.repositories.category import CategoryRepository
from pattern_categorizer.repositories.composite_pattern import CompositePatternRepository
from pattern_categorizer.repositories.pattern import PatternRepository
from pattern_categorizer.repositories.preference import PreferenceRepository

logger = logging.getLogger(__name__)


class SnapshotLoader:
    """Reads everything the matching engine needs in four queries."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.category_repo = CategoryRepository(db)
        self.pattern_repo = PatternRepository(db)
        self.composite_repo = CompositePatternRepository(db)
        self.preference_repo = PreferenceRepository(db)

    async def load(self) -> PatternSnapshot:
        """Build a fresh snapshot of active patterns, composites and preferences.

        Raises:
            PatternStoreUnavailableError: If the store cannot be read
        """
        loaded_at = datetime.now(timezone.utc)
        try:
            categories = await self.category_repo.get_name_map()
            patterns = await self.pattern_repo.list_active()
            composites = await self.composite_repo.list_active()
            preferences = await self.preference_repo.list_all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Pattern snapshot could not be loaded: %s", exc)
            raise PatternStoreUnavailableError(details={"reason": str(exc)}) from exc

        snapshot = PatternSnapshot.build(
            patterns=patterns,
            composites=composites,
            preferences=preferences,
            categories=categories,
            loaded_at=loaded_at,
        )
        logger.debug(
            "Loaded snapshot: %d patterns, %d composites, %d preferences",
            len(snapshot.rules), len(snapshot.composites), len(snapshot.preferences),
        )
        return snapshot
