"""Canonical merchant and alias repository."""
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.models.base import utcnow
from pattern_categorizer.models.merchant import CanonicalMerchant, MerchantAlias
from pattern_categorizer.repositories.base import BaseRepository


class MerchantRepository(BaseRepository[CanonicalMerchant]):
    """Repository for canonical merchants and their aliases.

    Write methods flush but do not commit; MerchantCanonicalizer decides
    the transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(db, CanonicalMerchant)

    async def get_by_name(self, name: str) -> CanonicalMerchant | None:
        result = await self.db.execute(
            select(CanonicalMerchant).where(CanonicalMerchant.name == name)
        )
        return result.scalar_one_or_none()

    async def get_alias(self, raw_name: str) -> MerchantAlias | None:
        """Alias whose raw text is exactly ``raw_name``."""
        result = await self.db.execute(
            select(MerchantAlias).where(MerchantAlias.raw_name == raw_name)
        )
        return result.scalar_one_or_none()

    async def get_best_alias_by_normalized(self, normalized_name: str) -> MerchantAlias | None:
        """Most confident alias with this normalized text."""
        result = await self.db.execute(
            select(MerchantAlias)
            .where(MerchantAlias.normalized_name == normalized_name)
            .order_by(MerchantAlias.confidence.desc(), MerchantAlias.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_aliases(self, canonical_merchant_id: int) -> list[MerchantAlias]:
        result = await self.db.execute(
            select(MerchantAlias)
            .where(MerchantAlias.canonical_merchant_id == canonical_merchant_id)
            .order_by(MerchantAlias.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_names(self) -> list[tuple[int, str]]:
        """(id, name) of every canonical merchant, ordered by id."""
        result = await self.db.execute(
            select(CanonicalMerchant.id, CanonicalMerchant.name).order_by(CanonicalMerchant.id)
        )
        return [(row.id, row.name) for row in result]

    async def add_merchant(
        self,
        name: str,
        display_name: str | None = None,
        category_hint: str | None = None,
    ) -> CanonicalMerchant:
        merchant = CanonicalMerchant(
            name=name, display_name=display_name, category_hint=category_hint, merchant_metadata={}
        )
        self.db.add(merchant)
        await self.db.flush()
        return merchant

    async def add_alias(
        self,
        canonical_merchant_id: int,
        raw_name: str,
        normalized_name: str,
        confidence: float = 1.0,
    ) -> MerchantAlias:
        alias = MerchantAlias(
            canonical_merchant_id=canonical_merchant_id,
            raw_name=raw_name,
            normalized_name=normalized_name,
            confidence=confidence,
            match_count=1,
            last_seen_at=utcnow(),
        )
        self.db.add(alias)
        await self.db.flush()
        return alias

    async def touch_alias(self, alias_id: int, seen_at: datetime | None = None) -> None:
        """Atomically count one more sighting of an alias."""
        await self.db.execute(
            update(MerchantAlias)
            .where(MerchantAlias.id == alias_id)
            .values(
                match_count=MerchantAlias.match_count + 1,
                last_seen_at=seen_at or utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def increment_usage(self, merchant_id: int, amount: int = 1) -> None:
        await self.db.execute(
            update(CanonicalMerchant)
            .where(CanonicalMerchant.id == merchant_id)
            .values(usage_count=CanonicalMerchant.usage_count + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def move_aliases(self, source_id: int, target_id: int) -> int:
        result = await self.db.execute(
            update(MerchantAlias)
            .where(MerchantAlias.canonical_merchant_id == source_id)
            .values(canonical_merchant_id=target_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
