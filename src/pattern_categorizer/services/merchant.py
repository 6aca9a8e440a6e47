"""Merchant canonicalization: raw merchant text to one stable identity."""
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.normalizer import beautify_merchant_name, normalize_merchant
from pattern_categorizer.categorization.similarity import ngram_jaccard
from pattern_categorizer.categorization.types import PatternType
from pattern_categorizer.core.config import Settings, get_settings
from pattern_categorizer.core.exceptions import MerchantNotFoundError
from pattern_categorizer.models.merchant import CanonicalMerchant
from pattern_categorizer.repositories.merchant import MerchantRepository
from pattern_categorizer.repositories.pattern import PatternRepository

logger = logging.getLogger(__name__)


class MerchantCanonicalizer:
    """Service mapping raw merchant names to canonical merchants."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        """Initialize canonicalizer with database session.

        Args:
            db: Database session
            settings: Engine settings, defaults to the cached settings
        """
        self.db = db
        self.settings = settings or get_settings()
        self.merchant_repo = MerchantRepository(db)
        self.pattern_repo = PatternRepository(db)

    async def _fuzzy_match(self, normalized: str) -> tuple[int, float] | None:
        best: tuple[int, float] | None = None
        for merchant_id, name in await self.merchant_repo.list_names():
            score = ngram_jaccard(normalized, name)
            if score >= self.settings.merchant_alias_threshold and (best is None or score > best[1]):
                best = (merchant_id, score)
        return best

    async def resolve(self, raw_name: str | None) -> CanonicalMerchant | None:
        """Find or create the canonical merchant for ``raw_name``.

        Lookup order: exact alias on the raw text, alias on the normalized
        text, exact canonical name, fuzzy match over canonical names. If all
        miss, a new canonical merchant is created. Every path records the
        raw text as an alias so the next lookup is exact.

        Args:
            raw_name: Merchant text as it appears on the transaction

        Returns:
            The canonical merchant, or None if the name normalizes to nothing
        """
        raw = (raw_name or "").strip()
        normalized = normalize_merchant(raw)
        if not normalized:
            return None

        alias = await self.merchant_repo.get_alias(raw)
        if alias:
            await self.merchant_repo.touch_alias(alias.id)
            await self.db.commit()
            return await self.merchant_repo.get_by_id(alias.canonical_merchant_id)

        alias = await self.merchant_repo.get_best_alias_by_normalized(normalized)
        if alias:
            merchant_id, confidence = alias.canonical_merchant_id, alias.confidence
        else:
            merchant = await self.merchant_repo.get_by_name(normalized)
            if merchant:
                merchant_id, confidence = merchant.id, 1.0
            else:
                fuzzy = await self._fuzzy_match(normalized)
                if fuzzy:
                    merchant_id, confidence = fuzzy
                    logger.debug("Merchant %r matched canonical %s (%.2f)", raw, merchant_id, confidence)
                else:
                    merchant = await self.merchant_repo.add_merchant(
                        name=normalized, display_name=beautify_merchant_name(normalized)
                    )
                    merchant_id, confidence = merchant.id, 1.0
                    logger.info("Created canonical merchant %r", normalized)

        await self.merchant_repo.add_alias(merchant_id, raw, normalized, confidence)
        await self.db.commit()
        return await self.merchant_repo.get_by_id(merchant_id)

    async def canonical_key(self, raw_name: str | None) -> str:
        """Canonical name to use as a merchant pattern value."""
        merchant = await self.resolve(raw_name)
        if merchant is None:
            return normalize_merchant(raw_name)
        return merchant.name

    async def record_usage(self, merchant_id: int, amount: int = 1) -> None:
        await self.merchant_repo.increment_usage(merchant_id, amount)
        await self.db.commit()

    async def merge(self, target_id: int, source_id: int) -> CanonicalMerchant:
        """Fold ``source_id`` into ``target_id`` in one transaction.

        Aliases move to the target, merchant patterns on the source name are
        rewritten to the target name (a pattern that would duplicate an
        existing target pattern is deactivated instead), usage counts are
        added, metadata and category hint are merged, and the source is
        deleted. Nothing is written if any step fails.

        Raises:
            MerchantNotFoundError: If either merchant does not exist
        """
        target = await self.merchant_repo.get_by_id(target_id)
        source = await self.merchant_repo.get_by_id(source_id)
        if not target or not source:
            raise MerchantNotFoundError(
                details={"target_id": target_id, "source_id": source_id}
            )
        if target.id == source.id:
            return target

        try:
            moved = await self.merchant_repo.move_aliases(source.id, target.id)

            for pattern in await self.pattern_repo.list_by_type_and_value(
                PatternType.MERCHANT, source.name
            ):
                duplicate = await self.pattern_repo.get_by_definition(
                    pattern.category_id, PatternType.MERCHANT, target.name
                )
                if duplicate:
                    await self.pattern_repo.set_active(pattern.id, False)
                else:
                    await self.pattern_repo.rewrite_value(pattern.id, target.name)

            await self.merchant_repo.increment_usage(target.id, source.usage_count)
            target.merchant_metadata = {**(source.merchant_metadata or {}), **(target.merchant_metadata or {})}
            target.category_hint = target.category_hint or source.category_hint
            await self.db.delete(source)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info("Merged merchant %s into %s (%d aliases moved)", source_id, target_id, moved)
        return await self.merchant_repo.get_by_id(target.id)
