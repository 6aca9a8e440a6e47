"""Feedback processing: statistics, pattern synthesis and deactivation."""
import logging
from collections import defaultdict
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pattern_categorizer.categorization.composite import evaluate
from pattern_categorizer.categorization.features import TransactionFeatures
from pattern_categorizer.categorization.matcher import MatchOptions, match
from pattern_categorizer.categorization.snapshot import PatternSnapshot
from pattern_categorizer.categorization.types import (
    CompositeRef,
    ContextType,
    FeedbackType,
    PatternRef,
    PatternType,
    SimpleRef,
    parse_pattern_ref,
    ref_sort_key,
)
from pattern_categorizer.core.config import Settings, get_settings
from pattern_categorizer.core.exceptions import (
    FeedbackConflictError,
    InvalidFeedbackError,
    PatternStoreUnavailableError,
)
from pattern_categorizer.repositories.category import CategoryRepository
from pattern_categorizer.repositories.composite_pattern import CompositePatternRepository
from pattern_categorizer.repositories.feedback import FeedbackRepository
from pattern_categorizer.repositories.pattern import PatternRepository
from pattern_categorizer.repositories.preference import PreferenceRepository
from pattern_categorizer.schemas.categorization import FeedbackResult
from pattern_categorizer.services.merchant import MerchantCanonicalizer

logger = logging.getLogger(__name__)

# Lock timeouts, and unique-key races between concurrent first-time inserts
# of the same preference or learned pattern.
RETRYABLE_ERRORS = (OperationalError, IntegrityError)

# Preference contexts updated by feedback; weekday and amount contexts are
# too coarse to learn from a single transaction.
LEARNED_CONTEXTS = (ContextType.MERCHANT, ContextType.TIME_OF_DAY)


def matched_refs_by_category(
    transaction: Any, snapshot: PatternSnapshot, options: MatchOptions | None = None
) -> dict[int, list[PatternRef]]:
    """Refs of every snapshot rule matching ``transaction``, grouped by category."""
    options = options or MatchOptions()
    features = TransactionFeatures.from_transaction(transaction)
    grouped: dict[int, list[PatternRef]] = defaultdict(list)
    results = {}
    for rule in snapshot.rules:
        result = match(features, rule, options)
        results[rule.id] = result
        if result.matched:
            grouped[rule.category_id].append(rule.ref)
    for composite in snapshot.composites:
        if evaluate(features, composite, snapshot.rules_by_id, options, results).matched:
            grouped[composite.category_id].append(composite.ref)
    return dict(grouped)


def _split_refs(refs) -> tuple[list[int], list[int]]:
    simple = sorted({ref.id for ref in refs if isinstance(ref, SimpleRef)})
    composite = sorted({ref.id for ref in refs if isinstance(ref, CompositeRef)})
    return simple, composite


class StatisticsAggregator:
    """Batches counter deltas per pattern and applies them in one flush.

    Deltas are summed, so aggregators can be merged in any order and a
    batched flush ends with the same counters and success rates as applying
    each feedback on its own.
    """

    def __init__(self):
        self._deltas: dict[PatternRef, list[int]] = defaultdict(lambda: [0, 0])

    def add(self, ref: PatternRef, usage: int = 1, success: int = 0) -> None:
        if success > usage:
            raise ValueError("success cannot exceed usage")
        delta = self._deltas[ref]
        delta[0] += usage
        delta[1] += success

    def merge(self, other: "StatisticsAggregator") -> "StatisticsAggregator":
        for ref, (usage, success) in other._deltas.items():
            self.add(ref, usage, success)
        return self

    @property
    def pending(self) -> dict[PatternRef, tuple[int, int]]:
        ordered = sorted(self._deltas.items(), key=lambda item: ref_sort_key(item[0]))
        return {ref: (usage, success) for ref, (usage, success) in ordered}

    async def flush(self, db: AsyncSession) -> int:
        """Apply every pending delta atomically and commit.

        Returns:
            Number of patterns updated
        """
        patterns = PatternRepository(db)
        composites = CompositePatternRepository(db)
        by_delta: dict[tuple[int, int], list[PatternRef]] = defaultdict(list)
        for ref, delta in self.pending.items():
            if delta[0]:
                by_delta[delta].append(ref)

        updated = 0
        for (usage, success), refs in sorted(by_delta.items()):
            simple_ids, composite_ids = _split_refs(refs)
            updated += await patterns.increment_counters(simple_ids, usage=usage, success=success)
            updated += await composites.increment_counters(composite_ids, usage=usage, success=success)
        await db.commit()
        self._deltas.clear()
        return updated


class FeedbackProcessor:
    """Service applying user feedback to the pattern store."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        canonicalizer: MerchantCanonicalizer | None = None,
    ):
        """Initialize feedback processor with database session.

        Args:
            db: Database session
            settings: Engine settings, defaults to the cached settings
            canonicalizer: When given, synthesized merchant patterns use the
                canonical merchant name as their value
        """
        self.db = db
        self.settings = settings or get_settings()
        self.canonicalizer = canonicalizer
        self.category_repo = CategoryRepository(db)
        self.pattern_repo = PatternRepository(db)
        self.composite_repo = CompositePatternRepository(db)
        self.feedback_repo = FeedbackRepository(db)
        self.preference_repo = PreferenceRepository(db)

    async def record_feedback(
        self,
        transaction: Any,
        chosen_category_id: int,
        feedback_type: FeedbackType | str,
        originating_pattern: PatternRef | str | None = None,
        snapshot: PatternSnapshot | None = None,
        confidence: float | None = None,
    ) -> FeedbackResult:
        """Apply one piece of feedback.

        Confirmation credits the patterns that voted for the chosen
        category. Correction and rejection charge a use without a success to
        the superseded patterns (the originating pattern if given, otherwise
        every matching pattern of another category for a correction, or of
        the rejected category for a rejection). Repeated corrections of the
        same merchant to the same category synthesize a merchant pattern.

        Args:
            transaction: The categorized transaction (TransactionInput or
                any object with the same attributes)
            chosen_category_id: Category the user confirmed, corrected to,
                or rejected
            feedback_type: confirmation, correction or rejection
            originating_pattern: Pattern behind the suggestion, if known
            snapshot: Snapshot used for the suggestion; needed to find the
                contributing patterns when no originating pattern is given
            confidence: Confidence shown to the user

        Returns:
            FeedbackResult describing what changed

        Raises:
            InvalidFeedbackError: On an unknown feedback type or category,
                or a transaction without id
            FeedbackConflictError: If counter updates keep conflicting
            PatternStoreUnavailableError: On any other store failure
        """
        kind = self._parse_feedback_type(feedback_type)
        try:
            origin = parse_pattern_ref(originating_pattern)
        except ValueError as exc:
            raise InvalidFeedbackError(details={"originating_pattern": originating_pattern}) from exc

        transaction_id = getattr(transaction, "id", None)
        if transaction_id is None:
            raise InvalidFeedbackError(details={"reason": "transaction id is required"})
        if not await self.category_repo.get_by_id(chosen_category_id):
            raise InvalidFeedbackError(details={"category_id": chosen_category_id})

        features = TransactionFeatures.from_transaction(transaction)
        matched = (
            matched_refs_by_category(features, snapshot, MatchOptions.from_settings(self.settings))
            if snapshot is not None
            else {}
        )
        refs, superseded_categories = self._affected(kind, chosen_category_id, origin, matched, snapshot)

        pattern_key = features.merchant_key
        if kind is FeedbackType.CORRECTION and self.canonicalizer and pattern_key:
            pattern_key = await self.canonicalizer.canonical_key(getattr(transaction, "merchant", None))

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                stop=stop_after_attempt(self.settings.feedback_retry_attempts),
                wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
                before_sleep=before_sleep_log(logger, logging.WARNING),
            ):
                with attempt:
                    result = await self._apply(
                        transaction_id, features, chosen_category_id, kind, origin, refs,
                        superseded_categories, pattern_key, confidence,
                    )
        except RetryError as exc:
            logger.error("Feedback for transaction %s kept conflicting", transaction_id)
            raise FeedbackConflictError(
                details={"transaction_id": transaction_id, "attempts": self.settings.feedback_retry_attempts}
            ) from exc
        except SQLAlchemyError as exc:
            logger.error("Feedback for transaction %s failed: %s", transaction_id, exc)
            raise PatternStoreUnavailableError(details={"transaction_id": transaction_id}) from exc

        result.learning_event_recorded = await self._record_learning_event(
            transaction_id, chosen_category_id, kind, refs, confidence, features
        )
        return result

    def _parse_feedback_type(self, value: FeedbackType | str) -> FeedbackType:
        try:
            return FeedbackType(value)
        except ValueError as exc:
            raise InvalidFeedbackError(details={"feedback_type": value}) from exc

    def _affected(
        self,
        kind: FeedbackType,
        chosen_category_id: int,
        origin: PatternRef | None,
        matched: dict[int, list[PatternRef]],
        snapshot: PatternSnapshot | None,
    ) -> tuple[list[PatternRef], list[int]]:
        """Refs whose counters change, and categories whose preferences weaken."""
        if kind is FeedbackType.CONFIRMATION:
            refs = set(matched.get(chosen_category_id, []))
            if origin is not None:
                refs.add(origin)
            return sorted(refs, key=ref_sort_key), []

        if kind is FeedbackType.REJECTION:
            refs = {origin} if origin is not None else set(matched.get(chosen_category_id, []))
            return sorted(refs, key=ref_sort_key), [chosen_category_id]

        if origin is not None:
            refs = {origin}
        else:
            refs = {
                ref
                for category_id, category_refs in matched.items()
                if category_id != chosen_category_id
                for ref in category_refs
            }

        categories = {cid for cid, category_refs in matched.items() if refs & set(category_refs)}
        if origin is not None and snapshot is not None:
            owner = _ref_category(origin, snapshot)
            if owner is not None:
                categories.add(owner)
        categories.discard(chosen_category_id)
        return sorted(refs, key=ref_sort_key), sorted(categories)

    async def _apply(
        self,
        transaction_id: int,
        features: TransactionFeatures,
        chosen_category_id: int,
        kind: FeedbackType,
        origin: PatternRef | None,
        refs: list[PatternRef],
        superseded_categories: list[int],
        pattern_key: str,
        confidence: float | None,
    ) -> FeedbackResult:
        """Counter updates, feedback row, preferences and synthesis in one commit."""
        result = FeedbackResult(patterns_updated=[str(ref) for ref in refs])
        simple_ids, composite_ids = _split_refs(refs)

        try:
            if kind is FeedbackType.CONFIRMATION:
                await self._increment(simple_ids, composite_ids, success=1, weight_delta=self.settings.weight_boost_correct)
            else:
                await self._increment(simple_ids, composite_ids, success=0, weight_delta=-self.settings.weight_penalty_incorrect)

            feedback = await self.feedback_repo.add_feedback(
                transaction_id=transaction_id,
                category_id=chosen_category_id,
                feedback_type=kind,
                pattern_id=origin.id if isinstance(origin, SimpleRef) else None,
                composite_pattern_id=origin.id if isinstance(origin, CompositeRef) else None,
                confidence_score=confidence,
                merchant_key=features.merchant_key,
                context_data={"refs": [str(ref) for ref in refs], "merchant": features.merchant},
            )

            await self._update_preferences(features, kind, chosen_category_id, superseded_categories)

            if kind is FeedbackType.CORRECTION and features.merchant_key:
                synthesized = await self._maybe_synthesize(features.merchant_key, pattern_key, chosen_category_id)
                if synthesized is not None:
                    result.patterns_created.append(synthesized)

            result.patterns_deactivated = await self.pattern_repo.deactivate_poor_performers(
                self.settings.min_sample_size, self.settings.success_rate_floor, simple_ids
            )
            await self.composite_repo.deactivate_poor_performers(
                self.settings.min_sample_size, self.settings.success_rate_floor, composite_ids
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        result.feedback_id = feedback.id
        logger.info(
            "Recorded %s for transaction %s: category=%s refs=%s",
            kind.value, transaction_id, chosen_category_id, result.patterns_updated,
        )
        return result

    async def _increment(
        self, simple_ids: list[int], composite_ids: list[int], success: int, weight_delta: float
    ) -> None:
        await self.pattern_repo.increment_counters(
            simple_ids, usage=1, success=success, weight_delta=weight_delta
        )
        await self.composite_repo.increment_counters(
            composite_ids, usage=1, success=success, weight_delta=weight_delta
        )

    async def _update_preferences(
        self,
        features: TransactionFeatures,
        kind: FeedbackType,
        chosen_category_id: int,
        superseded_categories: list[int],
    ) -> None:
        context = features.context_values()
        for context_type in LEARNED_CONTEXTS:
            value = context.get(context_type.value)
            if not value:
                continue
            if kind is not FeedbackType.REJECTION:
                await self.preference_repo.adjust_strength(
                    context_type, value, chosen_category_id, self.settings.preference_step_up
                )
            for category_id in superseded_categories:
                await self.preference_repo.adjust_strength(
                    context_type, value, category_id, -self.settings.preference_step_down
                )

    async def _maybe_synthesize(self, merchant_key: str, pattern_value: str, category_id: int) -> int | None:
        """Create or reactivate a merchant pattern once corrections pile up.

        Returns:
            ID of the created or reactivated pattern, else None
        """
        corrections = await self.feedback_repo.count_corrections(merchant_key, category_id)
        if corrections < self.settings.min_corrections_for_pattern:
            return None

        existing = await self.pattern_repo.get_by_definition(category_id, PatternType.MERCHANT, pattern_value)
        if existing:
            if existing.active:
                return None
            await self.pattern_repo.set_active(existing.id, True)
            logger.info("Reactivated merchant pattern %s for %r", existing.id, pattern_value)
            return existing.id

        pattern = await self.pattern_repo.create_pattern(
            category_id=category_id,
            pattern_type=PatternType.MERCHANT,
            pattern_value=pattern_value,
            confidence_weight=self.settings.learned_pattern_weight,
            user_created=True,
            metadata={"source": "feedback", "corrections": corrections},
            commit=False,
        )
        logger.info(
            "Synthesized merchant pattern %s: %r -> category %s after %d corrections",
            pattern.id, pattern_value, category_id, corrections,
        )
        return pattern.id

    async def _record_learning_event(
        self,
        transaction_id: int,
        category_id: int,
        kind: FeedbackType,
        refs: list[PatternRef],
        confidence: float | None,
        features: TransactionFeatures,
    ) -> bool:
        """Append the learning event after the counters are committed.

        Failures are logged and reported through the return value only.
        """
        try:
            await self.feedback_repo.add_learning_event(
                transaction_id=transaction_id,
                category_id=category_id,
                pattern_used=",".join(str(ref) for ref in refs) or None,
                was_correct=kind is FeedbackType.CONFIRMATION,
                confidence_score=confidence,
                context_data={"feedback_type": kind.value, "context": features.context_values()},
            )
        except Exception as exc:
            await self.db.rollback()
            logger.warning("Could not record learning event for transaction %s: %s", transaction_id, exc)
            return False
        return True

    async def recompute_statistics(self) -> list[int]:
        """Deactivate every pattern and composite that performs below the floor.

        Idempotent: a second run finds nothing new.

        Returns:
            IDs of the simple patterns deactivated by this run
        """
        deactivated = await self.pattern_repo.deactivate_poor_performers(
            self.settings.min_sample_size, self.settings.success_rate_floor
        )
        await self.composite_repo.deactivate_poor_performers(
            self.settings.min_sample_size, self.settings.success_rate_floor
        )
        await self.db.commit()
        return deactivated

    async def reactivate_pattern(self, ref: PatternRef | str | int) -> bool:
        """Manually re-enable a deactivated pattern or composite."""
        parsed = SimpleRef(ref) if isinstance(ref, int) else parse_pattern_ref(ref)
        if isinstance(parsed, CompositeRef):
            changed = await self.composite_repo.set_active(parsed.id, True)
        else:
            changed = await self.pattern_repo.set_active(parsed.id, True)
        await self.db.commit()
        if changed:
            logger.info("Reactivated %s", parsed)
        return changed


def _ref_category(ref: PatternRef, snapshot: PatternSnapshot) -> int | None:
    if isinstance(ref, SimpleRef):
        rule = snapshot.rules_by_id.get(ref.id)
        return rule.category_id if rule else None
    for composite in snapshot.composites:
        if composite.id == ref.id:
            return composite.category_id
    return None
