"""Categorization service: snapshot lifecycle, fail-closed batches and feedback."""
import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.ranking import categorize
from pattern_categorizer.categorization.snapshot import PatternSnapshot
from pattern_categorizer.categorization.types import FeedbackType, PatternRef
from pattern_categorizer.core.config import Settings, get_settings
from pattern_categorizer.core.exceptions import InvalidFeedbackError, PatternStoreUnavailableError
from pattern_categorizer.schemas.categorization import (
    CategorizationResult,
    CategorizationStatus,
    FeedbackRequest,
    FeedbackResult,
)
from pattern_categorizer.services.learning import FeedbackProcessor
from pattern_categorizer.services.merchant import MerchantCanonicalizer
from pattern_categorizer.services.snapshot import SnapshotLoader

logger = logging.getLogger(__name__)


class CategorizationService:
    """In-process entry point used by request and job collaborators.

    The service keeps one snapshot and reloads it when it is older than
    ``snapshot_max_age_seconds`` or after feedback changed the store.
    Matching itself runs on the snapshot only and never touches the session.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        loader: SnapshotLoader | None = None,
    ):
        """Initialize categorization service with database session.

        Args:
            db: Database session
            settings: Engine settings, defaults to the cached settings
            loader: Snapshot loader, defaults to one on ``db``
        """
        self.db = db
        self.settings = settings or get_settings()
        self.loader = loader or SnapshotLoader(db)
        self.feedback_processor = FeedbackProcessor(
            db, self.settings, canonicalizer=MerchantCanonicalizer(db, self.settings)
        )
        self._snapshot: PatternSnapshot | None = None

    @property
    def snapshot(self) -> PatternSnapshot | None:
        return self._snapshot

    def invalidate(self) -> None:
        """Drop the current snapshot; the next batch reloads it."""
        self._snapshot = None

    async def get_snapshot(self, now: datetime | None = None) -> PatternSnapshot:
        """Current snapshot, reloaded if missing or stale.

        Raises:
            PatternStoreUnavailableError: If a reload is needed and fails
        """
        if self._snapshot is None or self._snapshot.is_stale(self.settings.snapshot_max_age_seconds, now):
            self._snapshot = await self.loader.load()
        return self._snapshot

    async def categorize_batch(
        self, transactions: Iterable[Any], top_n: int | None = None
    ) -> list[CategorizationResult]:
        """Categorize a batch against one snapshot.

        Fails closed: if the snapshot cannot be loaded every transaction
        gets an empty, ``degraded`` result so callers fall back to manual
        categorization instead of acting on a guess.

        Args:
            transactions: TransactionInput values (or objects with the same
                attributes)
            top_n: Suggestions per transaction, defaults to
                ``max_suggestions``

        Returns:
            One CategorizationResult per transaction, in input order
        """
        transactions = list(transactions)
        try:
            snapshot = await self.get_snapshot()
        except PatternStoreUnavailableError as exc:
            logger.error("Categorization degraded for %d transaction(s): %s", len(transactions), exc)
            return [
                CategorizationResult(
                    transaction_id=getattr(transaction, "id", None),
                    status=CategorizationStatus.DEGRADED,
                    diagnostic=str(exc),
                )
                for transaction in transactions
            ]

        return [categorize(transaction, snapshot, top_n, self.settings) for transaction in transactions]

    async def categorize(self, transaction: Any, top_n: int | None = None) -> CategorizationResult:
        results = await self.categorize_batch([transaction], top_n)
        return results[0]

    async def record_feedback(
        self,
        transaction: Any,
        chosen_category_id: int,
        feedback_type: FeedbackType | str,
        originating_pattern: PatternRef | str | None = None,
        confidence: float | None = None,
    ) -> FeedbackResult:
        """Apply feedback using the current snapshot, then invalidate it."""
        snapshot = self._snapshot
        if snapshot is None:
            try:
                snapshot = await self.get_snapshot()
            except PatternStoreUnavailableError:
                logger.warning("Recording feedback without a snapshot; only the originating pattern is updated")

        try:
            return await self.feedback_processor.record_feedback(
                transaction,
                chosen_category_id,
                feedback_type,
                originating_pattern=originating_pattern,
                snapshot=snapshot,
                confidence=confidence,
            )
        finally:
            self.invalidate()

    async def submit_feedback(self, transaction: Any, request: FeedbackRequest) -> FeedbackResult:
        """Apply a FeedbackRequest received from the request layer."""
        if getattr(transaction, "id", None) != request.transaction_id:
            raise InvalidFeedbackError(
                details={"transaction_id": request.transaction_id, "reason": "transaction mismatch"}
            )
        return await self.record_feedback(
            transaction,
            request.chosen_category_id,
            request.feedback_type,
            originating_pattern=request.originating_pattern,
            confidence=request.confidence,
        )
