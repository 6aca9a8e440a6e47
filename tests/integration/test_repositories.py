"""Integration tests for repository layer."""
import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.types import ContextType, FeedbackType, PatternType
from pattern_categorizer.core.exceptions import PatternValidationError
from pattern_categorizer.repositories.category import CategoryRepository
from pattern_categorizer.repositories.composite_pattern import CompositePatternRepository
from pattern_categorizer.repositories.feedback import FeedbackRepository
from pattern_categorizer.repositories.pattern import PatternRepository
from pattern_categorizer.repositories.preference import PreferenceRepository


@pytest.fixture
def pattern_repo(db_session: AsyncSession) -> PatternRepository:
    return PatternRepository(db_session)


@pytest.fixture
def composite_repo(db_session: AsyncSession) -> CompositePatternRepository:
    return CompositePatternRepository(db_session)


@pytest.fixture
async def food(seed_categories):
    return seed_categories["Food & Dining"]


class TestCategoryRepository:
    async def test_get_or_create(self, db_session: AsyncSession, seed_categories):
        repo = CategoryRepository(db_session)

        existing = await repo.get_or_create("Groceries")
        created = await repo.get_or_create("Travel")

        assert existing.id == seed_categories["Groceries"].id
        assert created.id is not None
        names = await repo.get_name_map()
        assert names[created.id] == "Travel"
        assert len(names) == 5


class TestPatternCreation:
    async def test_create_pattern(self, pattern_repo: PatternRepository, food):
        pattern = await pattern_repo.create_pattern(food.id, PatternType.MERCHANT, " starbucks ", 3.0)

        assert pattern.id is not None
        assert pattern.pattern_value == "starbucks"
        assert pattern.confidence_weight == 3.0
        assert pattern.usage_count == 0
        assert pattern.active is True

    async def test_inverted_amount_range_rejected(self, pattern_repo: PatternRepository, food):
        with pytest.raises(PatternValidationError) as exc_info:
            await pattern_repo.create_pattern(food.id, "amount_range", "50-10")
        assert exc_info.value.error_code == "PATTERN_001"

    async def test_backtracking_regex_rejected(self, pattern_repo: PatternRepository, food):
        with pytest.raises(PatternValidationError) as exc_info:
            await pattern_repo.create_pattern(food.id, "regex", "(a+)+$")
        assert exc_info.value.error_code == "PATTERN_002"

    @pytest.mark.parametrize("weight", [0.05, 5.5])
    async def test_weight_out_of_range_rejected(self, pattern_repo: PatternRepository, food, weight):
        with pytest.raises(PatternValidationError):
            await pattern_repo.create_pattern(food.id, "keyword", "coffee", weight)

    async def test_duplicate_rejected(self, pattern_repo: PatternRepository, food):
        await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        with pytest.raises(PatternValidationError):
            await pattern_repo.create_pattern(food.id, "keyword", "coffee")

    async def test_same_value_allowed_in_other_category(self, pattern_repo: PatternRepository, seed_categories):
        await pattern_repo.create_pattern(seed_categories["Food & Dining"].id, "keyword", "pizza")
        other = await pattern_repo.create_pattern(seed_categories["Groceries"].id, "keyword", "pizza")

        found = await pattern_repo.list_by_type_and_value("keyword", "pizza")
        assert [p.id for p in found][-1] == other.id
        assert len(found) == 2


class TestPatternCounters:
    async def test_increments_accumulate(self, pattern_repo: PatternRepository, food):
        pattern = await pattern_repo.create_pattern(food.id, "merchant", "starbucks")

        await pattern_repo.increment_counters([pattern.id], usage=1, success=1)
        await pattern_repo.increment_counters([pattern.id], usage=1, success=0)
        await pattern_repo.increment_counters([pattern.id], usage=1, success=1)

        stored = await pattern_repo.get_by_id(pattern.id)
        assert stored.usage_count == 3
        assert stored.success_count == 2
        assert stored.success_rate == pytest.approx(2 / 3)
        assert stored.last_used_at is not None

    async def test_weight_is_clamped(self, pattern_repo: PatternRepository, food):
        high = await pattern_repo.create_pattern(food.id, "merchant", "starbucks", 4.9)
        low = await pattern_repo.create_pattern(food.id, "merchant", "dunkin", 0.2)

        await pattern_repo.increment_counters([high.id], usage=1, success=1, weight_delta=0.5)
        await pattern_repo.increment_counters([low.id], usage=1, success=0, weight_delta=-0.25)

        assert (await pattern_repo.get_by_id(high.id)).confidence_weight == pytest.approx(5.0)
        assert (await pattern_repo.get_by_id(low.id)).confidence_weight == pytest.approx(0.1)

    async def test_success_above_usage_is_refused(self, pattern_repo: PatternRepository, food):
        pattern = await pattern_repo.create_pattern(food.id, "merchant", "starbucks")
        with pytest.raises(ValueError):
            await pattern_repo.increment_counters([pattern.id], usage=1, success=2)

    async def test_empty_id_list_is_noop(self, pattern_repo: PatternRepository):
        assert await pattern_repo.increment_counters([], usage=1, success=1) == 0

    async def test_concurrent_increments_are_not_lost(self, file_sessions):
        async with file_sessions() as db:
            category = await CategoryRepository(db).get_or_create("Food & Dining")
            pattern_id = (await PatternRepository(db).create_pattern(category.id, "merchant", "starbucks")).id

        async def record(success: int) -> None:
            async with file_sessions() as db:
                await PatternRepository(db).increment_counters([pattern_id], usage=1, success=success)
                await db.commit()

        await asyncio.gather(*(record(i % 2) for i in range(10)))

        async with file_sessions() as db:
            stored = await PatternRepository(db).get_by_id(pattern_id)
        assert stored.usage_count == 10
        assert stored.success_count == 5
        assert stored.success_rate == pytest.approx(0.5)


class TestDeactivation:
    async def test_poor_performer_with_enough_samples(self, pattern_repo: PatternRepository, food):
        poor = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        young = await pattern_repo.create_pattern(food.id, "keyword", "tea")
        good = await pattern_repo.create_pattern(food.id, "keyword", "lunch")
        await pattern_repo.increment_counters([poor.id], usage=20, success=5)
        await pattern_repo.increment_counters([young.id], usage=5, success=0)
        await pattern_repo.increment_counters([good.id], usage=20, success=15)

        deactivated = await pattern_repo.deactivate_poor_performers(20, 0.5)

        assert deactivated == [poor.id]
        assert (await pattern_repo.get_by_id(poor.id)).active is False
        assert (await pattern_repo.get_by_id(young.id)).active is True
        assert [p.id for p in await pattern_repo.list_active()] == [young.id, good.id]

    async def test_deactivation_is_idempotent(self, pattern_repo: PatternRepository, food):
        poor = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        await pattern_repo.increment_counters([poor.id], usage=20, success=5)

        assert await pattern_repo.deactivate_poor_performers(20, 0.5) == [poor.id]
        assert await pattern_repo.deactivate_poor_performers(20, 0.5) == []

    async def test_scoped_to_given_ids(self, pattern_repo: PatternRepository, food):
        poor = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        await pattern_repo.increment_counters([poor.id], usage=20, success=5)

        assert await pattern_repo.deactivate_poor_performers(20, 0.5, pattern_ids=[]) == []
        assert await pattern_repo.deactivate_poor_performers(20, 0.5, pattern_ids=[poor.id + 1]) == []
        assert await pattern_repo.deactivate_poor_performers(20, 0.5, pattern_ids=[poor.id]) == [poor.id]

    async def test_reactivation_needs_fresh_sample(self, pattern_repo: PatternRepository, food):
        pattern = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        await pattern_repo.increment_counters([pattern.id], usage=20, success=5)
        await pattern_repo.deactivate_poor_performers(20, 0.5)

        assert await pattern_repo.set_active(pattern.id, True)
        stored = await pattern_repo.get_by_id(pattern.id)
        assert stored.active is True
        assert stored.usage_baseline == 20

        # Same counters, but nothing new since reactivation.
        assert await pattern_repo.deactivate_poor_performers(20, 0.5) == []

        await pattern_repo.increment_counters([pattern.id], usage=20, success=0)
        assert await pattern_repo.deactivate_poor_performers(20, 0.5) == [pattern.id]

    async def test_list_by_category(self, pattern_repo: PatternRepository, seed_categories):
        food = seed_categories["Food & Dining"]
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        tea = await pattern_repo.create_pattern(food.id, "keyword", "tea")
        await pattern_repo.create_pattern(seed_categories["Groceries"].id, "keyword", "milk")
        await pattern_repo.set_active(tea.id, False)

        assert [p.id for p in await pattern_repo.list_by_category(food.id)] == [coffee.id]
        everything = await pattern_repo.list_by_category(food.id, include_inactive=True)
        assert [p.id for p in everything] == [coffee.id, tea.id]

    async def test_set_active_unknown_id(self, pattern_repo: PatternRepository):
        assert await pattern_repo.set_active(999, True) is False


class TestCompositePatternRepository:
    async def test_create_composite(self, pattern_repo, composite_repo, food):
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        morning = await pattern_repo.create_pattern(food.id, "time", "morning")

        composite = await composite_repo.create_composite(
            food.id, "Morning coffee", "and", [coffee.id, morning.id], {"max_amount": 20}
        )

        assert composite.operator == "AND"
        assert composite.pattern_ids == [coffee.id, morning.id]
        assert composite.confidence_weight == pytest.approx(1.5)
        assert [c.id for c in await composite_repo.list_active()] == [composite.id]

    async def test_missing_component_rejected(self, pattern_repo, composite_repo, food):
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")

        with pytest.raises(PatternValidationError) as exc_info:
            await composite_repo.create_composite(food.id, "Broken", "OR", [coffee.id, 9999])

        assert exc_info.value.error_code == "PATTERN_003"
        assert exc_info.value.details["missing_ids"] == [9999]

    async def test_component_from_other_category_rejected(self, pattern_repo, composite_repo, seed_categories):
        taxi = await pattern_repo.create_pattern(seed_categories["Transportation"].id, "keyword", "taxi")

        with pytest.raises(PatternValidationError) as exc_info:
            await composite_repo.create_composite(seed_categories["Food & Dining"].id, "Mixed", "OR", [taxi.id])
        assert exc_info.value.error_code == "PATTERN_003"

    async def test_empty_components_rejected(self, composite_repo, food):
        with pytest.raises(PatternValidationError) as exc_info:
            await composite_repo.create_composite(food.id, "Empty", "OR", [])
        assert exc_info.value.error_code == "PATTERN_003"

    async def test_bad_operator_rejected(self, pattern_repo, composite_repo, food):
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        with pytest.raises(PatternValidationError):
            await composite_repo.create_composite(food.id, "Xor", "XOR", [coffee.id])

    async def test_add_and_remove_component(self, pattern_repo, composite_repo, food):
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        bagel = await pattern_repo.create_pattern(food.id, "keyword", "bagel")
        composite = await composite_repo.create_composite(food.id, "Breakfast", "OR", [coffee.id])

        updated = await composite_repo.add_component(composite.id, bagel.id)
        assert updated.pattern_ids == [coffee.id, bagel.id]

        updated = await composite_repo.remove_component(composite.id, coffee.id)
        assert updated.pattern_ids == [bagel.id]

    async def test_composite_counters_and_deactivation(self, pattern_repo, composite_repo, food):
        coffee = await pattern_repo.create_pattern(food.id, "keyword", "coffee")
        composite = await composite_repo.create_composite(food.id, "Coffee", "OR", [coffee.id])

        await composite_repo.increment_counters([composite.id], usage=20, success=4)
        stored = await composite_repo.get_by_id(composite.id)
        assert stored.success_rate == pytest.approx(0.2)

        assert await composite_repo.deactivate_poor_performers(20, 0.5) == [composite.id]
        assert await composite_repo.list_active() == []


class TestPreferenceRepository:
    async def test_created_on_positive_delta(self, db_session: AsyncSession, food):
        repo = PreferenceRepository(db_session)

        assert await repo.adjust_strength(ContextType.MERCHANT, "joe's pizza", food.id, 0.1)
        preference = await repo.get_preference(ContextType.MERCHANT, "joe's pizza", food.id)

        assert preference.strength == pytest.approx(0.5)
        assert preference.usage_count == 1

    async def test_negative_delta_on_missing_is_noop(self, db_session: AsyncSession, food):
        repo = PreferenceRepository(db_session)

        assert await repo.adjust_strength(ContextType.MERCHANT, "joe's pizza", food.id, -0.2) is False
        assert await repo.list_all() == []

    async def test_strength_is_clamped(self, db_session: AsyncSession, food):
        repo = PreferenceRepository(db_session)
        await repo.adjust_strength(ContextType.TIME_OF_DAY, "morning", food.id, 0.1)

        for _ in range(8):
            await repo.adjust_strength(ContextType.TIME_OF_DAY, "morning", food.id, 0.1)
        assert (await repo.get_preference(ContextType.TIME_OF_DAY, "morning", food.id)).strength == pytest.approx(1.0)

        for _ in range(6):
            await repo.adjust_strength(ContextType.TIME_OF_DAY, "morning", food.id, -0.2)
        assert (await repo.get_preference(ContextType.TIME_OF_DAY, "morning", food.id)).strength == pytest.approx(0.0)


class TestFeedbackRepository:
    async def test_count_corrections(self, db_session: AsyncSession, seed_categories):
        repo = FeedbackRepository(db_session)
        food = seed_categories["Food & Dining"]
        groceries = seed_categories["Groceries"]

        await repo.add_feedback(1, food.id, FeedbackType.CORRECTION, merchant_key="joe's pizza")
        await repo.add_feedback(2, food.id, FeedbackType.CORRECTION, merchant_key="joe's pizza")
        await repo.add_feedback(3, groceries.id, FeedbackType.CORRECTION, merchant_key="joe's pizza")
        await repo.add_feedback(4, food.id, FeedbackType.CONFIRMATION, merchant_key="joe's pizza")
        await db_session.commit()

        assert await repo.count_corrections("joe's pizza", food.id) == 2
        assert await repo.count_corrections("joe's pizza", groceries.id) == 1
        assert await repo.count_corrections("luigi's", food.id) == 0

    async def test_was_correct_follows_type(self, db_session: AsyncSession, food):
        repo = FeedbackRepository(db_session)

        confirmed = await repo.add_feedback(1, food.id, FeedbackType.CONFIRMATION)
        rejected = await repo.add_feedback(1, food.id, FeedbackType.REJECTION)

        assert confirmed.was_correct is True
        assert rejected.was_correct is False
        assert [f.id for f in await repo.get_by_transaction(1)] == [confirmed.id, rejected.id]

    async def test_learning_event_is_committed(self, db_session: AsyncSession, food):
        repo = FeedbackRepository(db_session)

        event = await repo.add_learning_event(7, food.id, "pattern:1", True, 0.9, {"merchant": "starbucks"})

        assert event.id is not None
        events = await repo.get_learning_events(7)
        assert [(e.pattern_used, e.was_correct) for e in events] == [("pattern:1", True)]
