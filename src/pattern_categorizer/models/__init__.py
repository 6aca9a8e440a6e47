"""Database models."""
from pattern_categorizer.models.category import Category
from pattern_categorizer.models.pattern import Pattern
from pattern_categorizer.models.composite_pattern import CompositePattern
from pattern_categorizer.models.merchant import CanonicalMerchant, MerchantAlias
from pattern_categorizer.models.feedback import PatternFeedback, PatternLearningEvent
from pattern_categorizer.models.preference import UserCategoryPreference

__all__ = [
    "Category",
    "Pattern",
    "CompositePattern",
    "CanonicalMerchant",
    "MerchantAlias",
    "PatternFeedback",
    "PatternLearningEvent",
    "UserCategoryPreference",
]
