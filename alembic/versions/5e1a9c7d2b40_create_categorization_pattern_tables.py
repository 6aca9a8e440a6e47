"""Create categorization pattern, merchant, feedback and preference tables.

Revision ID: 5e1a9c7d2b40
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5e1a9c7d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(["parent_id"], ["categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_categories_name", "categories", ["name"], unique=True)

    op.create_table(
        "categorization_patterns",
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("pattern_type", sa.String(length=20), nullable=False),
        sa.Column("pattern_value", sa.String(length=255), nullable=False),
        sa.Column("confidence_weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("usage_baseline", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("user_created", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "category_id", "pattern_type", "pattern_value", name="uq_pattern_category_type_value"
        ),
        sa.CheckConstraint(
            "success_count >= 0 AND success_count <= usage_count", name="ck_pattern_counts"
        ),
        sa.CheckConstraint(
            "success_rate >= 0.0 AND success_rate <= 1.0", name="ck_pattern_success_rate"
        ),
    )
    op.create_index(
        "ix_categorization_patterns_category_id", "categorization_patterns", ["category_id"]
    )
    op.create_index(
        "ix_patterns_type_value", "categorization_patterns", ["pattern_type", "pattern_value"]
    )
    op.create_index("ix_patterns_active_type", "categorization_patterns", ["active", "pattern_type"])

    op.create_table(
        "composite_patterns",
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("operator", sa.String(length=3), nullable=False),
        sa.Column("pattern_ids", sa.JSON(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("confidence_weight", sa.Float(), nullable=False, server_default="1.5"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("usage_baseline", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("user_created", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("category_id", "name", name="uq_composite_category_name"),
    )
    op.create_index(
        "ix_composites_category_active", "composite_patterns", ["category_id", "active"]
    )

    op.create_table(
        "canonical_merchants",
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("category_hint", sa.String(length=100), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_canonical_merchants_name", "canonical_merchants", ["name"], unique=True)
    op.create_index("ix_canonical_merchants_usage_count", "canonical_merchants", ["usage_count"])

    op.create_table(
        "merchant_aliases",
        sa.Column("raw_name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.Column("canonical_merchant_id", sa.Integer(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("match_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["canonical_merchant_id"], ["canonical_merchants.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("raw_name"),
    )
    op.create_index("ix_merchant_aliases_normalized_name", "merchant_aliases", ["normalized_name"])
    op.create_index(
        "ix_aliases_canonical_confidence",
        "merchant_aliases",
        ["canonical_merchant_id", "confidence"],
    )

    op.create_table(
        "pattern_feedbacks",
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("pattern_id", sa.Integer(), nullable=True),
        sa.Column("composite_pattern_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("feedback_type", sa.String(length=20), nullable=False),
        sa.Column("was_correct", sa.Boolean(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("merchant_key", sa.String(length=255), nullable=True),
        sa.Column("context_data", sa.JSON(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(
            ["pattern_id"], ["categorization_patterns.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["composite_pattern_id"], ["composite_patterns.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pattern_feedbacks_transaction_id", "pattern_feedbacks", ["transaction_id"])
    op.create_index("ix_feedback_pattern_correct", "pattern_feedbacks", ["pattern_id", "was_correct"])
    op.create_index(
        "ix_feedback_merchant_category_type",
        "pattern_feedbacks",
        ["merchant_key", "category_id", "feedback_type"],
    )
    op.create_index("ix_feedback_created_at", "pattern_feedbacks", ["created_at"])

    op.create_table(
        "pattern_learning_events",
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("pattern_used", sa.String(length=1000), nullable=True),
        sa.Column("was_correct", sa.Boolean(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("context_data", sa.JSON(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_pattern_learning_events_pattern_used", "pattern_learning_events", ["pattern_used"]
    )
    op.create_index(
        "ix_pattern_learning_events_was_correct", "pattern_learning_events", ["was_correct"]
    )
    op.create_index("ix_learning_events_created_at", "pattern_learning_events", ["created_at"])

    op.create_table(
        "user_category_preferences",
        sa.Column("context_type", sa.String(length=20), nullable=False),
        sa.Column("context_value", sa.String(length=255), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("strength", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        *_base_columns(),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "context_type", "context_value", "category_id", name="uq_preference_context_category"
        ),
    )


def downgrade() -> None:
    op.drop_table("user_category_preferences")

    op.drop_index("ix_learning_events_created_at", table_name="pattern_learning_events")
    op.drop_index("ix_pattern_learning_events_was_correct", table_name="pattern_learning_events")
    op.drop_index("ix_pattern_learning_events_pattern_used", table_name="pattern_learning_events")
    op.drop_table("pattern_learning_events")

    op.drop_index("ix_feedback_created_at", table_name="pattern_feedbacks")
    op.drop_index("ix_feedback_merchant_category_type", table_name="pattern_feedbacks")
    op.drop_index("ix_feedback_pattern_correct", table_name="pattern_feedbacks")
    op.drop_index("ix_pattern_feedbacks_transaction_id", table_name="pattern_feedbacks")
    op.drop_table("pattern_feedbacks")

    op.drop_index("ix_aliases_canonical_confidence", table_name="merchant_aliases")
    op.drop_index("ix_merchant_aliases_normalized_name", table_name="merchant_aliases")
    op.drop_table("merchant_aliases")

    op.drop_index("ix_canonical_merchants_usage_count", table_name="canonical_merchants")
    op.drop_index("ix_canonical_merchants_name", table_name="canonical_merchants")
    op.drop_table("canonical_merchants")

    op.drop_index("ix_composites_category_active", table_name="composite_patterns")
    op.drop_table("composite_patterns")

    op.drop_index("ix_patterns_active_type", table_name="categorization_patterns")
    op.drop_index("ix_patterns_type_value", table_name="categorization_patterns")
    op.drop_index("ix_categorization_patterns_category_id", table_name="categorization_patterns")
    op.drop_table("categorization_patterns")

    op.drop_index("ix_categories_name", table_name="categories")
    op.drop_table("categories")
