"""Rule store and knowledge snippets.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Learned rules, keyed by rule id
    op.create_table(
        "rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("pattern", sa.Text(), nullable=False),
        sa.Column("suggestion", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("confidence", sa.Float(), server_default="0.7"),
        sa.Column("usage_count", sa.Integer(), server_default="1"),
        sa.Column("origin", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_used", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_rules_category", "rules", ["category"])

    # Context snippets retrieved before a step runs
    op.create_table(
        "knowledge_snippets",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("title", sa.String(), server_default=""),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("tags", postgresql.JSONB(), server_default="[]"),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_knowledge_snippets_role", "knowledge_snippets", ["role"])


def downgrade() -> None:
    op.drop_index("idx_knowledge_snippets_role", table_name="knowledge_snippets")
    op.drop_table("knowledge_snippets")
    op.drop_index("idx_rules_category", table_name="rules")
    op.drop_table("rules")
