"""problem tags

Revision ID: 002_problem_tags
Revises: 001_initial_schema
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "002_problem_tags"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.add_column("problems", sa.Column("tags", _JSON, nullable=False, server_default="[]"))


def downgrade() -> None:
    op.drop_column("problems", "tags")
