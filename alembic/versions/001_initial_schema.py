"""initial schema: accounts, catalog, progress ledger, audit log

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "topics",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_topics"),
        sa.UniqueConstraint("slug", name="uq_topics_slug"),
    )

    op.create_table(
        "problems",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("topic_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("difficulty", sa.String(length=8), nullable=False),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("difficulty IN ('Easy', 'Medium', 'Hard')", name="ck_problems_difficulty"),
        sa.ForeignKeyConstraint(["topic_id"], ["topics.id"], name="fk_problems_topic_id_topics"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_problems_created_by_users"),
        sa.PrimaryKeyConstraint("id", name="pk_problems"),
        sa.UniqueConstraint("slug", name="uq_problems_slug"),
    )
    op.create_index("ix_problems_topic_id_order", "problems", ["topic_id", "order"])

    op.create_table(
        "user_progress",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("problem_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('not_started', 'completed')", name="ck_user_progress_status"),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_user_progress_completed_at_iff_completed",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_user_progress_user_id_users"),
        sa.ForeignKeyConstraint(["problem_id"], ["problems.id"], name="fk_user_progress_problem_id_problems"),
        sa.PrimaryKeyConstraint("id", name="pk_user_progress"),
        sa.UniqueConstraint("user_id", "problem_id", name="uq_user_progress_user_problem"),
    )
    op.create_index("ix_user_progress_user_id_status", "user_progress", ["user_id", "status"])

    op.create_table(
        "admin_logs",
        sa.Column("id", _ID, autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("entity_type", sa.String(length=16), nullable=True),
        sa.Column("metadata", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "action IN ('create_problem', 'update_problem', 'delete_problem', 'create_topic', 'update_topic', "
            "'delete_topic', 'promote_user', 'demote_user', 'activate_user', 'deactivate_user')",
            name="ck_admin_logs_action",
        ),
        sa.CheckConstraint(
            "entity_type IS NULL OR entity_type IN ('problem', 'topic', 'user')",
            name="ck_admin_logs_entity_type",
        ),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"], name="fk_admin_logs_actor_id_users"),
        sa.PrimaryKeyConstraint("id", name="pk_admin_logs"),
    )
    op.create_index("ix_admin_logs_actor_id_created_at", "admin_logs", ["actor_id", "created_at"])
    op.create_index("ix_admin_logs_entity", "admin_logs", ["entity_type", "entity_id", "created_at"])
    op.create_index("ix_admin_logs_created_at", "admin_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("admin_logs")
    op.drop_table("user_progress")
    op.drop_table("problems")
    op.drop_table("topics")
    op.drop_table("users")
