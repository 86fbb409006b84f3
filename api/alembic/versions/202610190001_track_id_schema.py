"""track identification schema

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ========================================================================
    # users
    # ========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("username_normalized", sa.String(length=50), nullable=False),
        sa.Column("account_type", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("verified_artist", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("karma", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_username_normalized", "users", ["username_normalized"], unique=True)
    op.create_index("ix_users_account_type", "users", ["account_type"])
    op.create_index("ix_users_karma", "users", ["karma"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    # ========================================================================
    # posts
    # ========================================================================
    op.create_table(
        "posts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("genre", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("video_url", sa.String(length=1000), nullable=True),
        sa.Column(
            "verification_status", sa.String(length=20), nullable=False, server_default="unverified"
        ),
        sa.Column("verified_comment_id", sa.Uuid(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_posts_id", "posts", ["id"])
    op.create_index("ix_posts_user_id", "posts", ["user_id"])
    op.create_index("ix_posts_verification_status", "posts", ["verification_status"])
    op.create_index("ix_posts_created_at", "posts", ["created_at"])
    op.create_index("ix_posts_status_updated", "posts", ["verification_status", "updated_at"])

    # ========================================================================
    # comments
    # ========================================================================
    op.create_table(
        "comments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "post_id", sa.Uuid(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("parent_id", sa.Uuid(), sa.ForeignKey("comments.id"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("tagged_artist_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("tag_status", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
    )
    op.create_index("ix_comments_id", "comments", ["id"])
    op.create_index("ix_comments_post_id", "comments", ["post_id"])
    op.create_index("ix_comments_user_id", "comments", ["user_id"])
    op.create_index("ix_comments_parent_id", "comments", ["parent_id"])
    op.create_index("ix_comments_tagged_artist_id", "comments", ["tagged_artist_id"])
    op.create_index("ix_comments_created_at", "comments", ["created_at"])
    op.create_index("ix_comments_post_created", "comments", ["post_id", "created_at"])

    op.create_table(
        "comment_votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "comment_id",
            sa.Uuid(),
            sa.ForeignKey("comments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("direction", sa.String(length=4), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("comment_id", "user_id", name="uq_comment_votes_comment_user"),
    )
    op.create_index("ix_comment_votes_comment_id", "comment_votes", ["comment_id"])
    op.create_index("ix_comment_votes_user_id", "comment_votes", ["user_id"])

    # ========================================================================
    # verification history & karma
    # ========================================================================
    op.create_table(
        "verification_transitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Uuid(), nullable=False),
        sa.Column("transition_type", sa.String(length=30), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=False),
        sa.Column("to_status", sa.String(length=20), nullable=True),
        sa.Column("comment_id", sa.Uuid(), nullable=True),
        sa.Column("credited_user_id", sa.Uuid(), nullable=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column(
            "reverses_transition_id",
            sa.Integer(),
            sa.ForeignKey("verification_transitions.id"),
            nullable=True,
        ),
        sa.Column("idempotency_key", sa.String(length=100), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "post_id",
            "transition_type",
            "idempotency_key",
            name="uq_verification_transitions_idempotency",
        ),
    )
    op.create_index("ix_verification_transitions_post_id", "verification_transitions", ["post_id"])
    op.create_index(
        "ix_verification_transitions_transition_type",
        "verification_transitions",
        ["transition_type"],
    )
    op.create_index(
        "ix_verification_transitions_credited_user_id",
        "verification_transitions",
        ["credited_user_id"],
    )
    op.create_index(
        "ix_verification_transitions_actor_id", "verification_transitions", ["actor_id"]
    )
    op.create_index(
        "ix_verification_transitions_created_at", "verification_transitions", ["created_at"]
    )
    op.create_index(
        "ix_verification_transitions_post_id_id", "verification_transitions", ["post_id", "id"]
    )

    op.create_table(
        "karma_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=200), nullable=True),
        sa.Column("post_id", sa.Uuid(), nullable=True),
        sa.Column("comment_id", sa.Uuid(), nullable=True),
        sa.Column("entry_key", sa.String(length=100), nullable=False, unique=True),
        _created_at(),
    )
    op.create_index("ix_karma_ledger_user_id", "karma_ledger", ["user_id"])
    op.create_index("ix_karma_ledger_created_at", "karma_ledger", ["created_at"])

    # ========================================================================
    # notifications
    # ========================================================================
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("triggered_by_user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "post_id", sa.Uuid(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("comment_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("message", sa.String(length=300), nullable=False),
        sa.Column("dedupe_key", sa.String(length=200), nullable=False, unique=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_recipient_user_id", "notifications", ["recipient_user_id"])
    op.create_index("ix_notifications_post_id", "notifications", ["post_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_read", "notifications", ["read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])
    op.create_index(
        "ix_notifications_recipient_created",
        "notifications",
        ["recipient_user_id", sa.text("created_at DESC")],
    )

    # ========================================================================
    # reports
    # ========================================================================
    op.create_table(
        "reports",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "post_id", sa.Uuid(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("reported_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_reports_id", "reports", ["id"])
    op.create_index("ix_reports_post_id", "reports", ["post_id"])
    op.create_index("ix_reports_reported_by", "reports", ["reported_by"])
    op.create_index("ix_reports_status", "reports", ["status"])
    op.create_index("ix_reports_created_at", "reports", ["created_at"])
    op.create_index("ix_reports_status_created", "reports", ["status", sa.text("created_at DESC")])


def downgrade() -> None:
    op.drop_table("reports")
    op.drop_table("notifications")
    op.drop_table("karma_ledger")
    op.drop_table("verification_transitions")
    op.drop_table("comment_votes")
    op.drop_table("comments")
    op.drop_table("posts")
    op.drop_table("users")
