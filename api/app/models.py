from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship, validates

from .db import Base


# ============================================================================
# CORE ENTITIES
# ============================================================================


class User(Base):
    """User account. Identity is issued externally; this row holds roles and karma."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    username = Column(String(50), nullable=False)  # Display form, case preserved
    username_normalized = Column(
        String(50), unique=True, nullable=False, index=True
    )  # Lower-cased for case-insensitive uniqueness

    # Roles
    account_type = Column(
        String(20), nullable=False, default="user", index=True
    )  # user, artist, moderator
    verified_artist = Column(Boolean, nullable=False, default=False)

    # Cached sum of karma_ledger deltas, never negative
    karma = Column(Integer, nullable=False, default=0, index=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    # Relationships
    posts = relationship("Post", back_populates="owner", foreign_keys="Post.user_id")
    comments = relationship("Comment", back_populates="author", foreign_keys="Comment.user_id")
    karma_ledger = relationship(
        "KarmaLedgerEntry", back_populates="user", cascade="all, delete-orphan"
    )

    @validates("username")
    def _normalize_username(self, key, value):
        self.username_normalized = value.strip().lower()
        return value

    @property
    def is_moderator(self) -> bool:
        return self.account_type == "moderator"

    @property
    def is_verified_artist(self) -> bool:
        return self.account_type == "artist" and bool(self.verified_artist)


class Post(Base):
    """Clip uploaded by its owner, asking for the track to be identified."""

    __tablename__ = "posts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # Content
    description = Column(Text, nullable=False, default="")
    genre = Column(String(50), nullable=False, default="")
    video_url = Column(String(1000), nullable=True)

    # Verification state, written only by the verification engine
    verification_status = Column(
        String(20), nullable=False, default="unverified", index=True
    )  # unverified, community, identified, rejected
    verified_comment_id = Column(Uuid, nullable=True)

    # Optimistic concurrency counter; every UPDATE is conditioned on it
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )
    updated_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    owner = relationship("User", back_populates="posts", foreign_keys=[user_id])
    comments = relationship(
        "Comment",
        back_populates="post",
        cascade="all, delete-orphan",
        foreign_keys="Comment.post_id",
        order_by="Comment.created_at",
    )
    notifications = relationship(
        "Notification", back_populates="post", cascade="all, delete-orphan"
    )
    reports = relationship("Report", back_populates="post", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_posts_status_updated", verification_status, updated_at),
    )

    @property
    def verified_comment(self) -> "Comment | None":
        if self.verified_comment_id is None:
            return None
        for comment in self.comments:
            if comment.id == self.verified_comment_id:
                return comment
        return None


class Comment(Base):
    """Comment proposing an identification, with one level of replies."""

    __tablename__ = "comments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    post_id = Column(Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(Uuid, ForeignKey("comments.id"), nullable=True, index=True)

    content = Column(Text, nullable=False)

    # Artist tag
    tagged_artist_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    tag_status = Column(
        String(20), nullable=False, default="none"
    )  # none, pending, confirmed, denied

    # Versioned separately from the post: artist actions never contend with moderators
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    # Relationships
    post = relationship("Post", back_populates="comments", foreign_keys=[post_id])
    author = relationship("User", back_populates="comments", foreign_keys=[user_id])
    tagged_artist = relationship("User", foreign_keys=[tagged_artist_id])
    parent = relationship("Comment", remote_side=[id], backref="replies")
    votes = relationship("CommentVote", back_populates="comment", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (Index("ix_comments_post_created", post_id, created_at),)

    @property
    def is_identified(self) -> bool:
        post = self.post
        return (
            post is not None
            and post.verification_status == "identified"
            and post.verified_comment_id == self.id
        )

    @property
    def vote_score(self) -> int:
        return sum(1 if v.direction == "up" else -1 for v in self.votes)


class CommentVote(Base):
    """One vote per (comment, user); changing direction updates the row."""

    __tablename__ = "comment_votes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    comment_id = Column(Uuid, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    direction = Column(String(4), nullable=False)  # up, down

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    # Relationships
    comment = relationship("Comment", back_populates="votes")

    __table_args__ = (
        UniqueConstraint("comment_id", "user_id", name="uq_comment_votes_comment_user"),
    )


# ============================================================================
# VERIFICATION HISTORY & REPUTATION
# ============================================================================


class VerificationTransition(Base):
    """Append-only log of applied verification transitions."""

    __tablename__ = "verification_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # No FK: history outlives removed posts so karma can be replayed
    post_id = Column(Uuid, nullable=False, index=True)
    transition_type = Column(
        String(30), nullable=False, index=True
    )  # community_verify, moderator_confirm, moderator_reopen, moderator_reject, remove_post
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=True)  # NULL for remove_post
    comment_id = Column(Uuid, nullable=True)
    credited_user_id = Column(Uuid, nullable=True, index=True)  # Comment author affected by karma
    actor_id = Column(Uuid, nullable=False, index=True)
    reverses_transition_id = Column(
        Integer, ForeignKey("verification_transitions.id"), nullable=True
    )
    # Client retry key, scoped to one post and transition type
    idempotency_key = Column(String(100), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    __table_args__ = (
        Index("ix_verification_transitions_post_id_id", post_id, id),
        UniqueConstraint(
            "post_id",
            "transition_type",
            "idempotency_key",
            name="uq_verification_transitions_idempotency",
        ),
    )


class KarmaLedgerEntry(Base):
    """Karma change applied exactly once per entry_key."""

    __tablename__ = "karma_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=True)
    post_id = Column(Uuid, nullable=True)
    comment_id = Column(Uuid, nullable=True)
    entry_key = Column(String(100), nullable=False, unique=True)  # confirm:{tid} / reverse:{tid}

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    # Relationships
    user = relationship("User", back_populates="karma_ledger")


# ============================================================================
# NOTIFICATIONS
# ============================================================================


class Notification(Base):
    """Inbox record created by the notification dispatcher."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    recipient_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    triggered_by_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    post_id = Column(Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    comment_id = Column(Uuid, nullable=True)

    type = Column(String(50), nullable=False, index=True)
    message = Column(String(300), nullable=False)

    # {type}:{post_id}:{recipient_user_id}:{transition_id}
    dedupe_key = Column(String(200), nullable=False, unique=True)

    # Status
    read = Column(Boolean, nullable=False, default=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    # Relationships
    post = relationship("Post", back_populates="notifications")
    triggered_by = relationship("User", foreign_keys=[triggered_by_user_id])

    __table_args__ = (
        Index("ix_notifications_recipient_created", recipient_user_id, created_at.desc()),
    )


# ============================================================================
# MODERATION
# ============================================================================


class Report(Base):
    """User-submitted report against a post."""

    __tablename__ = "reports"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    post_id = Column(Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    reported_by = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)

    status = Column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, reviewed, dismissed
    reviewed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )

    # Relationships
    post = relationship("Post", back_populates="reports")
    reporter = relationship("User", foreign_keys=[reported_by])

    __table_args__ = (
        Index("ix_reports_status_created", status, created_at.desc()),
    )
