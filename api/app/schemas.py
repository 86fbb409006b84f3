from __future__ import annotations

from datetime import datetime
from typing import Generic, Literal, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from . import settings

# ============================================================================
# BASE SCHEMAS
# ============================================================================


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """Generic paginated response."""

    items: list[T]
    next_cursor: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["ok"] = "ok"
    uptime_s: float | None = None


# ============================================================================
# USER SCHEMAS
# ============================================================================


class User(BaseModel):
    """Public user profile."""

    id: UUID
    username: str
    account_type: Literal["user", "artist", "moderator"]
    verified_artist: bool
    karma: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Karma(BaseModel):
    user_id: UUID
    karma: int = Field(..., ge=0)


class KarmaEntry(BaseModel):
    """One karma ledger entry."""

    delta: int
    reason: str | None = None
    post_id: UUID | None = None
    comment_id: UUID | None = None
    entry_key: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Reputation(BaseModel):
    """Karma with the ledger entries behind it."""

    user_id: UUID
    karma: int = Field(..., ge=0)
    identified_comments: int
    history: list[KarmaEntry]


# ============================================================================
# POST SCHEMAS
# ============================================================================


class Post(BaseModel):
    """Clip awaiting or carrying a track identification."""

    id: UUID
    user_id: UUID
    description: str
    genre: str
    video_url: str | None = None
    verification_status: Literal["unverified", "community", "identified", "rejected"]
    verified_comment_id: UUID | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PostCreate(BaseModel):
    """Create post request."""

    description: str = Field("", max_length=5000)
    genre: str = Field("", max_length=50)
    video_url: str | None = Field(None, max_length=1000)


# ============================================================================
# COMMENT SCHEMAS
# ============================================================================


class Comment(BaseModel):
    """Comment on a post."""

    id: UUID
    post_id: UUID
    user_id: UUID
    parent_id: UUID | None = None
    content: str
    tagged_artist_id: UUID | None = None
    tag_status: Literal["none", "pending", "confirmed", "denied"]
    is_identified: bool
    vote_score: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    _author_username_cache: str | None = None

    @model_validator(mode="wrap")
    @classmethod
    def extract_author_username(cls, data, handler):
        """Extract author username from the ORM model during validation."""
        instance = handler(data)

        if hasattr(data, "author") and data.author:
            instance._author_username_cache = data.author.username

        return instance

    @computed_field
    @property
    def author_username(self) -> str:
        return self._author_username_cache or "unknown"


class CommentThread(Comment):
    """Top-level comment with its replies, as ranked for display."""

    replies: list[Comment] = []


class CommentCreate(BaseModel):
    """Create comment request."""

    content: str = Field(..., min_length=1, max_length=settings.COMMENT_MAX_LENGTH)
    parent_id: UUID | None = None
    tagged_artist_id: UUID | None = None


class VoteRequest(BaseModel):
    direction: Literal["up", "down"]


class VoteResult(BaseModel):
    comment_id: UUID
    vote_score: int
    my_vote: Literal["up", "down"] | None = None


# ============================================================================
# VERIFICATION SCHEMAS
# ============================================================================


class TransitionRequest(BaseModel):
    """Body shared by transitions that take no arguments beyond the post."""

    transition_id: str | None = Field(None, min_length=1, max_length=100)


class CommunityVerifyRequest(TransitionRequest):
    comment_id: UUID


class ModeratorConfirmRequest(TransitionRequest):
    comment_id: UUID | None = None


class PendingVerification(BaseModel):
    """Moderation queue entry: a post with the community's selected comment."""

    post: Post
    selected_comment: Comment | None = None
    owner_username: str | None = None


class PendingQueue(BaseModel):
    items: list[PendingVerification]
    total: int


# ============================================================================
# NOTIFICATION SCHEMAS
# ============================================================================


class Notification(BaseModel):
    """Inbox record."""

    id: UUID
    type: str
    post_id: UUID
    comment_id: UUID | None = None
    triggered_by_user_id: UUID
    message: str
    read: bool
    read_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UnreadCount(BaseModel):
    unread_count: int


class MarkReadRequest(BaseModel):
    notification_ids: list[UUID] = Field(..., min_length=1, max_length=200)


class MarkReadResult(BaseModel):
    marked: int


# ============================================================================
# REPORT SCHEMAS
# ============================================================================


class Report(BaseModel):
    """Content moderation report."""

    id: UUID
    post_id: UUID
    reported_by: UUID
    reason: str
    status: Literal["pending", "reviewed", "dismissed"]
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportCreate(BaseModel):
    """Create report request."""

    post_id: UUID
    reason: str = Field(..., min_length=1, max_length=2000)
