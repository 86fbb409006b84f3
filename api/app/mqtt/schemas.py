"""MQTT payload schemas for notification and moderation-queue broadcasts."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class NotificationPayload(BaseModel):
    """Real-time copy of an inbox record, sent to its recipient."""

    id: UUID
    type: str
    recipient_user_id: UUID
    triggered_by_user_id: UUID
    post_id: UUID
    comment_id: UUID | None = None
    message: str
    created_at: datetime


class QueueEventPayload(BaseModel):
    """Moderation queue change, sent to every connected moderator."""

    event: Literal["new_review_submission", "review_resolved", "review_withdrawn"]
    post_id: UUID
    transition_id: int | None = None
    at: datetime
