"""
Notification Dispatcher.

Creates inbox records for verification transitions and manages the inbox
(listing, unread counts, read state). Records are staged inside the caller's
transaction; real-time delivery happens only after commit and never fails the
transition.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, settings
from ..cache import cache_decr, cache_get_int, cache_incr, cache_set_int
from ..mqtt.notifications import publish_notification, publish_queue_event
from ..mqtt.schemas import NotificationPayload, QueueEventPayload

logger = logging.getLogger(__name__)

# Cache key patterns
UNREAD_COUNT_KEY = "notif:unread:{user_id}"

NOTIFICATION_TYPES = (
    "community_identified",
    "moderator_confirmed",
    "moderator_reopened",
    "moderator_rejected",
    "artist_confirmed",
    "artist_denied",
    "artist_tagged",
)

MESSAGES = {
    "community_identified": "submitted a track ID for moderator review",
    "moderator_confirmed": "confirmed the track ID",
    "moderator_reopened": "reopened the track ID for review",
    "moderator_rejected": "rejected the identification request",
    "artist_confirmed": "confirmed your artist tag",
    "artist_denied": "denied your artist tag",
    "artist_tagged": "tagged you in a track ID",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dedupe_key(notification_type: str, post_id: UUID, recipient_id: UUID, transition_ref: str) -> str:
    return f"{notification_type}:{post_id}:{recipient_id}:{transition_ref}"


def _preview(text: str | None) -> str | None:
    if not text:
        return None
    limit = settings.NOTIFICATION_PREVIEW_CHARS
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class NotificationDispatcher:
    """Stages notification records and broadcasts them after commit."""

    def stage(
        self,
        db: Session,
        notification_type: str,
        recipient_ids: Iterable[UUID | None],
        *,
        actor_id: UUID,
        post_id: UUID,
        transition_ref: str,
        comment: models.Comment | None = None,
        created_at: datetime | None = None,
    ) -> list[models.Notification]:
        """
        Add one notification per distinct recipient to the session without committing.

        Args:
            db: Session holding the transition's writes
            notification_type: One of NOTIFICATION_TYPES
            recipient_ids: Users to notify; None entries and duplicates are ignored
            actor_id: User who triggered the transition (never notified)
            post_id: Post the transition applied to
            transition_ref: Identifier of the transition, part of the dedupe key
            comment: Comment the notification refers to, if any
            created_at: Timestamp for the records (defaults to now, UTC)

        Returns:
            Newly staged notifications (already-recorded keys are skipped)
        """
        if notification_type not in MESSAGES:
            raise ValueError(f"Unknown notification type: {notification_type}")

        message = MESSAGES[notification_type]
        preview = _preview(comment.content if comment is not None else None)
        if preview:
            message = f'{message}: "{preview}"'

        staged: list[models.Notification] = []
        seen: set[UUID] = set()
        for recipient_id in recipient_ids:
            if recipient_id is None or recipient_id in seen:
                continue
            seen.add(recipient_id)

            # Don't notify users about their own actions
            if recipient_id == actor_id:
                continue

            key = dedupe_key(notification_type, post_id, recipient_id, transition_ref)
            exists = (
                db.query(models.Notification.id)
                .filter(models.Notification.dedupe_key == key)
                .first()
            )
            if exists:
                logger.debug(f"Notification {key} already recorded, skipping")
                continue

            notification = models.Notification(
                id=uuid.uuid4(),
                recipient_user_id=recipient_id,
                triggered_by_user_id=actor_id,
                post_id=post_id,
                comment_id=comment.id if comment is not None else None,
                type=notification_type,
                message=message[:300],
                dedupe_key=key,
                read=False,
                created_at=created_at or _utcnow(),
            )
            db.add(notification)
            staged.append(notification)

        return staged

    @staticmethod
    def outbox(notifications: Iterable[models.Notification]) -> list[NotificationPayload]:
        """Snapshot staged records for delivery; call before commit expires them."""
        return [
            NotificationPayload(
                id=n.id,
                type=n.type,
                recipient_user_id=n.recipient_user_id,
                triggered_by_user_id=n.triggered_by_user_id,
                post_id=n.post_id,
                comment_id=n.comment_id,
                message=n.message,
                created_at=n.created_at,
            )
            for n in notifications
        ]

    def broadcast(self, payloads: Iterable[NotificationPayload]) -> None:
        """Fire-and-forget delivery of committed records."""
        for payload in payloads:
            try:
                _increment_unread_count(payload.recipient_user_id)
                publish_notification(payload)
            except Exception as e:
                logger.warning(f"Failed to deliver notification {payload.id}: {e}")

    def announce_queue_event(
        self,
        event: str,
        post_id: UUID,
        transition_id: int | None = None,
        at: datetime | None = None,
    ) -> None:
        try:
            publish_queue_event(
                QueueEventPayload(
                    event=event,
                    post_id=post_id,
                    transition_id=transition_id,
                    at=at or _utcnow(),
                )
            )
        except Exception as e:
            logger.warning(f"Failed to announce queue event {event} for post {post_id}: {e}")


# =========================================================================
# Inbox
# =========================================================================


def list_notifications(
    db: Session,
    user_id: UUID,
    limit: int = 50,
    cursor: datetime | None = None,
    unread_only: bool = False,
) -> tuple[list[models.Notification], datetime | None]:
    """
    List notifications for a user, newest first, with cursor-based pagination.

    Returns:
        Tuple of (notifications, next_cursor)
    """
    query = db.query(models.Notification).filter(
        models.Notification.recipient_user_id == user_id
    )

    if unread_only:
        query = query.filter(models.Notification.read == False)

    if cursor:
        query = query.filter(models.Notification.created_at < cursor)

    # Fetch limit + 1 to determine if there are more results
    notifications = (
        query.order_by(models.Notification.created_at.desc()).limit(limit + 1).all()
    )

    has_more = len(notifications) > limit
    items = notifications[:limit]
    next_cursor = items[-1].created_at if has_more and items else None
    return items, next_cursor


def get_unread_count(db: Session, user_id: UUID, notification_type: str | None = None) -> int:
    """Unread count, from Redis when cached (all types only) with a database fallback."""
    cache_key = UNREAD_COUNT_KEY.format(user_id=user_id)
    if notification_type is None:
        cached = cache_get_int(cache_key)
        if cached is not None:
            return cached

    query = db.query(func.count(models.Notification.id)).filter(
        models.Notification.recipient_user_id == user_id,
        models.Notification.read == False,
    )
    if notification_type is not None:
        query = query.filter(models.Notification.type == notification_type)
    count = query.scalar() or 0

    if notification_type is None:
        cache_set_int(cache_key, count)
    return count


def mark_as_read(db: Session, notification_ids: list[UUID], user_id: UUID) -> int:
    """Mark the user's own notifications as read; returns how many changed."""
    count = (
        db.query(models.Notification)
        .filter(
            models.Notification.id.in_(notification_ids),
            models.Notification.recipient_user_id == user_id,
            models.Notification.read == False,
        )
        .update({"read": True, "read_at": _utcnow()}, synchronize_session=False)
    )
    db.commit()

    if count > 0:
        cache_decr(UNREAD_COUNT_KEY.format(user_id=user_id), count)
    return count


def mark_all_as_read(db: Session, user_id: UUID) -> int:
    count = (
        db.query(models.Notification)
        .filter(
            models.Notification.recipient_user_id == user_id,
            models.Notification.read == False,
        )
        .update({"read": True, "read_at": _utcnow()}, synchronize_session=False)
    )
    db.commit()

    if count > 0:
        cache_set_int(UNREAD_COUNT_KEY.format(user_id=user_id), 0)
    return count


def _increment_unread_count(user_id: UUID) -> None:
    cache_incr(UNREAD_COUNT_KEY.format(user_id=user_id))
