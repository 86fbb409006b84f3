"""Notification inbox endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..deps import get_db
from ..services import notifications
from ..services.notifications import NOTIFICATION_TYPES

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=schemas.Page[schemas.Notification])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None, description="ISO timestamp cursor for pagination"),
    unread_only: bool = Query(False, description="Only return unread notifications"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Page[schemas.Notification]:
    """
    List notifications for the current user.

    Returns notifications in reverse chronological order with cursor-based pagination.
    """
    cursor_dt = None
    if cursor:
        try:
            cursor_dt = datetime.fromisoformat(cursor.replace("Z", "+00:00"))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid cursor format. Expected ISO timestamp.",
            )
        # Stored timestamps are naive UTC
        if cursor_dt.tzinfo is not None:
            cursor_dt = cursor_dt.astimezone(timezone.utc).replace(tzinfo=None)

    items, next_cursor = notifications.list_notifications(
        db,
        user_id=current_user.id,
        limit=limit,
        cursor=cursor_dt,
        unread_only=unread_only,
    )

    return schemas.Page(
        items=[schemas.Notification.model_validate(n) for n in items],
        next_cursor=next_cursor.isoformat() if next_cursor else None,
    )


@router.get("/unread-count", response_model=schemas.UnreadCount)
def get_unread_count(
    type: str | None = Query(None, description="Only count notifications of this type"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.UnreadCount:
    """Get unread notification count for the current user."""
    if type is not None and type not in NOTIFICATION_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown notification type: {type}",
        )
    count = notifications.get_unread_count(db, current_user.id, notification_type=type)
    return schemas.UnreadCount(unread_count=count)


@router.post("/mark-read", response_model=schemas.MarkReadResult)
def mark_notifications_read(
    payload: schemas.MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.MarkReadResult:
    """
    Mark specific notifications as read.

    Only notifications belonging to the current user are updated.
    """
    marked = notifications.mark_as_read(db, payload.notification_ids, current_user.id)
    return schemas.MarkReadResult(marked=marked)


@router.post("/mark-all-read", response_model=schemas.MarkReadResult)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.MarkReadResult:
    """Mark all notifications as read for the current user."""
    return schemas.MarkReadResult(marked=notifications.mark_all_as_read(db, current_user.id))
