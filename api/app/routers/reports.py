"""Report endpoints."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user, require_moderator
from ..deps import get_db, get_verification_engine
from ..verification.engine import VerificationEngine
from ..verification.errors import Conflict

router = APIRouter(prefix="/reports", tags=["Reports"])
logger = logging.getLogger(__name__)


def _get_report(db: Session, report_id: UUID) -> models.Report:
    report = db.get(models.Report, report_id)
    if not report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report


@router.post("", response_model=schemas.Report, status_code=status.HTTP_201_CREATED)
def create_report(
    payload: schemas.ReportCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> schemas.Report:
    """Report a post to the moderators."""
    if not db.get(models.Post, payload.post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    report = models.Report(
        id=uuid.uuid4(),
        post_id=payload.post_id,
        reported_by=current_user.id,
        reason=payload.reason,
        status="pending",
        created_at=datetime.now(timezone.utc).replace(tzinfo=None),
    )
    db.add(report)
    db.commit()
    db.refresh(report)

    logger.info(f"Report {report.id} filed against post {payload.post_id} by {current_user.id}")
    return schemas.Report.model_validate(report)


@router.get("", response_model=schemas.Page[schemas.Report])
def list_reports(
    status_filter: str = Query("pending", alias="status", pattern="^(pending|reviewed|dismissed)$"),
    limit: int = Query(50, ge=1, le=200),
    cursor: str | None = Query(None, description="ISO timestamp cursor for pagination"),
    db: Session = Depends(get_db),
    moderator: models.User = Depends(require_moderator),
) -> schemas.Page[schemas.Report]:
    """List reports, oldest first (moderator only)."""
    query = db.query(models.Report).filter(models.Report.status == status_filter)

    if cursor:
        try:
            cursor_dt = datetime.fromisoformat(cursor)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid cursor format. Expected ISO timestamp.",
            )
        query = query.filter(models.Report.created_at > cursor_dt)

    reports = query.order_by(models.Report.created_at.asc()).limit(limit + 1).all()
    page = reports[:limit]
    next_cursor = page[-1].created_at.isoformat() if len(reports) > limit else None

    return schemas.Page(
        items=[schemas.Report.model_validate(r) for r in page],
        next_cursor=next_cursor,
    )


@router.post("/{id}/dismiss", response_model=schemas.Report)
def dismiss_report(
    id: UUID,
    db: Session = Depends(get_db),
    moderator: models.User = Depends(require_moderator),
) -> schemas.Report:
    """Dismiss a report. The post and its verification state are untouched."""
    report = _get_report(db, id)
    if report.status != "pending":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Report is already {report.status}",
        )

    report.status = "dismissed"
    report.reviewed_by = moderator.id
    report.reviewed_at = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    db.refresh(report)

    logger.info(f"Report {report.id} dismissed by {moderator.id}")
    return schemas.Report.model_validate(report)


@router.post("/{id}/remove-post", status_code=status.HTTP_204_NO_CONTENT)
def remove_reported_post(
    id: UUID,
    db: Session = Depends(get_db),
    moderator: models.User = Depends(require_moderator),
    engine: VerificationEngine = Depends(get_verification_engine),
) -> None:
    """
    Remove the reported post.

    The post is deleted with its comments, votes, notifications and reports;
    karma from a confirmed identification is reversed.
    """
    report = _get_report(db, id)
    post_id = report.post_id
    try:
        engine.remove_post(db, post_id, moderator.id, transition_id=f"report-{report.id}")
    except Conflict:
        return None
    logger.info(f"Post {post_id} removed via report {id}")
