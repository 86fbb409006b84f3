from __future__ import annotations

import logging
import os
from typing import Any

from celery import Celery

from . import settings

logger = logging.getLogger(__name__)

DEFAULT_REDIS = "redis://cache:6379/0"

celery_app = Celery(
    "trackid",
    broker=os.getenv("CELERY_BROKER_URL", DEFAULT_REDIS),
    backend=os.getenv("CELERY_RESULT_BACKEND", DEFAULT_REDIS),
)

celery_app.conf.update(
    task_default_queue="default",
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    worker_max_tasks_per_child=100,
    beat_schedule={
        "reconcile-karma": {
            "task": "app.tasks.reconcile_karma",
            "schedule": float(settings.KARMA_RECONCILE_INTERVAL_S),
        },
    },
    timezone="UTC",
)


@celery_app.task(name="app.tasks.reconcile_karma", bind=True)
def reconcile_karma(self) -> dict[str, Any]:
    """
    Periodic task to keep karma consistent with the transition log.

    Replays the verification transitions into the karma ledger (missing
    entries only), then rebuilds each affected user's cached karma total.
    """
    from . import models
    from .db import SessionLocal
    from .services.reputation import recompute_karma, replay_transitions

    db = SessionLocal()
    try:
        created = replay_transitions(db)

        user_ids = [
            user_id
            for (user_id,) in db.query(models.KarmaLedgerEntry.user_id).distinct()
        ]
        for user_id in user_ids:
            recompute_karma(db, user_id)
        db.commit()

        logger.info(
            f"Karma reconcile complete: {created} entries created, {len(user_ids)} users recomputed"
        )
        return {"status": "success", "created": created, "users": len(user_ids)}
    except Exception as e:
        db.rollback()
        logger.error(f"Karma reconcile failed: {e}", exc_info=True)
        raise
    finally:
        db.close()
