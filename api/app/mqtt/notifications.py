"""MQTT publishing for notification records and moderation-queue events."""

from __future__ import annotations

import logging

from .publisher import publish, topic
from .schemas import NotificationPayload, QueueEventPayload

logger = logging.getLogger(__name__)


def publish_notification(payload: NotificationPayload) -> bool:
    """
    Broadcast a notification to its recipient.

    Publishes to topic: trackid/notifications/user/{recipient_user_id}
    """
    target = topic("notifications", "user", payload.recipient_user_id)
    success = publish(target, payload.model_dump(mode="json"), qos=1, retain=False)
    if not success:
        logger.debug(f"Notification {payload.id} not broadcast to {target}")
    return success


def publish_queue_event(payload: QueueEventPayload) -> bool:
    """Broadcast a moderation queue change on trackid/moderation/queue."""
    target = topic("moderation", "queue")
    success = publish(target, payload.model_dump(mode="json"), qos=1, retain=False)
    if not success:
        logger.debug(f"Queue event {payload.event} for post {payload.post_id} not broadcast")
    return success
