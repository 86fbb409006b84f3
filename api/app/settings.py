"""Centralized environment-driven settings.

Keep this module lightweight: stdlib only, no app imports, to avoid circular deps.
"""

from __future__ import annotations

import os


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Run Alembic upgrade during startup. Tests build the schema from metadata instead.
RUN_MIGRATIONS: bool = _bool_env("RUN_MIGRATIONS", True)

# Redis-backed unread counters. When disabled, counts always come from the database.
CACHE_ENABLED: bool = _bool_env("CACHE_ENABLED", True)

# Real-time broadcast of notification records over MQTT (fire-and-forget).
MQTT_ENABLED: bool = _bool_env("MQTT_ENABLED", True)

COMMENT_MAX_LENGTH: int = _int_env("COMMENT_MAX_LENGTH", 2000)

# Comment text included in notification messages, in characters.
NOTIFICATION_PREVIEW_CHARS: int = _int_env("NOTIFICATION_PREVIEW_CHARS", 100)

# Celery beat interval for replaying the transition log into the karma ledger.
KARMA_RECONCILE_INTERVAL_S: int = _int_env("KARMA_RECONCILE_INTERVAL_S", 3600)
