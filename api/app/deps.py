from __future__ import annotations

from typing import Generator

from sqlalchemy.orm import Session

from .db import get_session
from .verification.engine import VerificationEngine, default_engine


def get_db() -> Generator[Session, None, None]:
    yield from get_session()


def get_verification_engine() -> VerificationEngine:
    """Shared engine instance; overridden in tests to inject a fixed clock."""
    return default_engine()
