"""Errors raised by the verification engine.

Each error is terminal for its request and is raised only after the session
has been rolled back.
"""

from __future__ import annotations

from typing import Any


class VerificationError(Exception):
    """Base class for verification engine errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Forbidden(VerificationError):
    """Acting user lacks the role or ownership the transition requires."""

    status_code = 403


class InvalidState(VerificationError):
    """Transition is not legal from the current status, including lost races."""

    status_code = 409


class NotFound(VerificationError):
    """Referenced post, comment or user does not exist."""

    status_code = 404


class Conflict(VerificationError):
    """Idempotency key replay. Callers treat this as success and return `result`."""

    status_code = 200

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
