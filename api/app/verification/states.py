"""Verification statuses and the legal transitions between them."""

from __future__ import annotations

from enum import Enum

from .errors import InvalidState


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    COMMUNITY = "community"
    IDENTIFIED = "identified"
    REJECTED = "rejected"


class TagStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DENIED = "denied"


class TransitionType(str, Enum):
    COMMUNITY_VERIFY = "community_verify"
    MODERATOR_CONFIRM = "moderator_confirm"
    MODERATOR_REOPEN = "moderator_reopen"
    MODERATOR_REJECT = "moderator_reject"
    REMOVE_POST = "remove_post"


# transition -> {from_status: to_status}
TRANSITIONS: dict[TransitionType, dict[VerificationStatus, VerificationStatus]] = {
    TransitionType.COMMUNITY_VERIFY: {
        VerificationStatus.UNVERIFIED: VerificationStatus.COMMUNITY,
    },
    TransitionType.MODERATOR_CONFIRM: {
        VerificationStatus.UNVERIFIED: VerificationStatus.IDENTIFIED,
        VerificationStatus.COMMUNITY: VerificationStatus.IDENTIFIED,
    },
    TransitionType.MODERATOR_REOPEN: {
        VerificationStatus.COMMUNITY: VerificationStatus.UNVERIFIED,
        VerificationStatus.IDENTIFIED: VerificationStatus.UNVERIFIED,
        VerificationStatus.REJECTED: VerificationStatus.UNVERIFIED,
    },
    TransitionType.MODERATOR_REJECT: {
        VerificationStatus.UNVERIFIED: VerificationStatus.REJECTED,
    },
}


def target_status(transition: TransitionType, current: str) -> VerificationStatus:
    """Return the status reached by applying transition to current, or raise InvalidState."""
    allowed = TRANSITIONS.get(transition, {})
    try:
        return allowed[VerificationStatus(current)]
    except (KeyError, ValueError):
        raise InvalidState(
            f"Cannot apply {transition.value} to a post in status '{current}'"
        ) from None
