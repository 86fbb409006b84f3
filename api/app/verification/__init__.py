"""Post identification state machine: commands, errors and statuses.

The engine itself is imported from ``app.verification.engine``.
"""

from .commands import (
    ArtistConfirm,
    ArtistDeny,
    CommunityVerify,
    ModeratorConfirm,
    ModeratorReject,
    ModeratorReopen,
    PostCommand,
    RemovePost,
    VerificationCommand,
)
from .errors import Conflict, Forbidden, InvalidState, NotFound, VerificationError
from .states import TagStatus, TransitionType, VerificationStatus

__all__ = [
    "ArtistConfirm",
    "ArtistDeny",
    "CommunityVerify",
    "Conflict",
    "Forbidden",
    "InvalidState",
    "ModeratorConfirm",
    "ModeratorReject",
    "ModeratorReopen",
    "NotFound",
    "PostCommand",
    "RemovePost",
    "TagStatus",
    "TransitionType",
    "VerificationCommand",
    "VerificationError",
    "VerificationStatus",
]
