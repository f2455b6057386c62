"""Read-access decisions for files.

Pure logic over an already-loaded File: no queries, no storage calls.
Public read access is a capability check, never an ownership transfer.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, final

from django.utils import timezone

from server.apps.files.models import File, FileStatus, Permission


@final
class AccessIntent(enum.Enum):
    """What the requester wants to do with the file."""

    METADATA = 'metadata'
    DOWNLOAD = 'download'


@final
class AccessReason(enum.Enum):
    """Why access was granted or denied."""

    OWNER = 'owner'
    PUBLIC = 'public'
    EXPIRED = 'expired'
    NOT_VALIDATED = 'not_validated'
    PRIVATE = 'private'


@dataclass(frozen=True, slots=True)
class AccessDecision:
    """Outcome of resolve_access."""

    allowed: bool
    reason: AccessReason


def resolve_access(
    file_instance: File,
    requester_id: Any = None,
    intent: AccessIntent = AccessIntent.DOWNLOAD,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide whether a requester may read a file.

    Expired files are denied to everyone. Downloads additionally need a
    validated upload. After that, owners always pass, anonymous and
    foreign requesters pass only for public files.

    Args:
        file_instance: File to check.
        requester_id: ID of the requesting user, None for anonymous.
        intent: Metadata read or download.
        now: Reference time, current time if omitted.

    Returns:
        AccessDecision with the verdict and its reason.
    """
    current_time = now or timezone.now()

    if file_instance.is_expired(current_time):
        return AccessDecision(allowed=False, reason=AccessReason.EXPIRED)

    if (
        intent is AccessIntent.DOWNLOAD
        and file_instance.status != FileStatus.VALIDATED
    ):
        return AccessDecision(allowed=False, reason=AccessReason.NOT_VALIDATED)

    if requester_id is not None and str(file_instance.owner_id) == str(requester_id):
        return AccessDecision(allowed=True, reason=AccessReason.OWNER)

    if file_instance.permissions == Permission.PUBLIC:
        return AccessDecision(allowed=True, reason=AccessReason.PUBLIC)

    return AccessDecision(allowed=False, reason=AccessReason.PRIVATE)
