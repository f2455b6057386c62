"""Object key layout for the storage bucket.

Every object lives under a flat, four-segment key::

    <environment>/<retention_policy>/<owner_id>/<file_id>

The retention segment is what the bucket's lifecycle rules match on, so
objects expire without the application having to sweep them.
"""

from typing import Final, NamedTuple

_KEY_SEPARATOR: Final = '/'
_KEY_SEGMENTS: Final = 4


class ObjectKeyParts(NamedTuple):
    """The four components encoded in an object key."""

    environment: str
    retention_policy: str
    owner_id: str
    file_id: str


def make_key(
    environment: str,
    retention_policy: str,
    owner_id: str,
    file_id: str,
) -> str:
    """Build the object key for a file.

    Callers must pass separator-free segments.

    Args:
        environment: Deployment tier (e.g., 'production').
        retention_policy: Retention class (e.g., '7d', 'infinite').
        owner_id: ID of the owning user.
        file_id: ID of the file.

    Returns:
        Slash-joined object key.
    """
    return _KEY_SEPARATOR.join(
        (environment, retention_policy, owner_id, file_id),
    )


def parse_key(object_key: str) -> ObjectKeyParts | None:
    """Split an object key back into its components.

    Keys may come from stored or untrusted strings, so malformed input
    yields None instead of raising.

    Args:
        object_key: Key as produced by make_key.

    Returns:
        ObjectKeyParts, or None if the key does not have exactly four
        non-empty segments.
    """
    segments = object_key.split(_KEY_SEPARATOR)
    if len(segments) != _KEY_SEGMENTS or not all(segments):
        return None
    return ObjectKeyParts(*segments)


def is_valid_segment(segment: str) -> bool:
    """Check that a value can be used as one key segment."""
    return bool(segment) and _KEY_SEPARATOR not in segment
