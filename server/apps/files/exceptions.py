"""Exceptions for files app.

Mapping these kinds to HTTP status codes is left to the calling layer.
"""

from django.core.exceptions import ValidationError as DjangoValidationError


class FilesError(Exception):
    """Base class for every error raised by the files app."""


class ValidationError(DjangoValidationError, FilesError):  # noqa: WPS440
    """Raised when input is malformed (bad path, filename, policy, ...)."""


class NotFoundError(FilesError):
    """Raised when an entity is not visible to the requesting owner.

    Deliberately used both for "does not exist" and "exists but belongs
    to someone else", so callers cannot probe for other users' ids.
    """

    def __init__(self, entity: str, entity_id: object) -> None:
        """Initialize NotFoundError.

        Args:
            entity: Human-readable entity name (e.g., 'File').
            entity_id: Identifier that was looked up.
        """
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} not found: {entity_id}')


class ConflictError(FilesError):
    """Raised when a directory already occupies the requested path."""

    def __init__(self, full_path: str) -> None:
        """Initialize ConflictError.

        Args:
            full_path: The path that is already taken.
        """
        self.full_path = full_path
        super().__init__(f'Directory already exists at this path: {full_path}')


class InvalidOperationError(FilesError):
    """Raised for structurally disallowed operations (e.g., cyclic moves)."""


class NotEmptyError(InvalidOperationError):
    """Raised when deleting a directory that still has subdirectories."""

    def __init__(self, full_path: str, child_count: int) -> None:
        """Initialize NotEmptyError.

        Args:
            full_path: Path of the directory that could not be deleted.
            child_count: Number of direct child directories.
        """
        self.full_path = full_path
        self.child_count = child_count
        super().__init__(
            f'Directory is not empty: {full_path} '
            f'has {child_count} subdirectories',
        )


class StorageMismatchError(FilesError):
    """Raised when the object store disagrees with the database record."""

    def __init__(self, file_id: str, object_key: str) -> None:
        """Initialize StorageMismatchError.

        Args:
            file_id: ID of the file that failed verification.
            object_key: Object key that was probed.
        """
        self.file_id = file_id
        self.object_key = object_key
        super().__init__(
            f'File not found in storage: {object_key} (file {file_id})',
        )


class TransientBackendError(FilesError):
    """Raised when storage I/O fails without changing any state.

    Safe to retry.
    """
