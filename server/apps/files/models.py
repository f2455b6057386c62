"""Database models for files app."""

from datetime import datetime, timedelta
from typing import ClassVar, Final, final, override

from django.conf import settings
from django.db import models

from server.apps.files.exceptions import ValidationError
from server.apps.files.infrastructure.identifiers import ID_LENGTH, generate_id
from server.apps.files.infrastructure.object_keys import (
    ObjectKeyParts,
    parse_key,
)
from server.apps.files.infrastructure.paths import ROOT_PATH

# Constants for field max lengths
_PATH_MAX_LENGTH: Final = 1024
_FILENAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_OBJECT_KEY_MAX_LENGTH: Final = 255
_CHOICE_MAX_LENGTH: Final = 16


class Permission(models.TextChoices):
    """Read permission of a file, or default permission of a directory."""

    PUBLIC = 'public', 'Public'
    PRIVATE = 'private', 'Private'
    INHERIT = 'inherit', 'Inherit'

    @classmethod
    def parse(cls, raw_permission: str) -> 'Permission':
        """Parse a permission string.

        Raises:
            ValidationError: If the string is not a known permission.
        """
        try:
            return cls(raw_permission)
        except ValueError as error:
            raise ValidationError(
                f'Unknown permission: {raw_permission}',
            ) from error


class FileStatus(models.TextChoices):
    """Upload state machine: reserved -> validated | failed."""

    RESERVED = 'reserved', 'Reserved'
    VALIDATED = 'validated', 'Validated'
    FAILED = 'failed', 'Failed'


class ExpirationPolicy(models.TextChoices):
    """Retention classes; the bucket's lifecycle rules key off these."""

    INFINITE = 'infinite', 'Never expires'
    DAYS_1 = '1d', '1 day'
    DAYS_2 = '2d', '2 days'
    DAYS_3 = '3d', '3 days'
    DAYS_7 = '7d', '7 days'
    DAYS_14 = '14d', '14 days'
    DAYS_30 = '30d', '30 days'
    DAYS_90 = '90d', '90 days'
    DAYS_180 = '180d', '180 days'

    @property
    def duration(self) -> timedelta | None:
        """Retention period, None for infinite."""
        if self == ExpirationPolicy.INFINITE:
            return None
        return timedelta(days=int(self.value.removesuffix('d')))

    def expires_at(self, start: datetime) -> datetime | None:
        """Compute the expiry instant for an object created at ``start``."""
        duration = self.duration
        if duration is None:
            return None
        return start + duration

    @classmethod
    def parse(cls, raw_policy: str) -> 'ExpirationPolicy':
        """Parse a policy string.

        Raises:
            ValidationError: If the string is not a known policy.
        """
        try:
            return cls(raw_policy)
        except ValueError as error:
            raise ValidationError(
                f'Unknown expiration policy: {raw_policy}',
            ) from error


@final
class Directory(models.Model):
    """Node of a user's virtual directory tree.

    Keeps both a parent pointer and the materialized ``full_path``, so
    subtree queries are prefix scans on an indexed column. The two are
    kept in sync by the directory operations in ``logic``.
    """

    id = models.CharField(
        primary_key=True,
        max_length=ID_LENGTH,
        default=generate_id,
        editable=False,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='directories',
        db_index=True,
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        related_name='children',
        null=True,
        blank=True,
    )

    full_path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        help_text='Absolute path, "/" for the root',
    )

    default_permissions = models.CharField(
        max_length=_CHOICE_MAX_LENGTH,
        choices=Permission.choices,
        default=Permission.PRIVATE,
    )

    default_expiration_policy = models.CharField(
        max_length=_CHOICE_MAX_LENGTH,
        choices=ExpirationPolicy.choices,
        default=ExpirationPolicy.INFINITE,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Directory'  # type: ignore[mutable-override]
        verbose_name_plural = 'Directories'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['full_path']

        constraints: ClassVar[list[models.BaseConstraint]] = [
            # One node per path per owner
            models.UniqueConstraint(
                fields=['owner', 'full_path'],
                name='directories_owner_path_unique',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.full_path}'

    @property
    def is_root(self) -> bool:
        """Whether this is the owner's root directory."""
        return self.full_path == ROOT_PATH

    def get_name(self) -> str:
        """Last path segment, empty string for the root.

        Example: '/documents/reports' -> 'reports'
        """
        return self.full_path.rsplit('/', 1)[-1]


@final
class File(models.Model):
    """File record whose bytes live in the object store.

    The logical location (``directory``, ``full_path``) can change freely;
    the storage location (``object_key``) is fixed once assigned.
    """

    id = models.CharField(
        primary_key=True,
        max_length=ID_LENGTH,
        default=generate_id,
        editable=False,
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='files',
        db_index=True,
    )

    directory = models.ForeignKey(
        Directory,
        on_delete=models.CASCADE,
        related_name='files',
    )

    filename = models.CharField(max_length=_FILENAME_MAX_LENGTH)

    full_path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        help_text='Directory path + filename',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        null=True,
        blank=True,
        help_text='Declared by the client or backfilled from storage',
    )

    size_bytes = models.BigIntegerField(
        null=True,
        blank=True,
        help_text='Known only after upload verification',
    )

    permissions = models.CharField(
        max_length=_CHOICE_MAX_LENGTH,
        choices=Permission.choices,
        default=Permission.PRIVATE,
    )

    status = models.CharField(
        max_length=_CHOICE_MAX_LENGTH,
        choices=FileStatus.choices,
        default=FileStatus.RESERVED,
        db_index=True,
    )

    expiration_policy = models.CharField(
        max_length=_CHOICE_MAX_LENGTH,
        choices=ExpirationPolicy.choices,
        default=ExpirationPolicy.INFINITE,
    )

    expires_at = models.DateTimeField(null=True, blank=True)

    object_key = models.CharField(
        max_length=_OBJECT_KEY_MAX_LENGTH,
        null=True,
        blank=True,
        unique=True,
        help_text='<environment>/<policy>/<owner_id>/<file_id>',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering: ClassVar[list[str]] = ['-created_at']

        indexes: ClassVar[list[models.Index]] = [
            # Optimize subtree prefix scans during directory renames
            models.Index(
                fields=['owner', 'full_path'],
                name='files_owner_path_idx',
            ),
            # Optimize recent files queries
            models.Index(
                fields=['owner', '-created_at'],
                name='files_owner_recent_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.full_path}'

    def get_key_parts(self) -> ObjectKeyParts | None:
        """Parse the stored object key.

        Returns:
            Key components, or None when no valid key is stored.
        """
        if not self.object_key:
            return None
        return parse_key(self.object_key)

    def is_expired(self, now: datetime) -> bool:
        """Whether the file's retention period has ended at ``now``."""
        return self.expires_at is not None and self.expires_at <= now
