"""Business logic for the directory tree.

Directories are materialized lazily: every operation that references a
path creates whatever ancestors are missing, so there is never a path
string without a row behind it. Renames rewrite the path prefix of the
whole subtree inside one transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, QuerySet
from django.utils import timezone

from server.apps.files.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotEmptyError,
    NotFoundError,
    ValidationError,
)
from server.apps.files.infrastructure.paths import (
    ROOT_PATH,
    ancestor_paths,
    descendant_prefix,
    is_descendant,
    join_path,
    normalize_path,
    replace_prefix,
    split_path,
)
from server.apps.files.models import (
    Directory,
    ExpirationPolicy,
    File,
    Permission,
)

User = get_user_model()
logger = logging.getLogger(__name__)

_PATH_FIELDS = ('full_path', 'updated_at')


@dataclass(frozen=True, slots=True)
class DirectoryDefaults:
    """Defaults applied to the leaf directory of an ensure_path call."""

    permissions: Permission | None = None
    expiration_policy: ExpirationPolicy | None = None

    def as_fields(self) -> dict[str, str]:
        """Model field values for the defaults that are set."""
        fields = {}
        if self.permissions is not None:
            fields['default_permissions'] = self.permissions
        if self.expiration_policy is not None:
            fields['default_expiration_policy'] = self.expiration_policy
        return fields


def require_owner(owner_id: Any) -> None:
    """Check that the owner exists.

    Raises:
        NotFoundError: If there is no such user.
    """
    if not User.objects.filter(pk=owner_id).exists():
        raise NotFoundError('User', owner_id)


def get_owned_directory(
    directory_id: str,
    owner_id: Any,
    *,
    for_update: bool = False,
) -> Directory:
    """Fetch a directory owned by ``owner_id``.

    Args:
        directory_id: ID of the directory.
        owner_id: ID of the requesting owner.
        for_update: Lock the row until the surrounding transaction ends.

    Returns:
        Directory instance.

    Raises:
        NotFoundError: If it does not exist or belongs to someone else.
    """
    queryset = Directory.objects.filter(id=directory_id, owner_id=owner_id)
    if for_update:
        queryset = queryset.select_for_update()
    directory = queryset.first()
    if directory is None:
        raise NotFoundError('Directory', directory_id)
    return directory


def ensure_path(
    owner_id: Any,
    full_path: str,
    leaf_defaults: DirectoryDefaults | None = None,
) -> Directory:
    """Materialize a directory path and every missing ancestor.

    Idempotent: existing directories are left untouched, except that
    ``leaf_defaults`` are applied to the directory at ``full_path``
    itself. Concurrent calls for the same path converge on the same rows
    thanks to the (owner, full_path) unique constraint.

    Only the path's own segments get rows: top-level directories have no
    parent, and the ``/`` row exists only once it is asked for directly
    (files placed at the root).

    Args:
        owner_id: ID of the owner.
        full_path: Directory path to materialize.
        leaf_defaults: Defaults for the final directory.

    Returns:
        The directory at ``full_path``.

    Raises:
        ValidationError: If the path is malformed.
        NotFoundError: If the owner does not exist.
    """
    normalized = normalize_path(full_path)
    require_owner(owner_id)

    if normalized == ROOT_PATH:
        return _upsert_directory(
            owner_id,
            ROOT_PATH,
            parent=None,
            leaf_defaults=leaf_defaults,
        )

    current: Directory | None = None
    with transaction.atomic():
        for prefix in ancestor_paths(normalized):
            current = _upsert_directory(
                owner_id,
                prefix,
                parent=current,
                leaf_defaults=leaf_defaults if prefix == normalized else None,
            )

    return current  # type: ignore[return-value]


def _upsert_directory(
    owner_id: Any,
    full_path: str,
    parent: Directory | None,
    leaf_defaults: DirectoryDefaults | None,
) -> Directory:
    """Get or create one directory row keyed by (owner, full_path)."""
    fields = leaf_defaults.as_fields() if leaf_defaults else {}
    directory, created = Directory.objects.get_or_create(
        owner_id=owner_id,
        full_path=full_path,
        defaults={'parent': parent, **fields},
    )

    if created:
        logger.debug('Created directory %s for owner %s', full_path, owner_id)
    elif fields:
        for field_name, field_value in fields.items():
            setattr(directory, field_name, field_value)
        directory.save(update_fields=[*fields, 'updated_at'])

    return directory


def create_directory(
    owner_id: Any,
    full_path: str,
    default_permissions: str = Permission.PRIVATE,
    default_expiration_policy: str = ExpirationPolicy.INFINITE,
) -> Directory:
    """Create a directory (and its ancestors) with the given defaults.

    Re-creating an existing directory updates its defaults.

    Raises:
        ValidationError: If the path is the root or malformed, or a
            default is not a known value.
    """
    normalized = normalize_path(full_path)
    if normalized == ROOT_PATH:
        raise ValidationError('Invalid path: cannot create the root directory')

    defaults = DirectoryDefaults(
        permissions=Permission.parse(default_permissions),
        expiration_policy=ExpirationPolicy.parse(default_expiration_policy),
    )
    directory = ensure_path(owner_id, normalized, leaf_defaults=defaults)
    logger.info('Directory ensured: %s (ID: %s)', normalized, directory.id)
    return directory


def rename_directory(
    directory_id: str,
    owner_id: Any,
    new_full_path: str,
) -> Directory:
    """Rename or move a directory together with its whole subtree.

    The directory's own row, every descendant directory and every file
    below it are rewritten in one transaction. The collision check runs
    inside that transaction against the locked row, so two racing renames
    cannot both win.

    Args:
        directory_id: ID of the directory to move.
        owner_id: ID of the owner.
        new_full_path: Target path.

    Returns:
        Updated Directory instance.

    Raises:
        NotFoundError: If the directory is not visible to the owner.
        ConflictError: If another directory already occupies the target.
        InvalidOperationError: If moving the root, or into its own subtree.
        ValidationError: If the target path is malformed.
    """
    new_path = normalize_path(new_full_path)

    with transaction.atomic():
        directory = get_owned_directory(directory_id, owner_id, for_update=True)
        old_path = directory.full_path

        if directory.is_root or new_path == ROOT_PATH:
            raise InvalidOperationError(
                'Cannot rename to or from the root directory',
            )
        if new_path == old_path:
            return directory
        if is_descendant(new_path, old_path):
            raise InvalidOperationError(
                f'Cannot move directory into its own subdirectory: {new_path}',
            )

        occupied = Directory.objects.filter(
            owner_id=owner_id,
            full_path=new_path,
        ).exclude(id=directory.id)
        if occupied.exists():
            raise ConflictError(new_path)

        parent_path, _ = split_path(new_path)
        directory.parent = (
            None if parent_path == ROOT_PATH
            else ensure_path(owner_id, parent_path)
        )
        directory.full_path = new_path
        directory.save(update_fields=['parent', 'full_path', 'updated_at'])

        moved_directories = _rewrite_subtree(
            Directory.objects.filter(owner_id=owner_id),
            old_path,
            new_path,
        )
        moved_files = _rewrite_subtree(
            File.objects.filter(owner_id=owner_id),
            old_path,
            new_path,
        )

    logger.info(
        'Moved directory %s -> %s (%d directories, %d files)',
        old_path,
        new_path,
        moved_directories,
        moved_files,
    )
    return directory


def _rewrite_subtree(
    queryset: QuerySet[Any],
    old_path: str,
    new_path: str,
) -> int:
    """Swap the path prefix of every row below ``old_path``.

    Rows are scanned in path order over the (owner, full_path) index and
    rewritten in Python, so no engine-specific string functions are used.

    Returns:
        Number of rows rewritten.
    """
    rows = list(
        queryset.filter(
            full_path__startswith=descendant_prefix(old_path),
        ).order_by('full_path'),
    )
    if not rows:
        return 0

    now = timezone.now()
    for row in rows:
        row.full_path = replace_prefix(row.full_path, old_path, new_path)
        row.updated_at = now

    queryset.model.objects.bulk_update(rows, _PATH_FIELDS)
    return len(rows)


def update_directory(
    directory_id: str,
    owner_id: Any,
    full_path: str | None = None,
    default_permissions: str | None = None,
    default_expiration_policy: str | None = None,
    parent_id: str | None = None,
) -> Directory:
    """Update a directory's location and/or defaults.

    A move is given either as a new ``full_path`` or as a new parent
    directory, which keeps the directory's own name. Both go through
    rename_directory.

    Raises:
        NotFoundError: If the directory or the new parent is not visible
            to the owner.
        ConflictError: If the target path is taken.
        InvalidOperationError: If the move is structurally disallowed.
        ValidationError: If a value is malformed.
    """
    if full_path is not None and parent_id is not None:
        raise ValidationError('Pass either full_path or parent_id, not both')

    with transaction.atomic():
        if parent_id is not None:
            full_path = _path_under_parent(directory_id, owner_id, parent_id)
        if full_path is not None:
            rename_directory(directory_id, owner_id, full_path)

        directory = get_owned_directory(directory_id, owner_id, for_update=True)

        update_fields = []
        if default_permissions is not None:
            directory.default_permissions = Permission.parse(default_permissions)
            update_fields.append('default_permissions')
        if default_expiration_policy is not None:
            directory.default_expiration_policy = ExpirationPolicy.parse(
                default_expiration_policy,
            )
            update_fields.append('default_expiration_policy')

        if update_fields:
            directory.save(update_fields=[*update_fields, 'updated_at'])

    return directory


def _path_under_parent(directory_id: str, owner_id: Any, parent_id: str) -> str:
    """Path the directory would get as a child of ``parent_id``.

    Raises:
        NotFoundError: If either directory is not visible to the owner.
    """
    directory = get_owned_directory(directory_id, owner_id)
    parent = get_owned_directory(parent_id, owner_id)
    return join_path(parent.full_path, directory.get_name())


def delete_directory(directory_id: str, owner_id: Any) -> int:
    """Delete an empty directory together with the files it holds.

    File rows and the directory row go in one transaction. Stored objects
    are removed after commit by the post_delete handler in signals.py,
    best-effort.

    Args:
        directory_id: ID of the directory.
        owner_id: ID of the owner.

    Returns:
        Number of files deleted.

    Raises:
        NotFoundError: If the directory is not visible to the owner.
        NotEmptyError: If the directory has child directories.
        InvalidOperationError: If it is the root directory.
    """
    with transaction.atomic():
        directory = get_owned_directory(directory_id, owner_id, for_update=True)

        child_count = directory.children.count()
        if child_count:
            raise NotEmptyError(directory.full_path, child_count)
        if directory.is_root:
            raise InvalidOperationError('Cannot delete the root directory')

        _, deleted_per_model = directory.files.all().delete()
        deleted_files = deleted_per_model.get(File._meta.label, 0)
        directory.delete()

    logger.info(
        'Directory deleted: %s (ID: %s, files: %d)',
        directory.full_path,
        directory_id,
        deleted_files,
    )
    return deleted_files


def _with_counts(queryset: QuerySet[Directory]) -> QuerySet[Directory]:
    return queryset.annotate(
        file_count=Count('files', distinct=True),
        subdirectory_count=Count('children', distinct=True),
    )


def list_directories(
    owner_id: Any,
    parent_id: str | None = None,
    path: str | None = None,
    recursive: bool = False,
) -> QuerySet[Directory]:
    """List an owner's directories.

    Args:
        owner_id: ID of the owner.
        parent_id: Only direct children of this directory.
        path: Exact path, or subtree root when ``recursive`` is set.
        recursive: Match everything strictly below ``path``.

    Returns:
        QuerySet ordered by path, annotated with ``file_count`` and
        ``subdirectory_count``.
    """
    queryset = Directory.objects.filter(owner_id=owner_id)

    if parent_id is not None:
        queryset = queryset.filter(parent_id=parent_id)

    if path:
        normalized = normalize_path(path)
        if recursive:
            queryset = queryset.filter(
                full_path__startswith=descendant_prefix(normalized),
            ).exclude(full_path=normalized)
        else:
            queryset = queryset.filter(full_path=normalized)

    return _with_counts(queryset).select_related('parent').order_by('full_path')


def get_directory(directory_id: str, owner_id: Any) -> Directory:
    """Fetch a directory with its children and files prefetched.

    Raises:
        NotFoundError: If the directory is not visible to the owner.
    """
    directory = (
        _with_counts(Directory.objects.filter(id=directory_id, owner_id=owner_id))
        .select_related('parent')
        .prefetch_related('children', 'files')
        .first()
    )
    if directory is None:
        raise NotFoundError('Directory', directory_id)
    return directory
