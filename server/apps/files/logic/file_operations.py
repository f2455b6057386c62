"""Business logic for file operations.

Uploads are two-phase. ``create_file`` reserves a row and hands out a
presigned PUT URL; the client uploads straight to the bucket and then
calls ``mark_uploaded``, the single point where the database is
reconciled with what the store actually holds.
"""

import logging
from dataclasses import dataclass
from typing import Any, Final

from django.conf import settings
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from server.apps.files.exceptions import (
    NotFoundError,
    StorageMismatchError,
    ValidationError,
)
from server.apps.files.infrastructure.gateway import (
    ObjectStoreGateway,
    get_gateway,
)
from server.apps.files.infrastructure.object_keys import (
    ObjectKeyParts,
    is_valid_segment,
)
from server.apps.files.infrastructure.paths import (
    ROOT_PATH,
    join_path,
    normalize_path,
    split_path,
    validate_filename,
)
from server.apps.files.logic.access_operations import (
    AccessIntent,
    resolve_access,
)
from server.apps.files.logic.directory_operations import (
    ensure_path,
    get_owned_directory,
    require_owner,
)
from server.apps.files.models import (
    Directory,
    ExpirationPolicy,
    File,
    FileStatus,
    Permission,
)

logger = logging.getLogger(__name__)

_ORDERABLE_FIELDS: Final = frozenset((
    'created_at',
    'updated_at',
    'filename',
    'size_bytes',
))
_DEFAULT_ORDER_FIELD: Final = 'created_at'


@dataclass(frozen=True, slots=True)
class FileReservation:
    """A reserved file and the capability to upload its bytes."""

    file: File
    upload_url: str

    @property
    def object_key(self) -> str | None:
        """Key the client's upload will land on."""
        return self.file.object_key


@dataclass(frozen=True, slots=True)
class FilePage:
    """One page of an owner's files."""

    files: list[File]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        """Whether another page follows this one."""
        return self.offset + self.limit < self.total


def _get_owned_file(
    file_id: str,
    owner_id: Any,
    *,
    for_update: bool = False,
) -> File:
    """Fetch a file owned by ``owner_id``.

    Raises:
        NotFoundError: If it does not exist or belongs to someone else.
    """
    queryset = File.objects.filter(id=file_id, owner_id=owner_id)
    if for_update:
        queryset = queryset.select_for_update()
    file_instance = queryset.select_related('directory').first()
    if file_instance is None:
        raise NotFoundError('File', file_id)
    return file_instance


def _resolve_permission(permission: Permission, directory: Directory) -> str:
    """Snapshot an ``inherit`` permission from the directory chain.

    Walks up while directories themselves say ``inherit``; a chain that
    never decides falls back to private.
    """
    current: Directory | None = directory
    while permission == Permission.INHERIT and current is not None:
        permission = Permission(current.default_permissions)
        current = current.parent
    if permission == Permission.INHERIT:
        return Permission.PRIVATE
    return permission


def _split_file_path(full_path: str, filename: str) -> tuple[str, str]:
    """Work out the containing directory and final path of a new file.

    A root path places the file at ``/<filename>``; any other path must
    end with the filename.

    Returns:
        Tuple of (directory path, file path).

    Raises:
        ValidationError: If the path does not end with the filename.
    """
    normalized = normalize_path(full_path)
    if normalized == ROOT_PATH:
        return ROOT_PATH, join_path(ROOT_PATH, filename)

    directory_path, last_segment = split_path(normalized)
    if last_segment != filename:
        raise ValidationError(
            f'Path {normalized} does not end with filename {filename}',
        )
    return directory_path, normalized


def _build_key_parts(
    owner_id: Any,
    file_id: str,
    policy: ExpirationPolicy,
) -> ObjectKeyParts:
    parts = ObjectKeyParts(
        environment=settings.STORAGE_ENVIRONMENT,
        retention_policy=policy.value,
        owner_id=str(owner_id),
        file_id=file_id,
    )
    if not all(is_valid_segment(segment) for segment in parts):
        raise ValidationError(f'Cannot build object key from {parts}')
    return parts


def create_file(  # noqa: WPS211
    owner_id: Any,
    filename: str,
    full_path: str = ROOT_PATH,
    permissions: str = Permission.PRIVATE,
    expiration_policy: str = ExpirationPolicy.INFINITE,
    size_hint: int | None = None,
    mime_hint: str | None = None,
    gateway: ObjectStoreGateway | None = None,
) -> FileReservation:
    """Reserve a file record and issue its presigned upload URL.

    Missing ancestor directories are created on the way. The object key
    is stored on the row right away; nothing exists in the bucket until
    the client uploads.

    Args:
        owner_id: ID of the owner.
        filename: Bare filename.
        full_path: Path of the file (or '/' for the root directory).
        permissions: public, private or inherit.
        expiration_policy: Retention class.
        size_hint: Size declared by the client, if any.
        mime_hint: MIME type declared by the client, if any.
        gateway: Object store gateway, default gateway if omitted.

    Returns:
        FileReservation with the reserved file and upload URL.

    Raises:
        ValidationError: If any input is malformed.
        NotFoundError: If the owner does not exist.
        TransientBackendError: If the upload URL cannot be issued.
    """
    validate_filename(filename)
    permission = Permission.parse(permissions)
    policy = ExpirationPolicy.parse(expiration_policy)
    if size_hint is not None and size_hint < 0:
        raise ValidationError('Size cannot be negative')

    directory_path, file_path = _split_file_path(full_path, filename)
    require_owner(owner_id)
    gateway = gateway or get_gateway()

    with transaction.atomic():
        directory = ensure_path(owner_id, directory_path)
        file_instance = File.objects.create(
            owner_id=owner_id,
            directory=directory,
            filename=filename,
            full_path=file_path,
            mime_type=mime_hint or None,
            size_bytes=size_hint,
            permissions=_resolve_permission(permission, directory),
            status=FileStatus.RESERVED,
            expiration_policy=policy,
            expires_at=policy.expires_at(timezone.now()),
        )

        parts = _build_key_parts(owner_id, file_instance.id, policy)
        ticket = gateway.issue_upload_url(parts, content_type=mime_hint)

        file_instance.object_key = ticket.key
        file_instance.save(update_fields=['object_key', 'updated_at'])

    logger.info(
        'File reserved: %s (ID: %s, key: %s)',
        file_path,
        file_instance.id,
        ticket.key,
    )
    return FileReservation(file=file_instance, upload_url=ticket.url)


def mark_uploaded(
    file_id: str,
    owner_id: Any,
    gateway: ObjectStoreGateway | None = None,
) -> File:
    """Verify a reserved file's upload and finalize its state.

    The transition to ``failed`` is persisted before the error is raised,
    so the record reflects the store even when verification fails. A
    gateway error leaves the file reserved; the caller may retry.

    Args:
        file_id: ID of the file.
        owner_id: ID of the owner.
        gateway: Object store gateway, default gateway if omitted.

    Returns:
        The validated File instance.

    Raises:
        NotFoundError: If no reserved file with this id is owned by
            ``owner_id``.
        StorageMismatchError: If the object is not in the store.
        TransientBackendError: If the store could not be queried.
    """
    file_instance = File.objects.filter(
        id=file_id,
        owner_id=owner_id,
        status=FileStatus.RESERVED,
    ).first()
    if file_instance is None:
        raise NotFoundError('File', file_id)

    gateway = gateway or get_gateway()
    parts = file_instance.get_key_parts()
    object_info = gateway.inspect(parts) if parts is not None else None

    if object_info is None or not object_info.exists:
        _transition(file_instance, FileStatus.FAILED)
        logger.warning(
            'Upload verification failed, object missing: %s (ID: %s)',
            file_instance.object_key,
            file_id,
        )
        raise StorageMismatchError(file_id, file_instance.object_key or '')

    changes: dict[str, Any] = {'size_bytes': object_info.size}
    if not file_instance.mime_type and object_info.content_type:
        changes['mime_type'] = object_info.content_type
    _transition(file_instance, FileStatus.VALIDATED, **changes)

    logger.info(
        'File validated: %s (ID: %s, size: %s)',
        file_instance.full_path,
        file_id,
        file_instance.size_bytes,
    )
    return file_instance


def _transition(
    file_instance: File,
    status: FileStatus,
    **changes: Any,
) -> None:
    """Move a reserved file to a terminal status.

    The update is conditional on the row still being reserved, so two
    concurrent verifications cannot both finalize it.

    Raises:
        NotFoundError: If the file left the reserved state meanwhile.
    """
    now = timezone.now()
    updated = File.objects.filter(
        id=file_instance.id,
        status=FileStatus.RESERVED,
    ).update(status=status, updated_at=now, **changes)
    if not updated:
        raise NotFoundError('File', file_instance.id)

    file_instance.status = status
    file_instance.updated_at = now
    for field_name, field_value in changes.items():
        setattr(file_instance, field_name, field_value)


def get_file(file_id: str, requester_id: Any = None) -> File:
    """Fetch file metadata on behalf of a requester.

    Args:
        file_id: ID of the file.
        requester_id: ID of the requesting user, None for anonymous.

    Returns:
        File instance with its directory loaded.

    Raises:
        NotFoundError: If the file does not exist, is expired, or is
            private to someone else.
    """
    file_instance = File.objects.select_related('directory').filter(
        id=file_id,
    ).first()
    if file_instance is None:
        raise NotFoundError('File', file_id)

    decision = resolve_access(
        file_instance,
        requester_id,
        intent=AccessIntent.METADATA,
    )
    if not decision.allowed:
        logger.debug(
            'Access denied to file %s: %s',
            file_id,
            decision.reason.value,
        )
        raise NotFoundError('File', file_id)
    return file_instance


def get_download_url(
    file_id: str,
    requester_id: Any = None,
    ttl: int | None = None,
    gateway: ObjectStoreGateway | None = None,
) -> str:
    """Issue a presigned download URL for a readable, validated file.

    Raises:
        NotFoundError: If the requester may not download the file.
        StorageMismatchError: If the file has no usable object key.
        TransientBackendError: If the URL cannot be issued.
    """
    file_instance = File.objects.filter(id=file_id).first()
    if file_instance is None:
        raise NotFoundError('File', file_id)

    decision = resolve_access(file_instance, requester_id)
    if not decision.allowed:
        raise NotFoundError('File', file_id)

    parts = file_instance.get_key_parts()
    if parts is None:
        raise StorageMismatchError(file_id, file_instance.object_key or '')

    gateway = gateway or get_gateway()
    return gateway.issue_download_url(parts, ttl=ttl)


def update_file(  # noqa: WPS211
    file_id: str,
    owner_id: Any,
    filename: str | None = None,
    full_path: str | None = None,
    directory_id: str | None = None,
    permissions: str | None = None,
) -> File:
    """Rename, move or re-permission a file.

    A new ``full_path`` materializes its directory and takes the
    filename from its last segment. Otherwise ``directory_id`` and
    ``filename`` rebuild the path inside the target directory. The
    object key is never touched: storage is keyed by file id, not path.

    Raises:
        NotFoundError: If the file or target directory is not visible
            to the owner.
        ValidationError: If a value is malformed or ``full_path`` and
            ``directory_id`` disagree.
    """
    with transaction.atomic():
        file_instance = _get_owned_file(file_id, owner_id, for_update=True)

        if full_path is not None:
            _move_to_path(file_instance, owner_id, full_path, directory_id)
        elif directory_id is not None or filename is not None:
            _move_within(file_instance, owner_id, directory_id, filename)

        if permissions is not None:
            file_instance.permissions = _resolve_permission(
                Permission.parse(permissions),
                file_instance.directory,
            )

        file_instance.save(update_fields=[
            'directory',
            'filename',
            'full_path',
            'permissions',
            'updated_at',
        ])

    logger.info('File updated: %s (ID: %s)', file_instance.full_path, file_id)
    return file_instance


def _move_to_path(
    file_instance: File,
    owner_id: Any,
    full_path: str,
    directory_id: str | None,
) -> None:
    normalized = normalize_path(full_path)
    if normalized == ROOT_PATH:
        raise ValidationError('File path cannot be the root directory')

    directory_path, new_filename = split_path(normalized)
    validate_filename(new_filename)
    directory = ensure_path(owner_id, directory_path)
    if directory_id is not None and directory_id != directory.id:
        raise ValidationError(
            f'Path {normalized} is not inside directory {directory_id}',
        )

    file_instance.directory = directory
    file_instance.filename = new_filename
    file_instance.full_path = normalized


def _move_within(
    file_instance: File,
    owner_id: Any,
    directory_id: str | None,
    filename: str | None,
) -> None:
    if directory_id is not None:
        file_instance.directory = get_owned_directory(directory_id, owner_id)
    if filename is not None:
        file_instance.filename = validate_filename(filename)
    file_instance.full_path = join_path(
        file_instance.directory.full_path,
        file_instance.filename,
    )


def delete_file(file_id: str, owner_id: Any) -> None:
    """Delete a file record.

    Transaction safety: the DB row goes first. For validated files the
    stored object is removed after commit by the post_delete signal
    handler in signals.py; a storage failure there never undoes the
    delete.

    Raises:
        NotFoundError: If the file is not visible to the owner.
    """
    with transaction.atomic():
        file_instance = _get_owned_file(file_id, owner_id, for_update=True)
        storage_key = file_instance.object_key
        file_instance.delete()

    logger.info('File record deleted: ID=%s, key=%s', file_id, storage_key)


def list_files(  # noqa: WPS211
    owner_id: Any,
    limit: int | None = None,
    offset: int = 0,
    order_by: str = 'created_at+desc',
    permissions: str | None = None,
    status: str | None = None,
) -> FilePage:
    """List an owner's files, one page at a time.

    Args:
        owner_id: ID of the owner.
        limit: Page size, capped at FILES_MAX_PAGE_SIZE.
        offset: Number of files to skip.
        order_by: '<field>+<asc|desc>'; unknown fields sort by creation.
        permissions: Only files with this permission.
        status: Only files in this status.

    Returns:
        FilePage with the files and pagination info.
    """
    page_size = min(
        limit or settings.FILES_DEFAULT_PAGE_SIZE,
        settings.FILES_MAX_PAGE_SIZE,
    )
    page_offset = max(offset, 0)

    queryset = _filter_files(owner_id, permissions, status)
    total = queryset.count()
    files = list(
        queryset.order_by(_parse_ordering(order_by)).select_related(
            'directory',
        )[page_offset:page_offset + page_size],
    )
    return FilePage(
        files=files,
        total=total,
        limit=page_size,
        offset=page_offset,
    )


def _filter_files(
    owner_id: Any,
    permissions: str | None,
    status: str | None,
) -> QuerySet[File]:
    queryset = File.objects.filter(owner_id=owner_id)
    if permissions:
        queryset = queryset.filter(permissions=permissions)
    if status:
        queryset = queryset.filter(status=status)
    return queryset


def _parse_ordering(order_by: str) -> str:
    """Translate '<field>+<direction>' into a Django ordering string.

    Example: 'filename+asc' -> 'filename', 'size_bytes+desc' -> '-size_bytes'
    """
    field_name, _, direction = order_by.partition('+')
    if field_name not in _ORDERABLE_FIELDS:
        field_name = _DEFAULT_ORDER_FIELD
    if direction == 'asc':
        return field_name
    return f'-{field_name}'
