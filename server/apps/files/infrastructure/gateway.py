"""Object store gateway: the only code that talks to the bucket.

The database is the system of record for everything except "does the
object exist and how big is it", which only the store can answer. The
gateway never caches that answer.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Final, final

from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage

from server.apps.files.exceptions import TransientBackendError
from server.apps.files.infrastructure.object_keys import (
    ObjectKeyParts,
    make_key,
    parse_key,
)

if TYPE_CHECKING:
    from server.apps.files.infrastructure.storage import FileStorage

logger = logging.getLogger(__name__)

_BACKEND_ERRORS: Final = (ClientError, BotoCoreError)
_DEFAULT_CONTENT_TYPE: Final = 'application/octet-stream'


@dataclass(frozen=True, slots=True)
class UploadTicket:
    """Presigned upload capability for one object key."""

    url: str
    key: str


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    """Result of a metadata-only probe."""

    exists: bool
    size: int | None = None
    content_type: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class StoredObject:
    """Object body fetched directly from the store."""

    body: bytes
    content_type: str | None


def _get_storage() -> 'FileStorage':
    """Get the configured default storage backend.

    Returns:
        FileStorage instance with proper S3 configuration.
    """
    return default_storage  # type: ignore[return-value]


@final
class ObjectStoreGateway:
    """Issues presigned URLs and probes, removes and transfers objects."""

    def __init__(
        self,
        storage: 'FileStorage | None' = None,
        default_ttl: int | None = None,
    ) -> None:
        """Initialize gateway.

        Args:
            storage: Storage backend, the default storage if omitted.
            default_ttl: URL lifetime in seconds, PRESIGNED_URL_TTL if omitted.
        """
        self._storage = storage or _get_storage()
        self._default_ttl = default_ttl or settings.PRESIGNED_URL_TTL

    def issue_upload_url(
        self,
        parts: ObjectKeyParts,
        content_type: str | None = None,
        ttl: int | None = None,
    ) -> UploadTicket:
        """Presign a PUT for the object key built from ``parts``.

        Nothing is created in the bucket until the client uses the URL.

        Args:
            parts: Key components.
            content_type: Content type the client will upload with.
            ttl: URL lifetime in seconds.

        Returns:
            UploadTicket with the URL and the object key.

        Raises:
            TransientBackendError: If signing fails.
        """
        key = make_key(*parts)
        try:
            url = self._storage.presigned_url(
                key,
                'PUT',
                expire=ttl or self._default_ttl,
                content_type=content_type,
            )
        except _BACKEND_ERRORS as error:
            raise TransientBackendError(
                f'Failed to presign upload for {key}',
            ) from error
        logger.debug('Issued upload URL for %s', key)
        return UploadTicket(url=url, key=key)

    def issue_download_url(
        self,
        parts: ObjectKeyParts,
        ttl: int | None = None,
    ) -> str:
        """Presign a GET for the object key built from ``parts``.

        Args:
            parts: Key components.
            ttl: URL lifetime in seconds.

        Returns:
            Presigned download URL.

        Raises:
            TransientBackendError: If signing fails.
        """
        key = make_key(*parts)
        try:
            return self._storage.presigned_url(
                key,
                'GET',
                expire=ttl or self._default_ttl,
            )
        except _BACKEND_ERRORS as error:
            raise TransientBackendError(
                f'Failed to presign download for {key}',
            ) from error

    def inspect(self, parts: ObjectKeyParts) -> ObjectInfo:
        """Probe the store for the object's existence and metadata.

        Args:
            parts: Key components.

        Returns:
            ObjectInfo; ``exists`` is False on a not-found signal.

        Raises:
            TransientBackendError: For any other backend error.
        """
        key = make_key(*parts)
        try:
            response = self._storage.head(key)
        except _BACKEND_ERRORS as error:
            raise TransientBackendError(
                f'Failed to inspect object {key}',
            ) from error

        if response is None:
            return ObjectInfo(exists=False)

        return ObjectInfo(
            exists=True,
            size=response.get('ContentLength'),
            content_type=response.get('ContentType'),
            last_modified=response.get('LastModified'),
        )

    def remove(self, parts: ObjectKeyParts) -> None:
        """Delete the object.

        Callers inside larger workflows should use ``discard`` instead.

        Args:
            parts: Key components.

        Raises:
            TransientBackendError: If the backend rejects the delete.
        """
        key = make_key(*parts)
        try:
            self._storage.delete(key)
        except _BACKEND_ERRORS as error:
            raise TransientBackendError(
                f'Failed to delete object {key}',
            ) from error

    def discard(self, object_key: str) -> bool:
        """Best-effort delete of a stored key.

        Failures are logged and swallowed; the object stays orphaned until
        the bucket's retention rule for its policy segment reclaims it.

        Args:
            object_key: Key as stored on a file record.

        Returns:
            True if the object was deleted, False otherwise.
        """
        parts = parse_key(object_key)
        if parts is None:
            logger.warning('Skipping delete of malformed key: %s', object_key)
            return False

        try:
            self.remove(parts)
        except TransientBackendError:
            logger.exception(
                'Failed to delete object from storage (orphaned): %s',
                object_key,
            )
            return False
        return True

    def put(
        self,
        parts: ObjectKeyParts,
        body: bytes,
        content_type: str | None = None,
    ) -> None:
        """Upload bytes directly, bypassing presigned URLs.

        Args:
            parts: Key components.
            body: Object content.
            content_type: Stored content type.

        Raises:
            TransientBackendError: If the upload fails.
        """
        key = make_key(*parts)
        content = ContentFile(body, name=parts.file_id)
        content.content_type = content_type or _DEFAULT_CONTENT_TYPE
        try:
            self._storage.save(key, content)
        except _BACKEND_ERRORS as error:
            raise TransientBackendError(
                f'Failed to upload object {key}',
            ) from error

    def get(self, parts: ObjectKeyParts) -> StoredObject:
        """Download an object directly.

        Args:
            parts: Key components.

        Returns:
            StoredObject with body and content type.

        Raises:
            TransientBackendError: If the download fails.
        """
        key = make_key(*parts)
        try:
            with self._storage.open(key, 'rb') as stored_file:
                body = stored_file.read()
                content_type = stored_file.obj.content_type
        except (*_BACKEND_ERRORS, FileNotFoundError) as error:
            raise TransientBackendError(
                f'Failed to download object {key}',
            ) from error
        return StoredObject(body=body, content_type=content_type)


def get_gateway() -> ObjectStoreGateway:
    """Build a gateway over the configured default storage.

    Returns:
        ObjectStoreGateway instance.
    """
    return ObjectStoreGateway()
