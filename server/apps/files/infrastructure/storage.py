"""Custom storage backend for S3-compatible storage."""

import logging
from typing import Any, Final, final, override

from botocore.exceptions import ClientError
from storages.backends.s3 import S3Storage

logger = logging.getLogger(__name__)

# Error codes S3-compatible backends use to say "no such object"
_NOT_FOUND_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))

# Presign operation for each HTTP verb
_PRESIGN_OPERATIONS: Final = {
    'PUT': 'put_object',
    'GET': 'get_object',
    'HEAD': 'head_object',
    'DELETE': 'delete_object',
}


def is_not_found(error: ClientError) -> bool:
    """Check whether a boto error is the backend's not-found signal.

    Args:
        error: Error raised by boto3.

    Returns:
        True for 404-equivalent errors.
    """
    error_code = error.response.get('Error', {}).get('Code', '')
    return str(error_code) in _NOT_FOUND_CODES


@final
class FileStorage(S3Storage):
    """Custom S3 storage backend for user files.

    Extends django-storages S3Storage with:
    - Presigned URLs for any verb, so clients talk to the bucket directly
    - Metadata-only probes (HEAD)
    - Enhanced error logging
    """

    @override
    def save(  # noqa: WPS211
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save file to S3 with error handling and logging.

        Args:
            name: Storage path for the file.
            content: File content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage path used.

        Raises:
            Exception: If S3 upload fails.
        """
        try:
            logger.info('Uploading file to storage: %s', name)
            saved_name = super().save(name, content, max_length)
            logger.info('Successfully uploaded file: %s', saved_name)
        except Exception:
            logger.exception('Failed to upload file to storage: %s', name)
            raise
        else:
            return saved_name

    @override
    def delete(self, name: str) -> None:
        """Delete file from S3 with error handling and logging.

        Args:
            name: Storage path of file to delete.

        Raises:
            Exception: If S3 delete fails.
        """
        try:
            logger.info('Deleting file from storage: %s', name)
            super().delete(name)
            logger.info('Successfully deleted file: %s', name)
        except Exception:
            logger.exception('Failed to delete file from storage: %s', name)
            raise

    def head(self, name: str) -> dict[str, Any] | None:
        """Fetch object metadata without downloading the body.

        Args:
            name: Storage path of the object.

        Returns:
            Raw HEAD response, or None if the object does not exist.

        Raises:
            ClientError: For any backend error other than not-found.
        """
        client = self.bucket.meta.client
        try:
            return client.head_object(Bucket=self.bucket_name, Key=name)
        except ClientError as error:
            if is_not_found(error):
                logger.debug('Object not found in storage: %s', name)
                return None
            logger.exception('Failed to inspect object in storage: %s', name)
            raise

    def presigned_url(
        self,
        name: str,
        http_method: str,
        expire: int | None = None,
        content_type: str | None = None,
    ) -> str:
        """Generate a time-limited signed URL for one verb on one object.

        Args:
            name: Storage path of the object.
            http_method: One of PUT, GET, HEAD, DELETE.
            expire: Lifetime in seconds, storage default if omitted.
            content_type: Content type the client must send (PUT only).

        Returns:
            Presigned URL.

        Raises:
            ValueError: If the HTTP method is not supported.
        """
        operation = _PRESIGN_OPERATIONS.get(http_method.upper())
        if operation is None:
            raise ValueError(f'Unsupported presign method: {http_method}')

        params = {'Bucket': self.bucket_name, 'Key': name}
        if content_type and operation == 'put_object':
            params['ContentType'] = content_type

        return self.bucket.meta.client.generate_presigned_url(
            operation,
            Params=params,
            ExpiresIn=expire or self.querystring_expire,
            HttpMethod=http_method.upper(),
        )
