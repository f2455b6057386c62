"""Settings for the file lifecycle and directory tree."""

from server.settings.components import config

# First segment of every object key, separates deployment tiers
STORAGE_ENVIRONMENT = config('STORAGE_ENVIRONMENT', default='development')

# Lifetime of presigned upload/download URLs, in seconds
PRESIGNED_URL_TTL = config('PRESIGNED_URL_TTL', cast=int, default=3600)

FILES_MAX_PATH_LENGTH = config('FILES_MAX_PATH_LENGTH', cast=int, default=1000)
FILES_MAX_FILENAME_LENGTH = config(
    'FILES_MAX_FILENAME_LENGTH',
    cast=int,
    default=255,
)

FILES_DEFAULT_PAGE_SIZE = config('FILES_DEFAULT_PAGE_SIZE', cast=int, default=10)
FILES_MAX_PAGE_SIZE = config('FILES_MAX_PAGE_SIZE', cast=int, default=1000)
