"""Virtual path handling for the directory tree.

Paths are absolute and slash-separated: ``/``, ``/docs``,
``/docs/readme.txt``. Normalized paths never end with a slash (except
the root) and never contain empty, ``.`` or ``..`` segments.
"""

from typing import Final

from django.conf import settings

from server.apps.files.exceptions import ValidationError

ROOT_PATH: Final = '/'
_PATH_SEPARATOR: Final = '/'
_FORBIDDEN_SEGMENTS: Final = frozenset(('.', '..'))


def normalize_path(raw_path: str) -> str:
    """Normalize a user-supplied path.

    Adds the leading slash, collapses repeated slashes and drops the
    trailing one.

    Args:
        raw_path: Path as received (e.g., 'docs//reports/').

    Returns:
        Normalized path (e.g., '/docs/reports').

    Raises:
        ValidationError: If the path is too long or contains traversal
            segments or null bytes.
    """
    if '\x00' in raw_path:
        raise ValidationError('Path cannot contain null bytes')

    segments = [segment for segment in raw_path.split(_PATH_SEPARATOR) if segment]
    if _FORBIDDEN_SEGMENTS.intersection(segments):
        raise ValidationError(f'Path cannot contain relative segments: {raw_path}')

    normalized = ROOT_PATH + _PATH_SEPARATOR.join(segments)
    if len(normalized) > settings.FILES_MAX_PATH_LENGTH:
        raise ValidationError(
            f'Path exceeds {settings.FILES_MAX_PATH_LENGTH} characters',
        )
    return normalized


def path_segments(full_path: str) -> list[str]:
    """Split a normalized path into its segments.

    Example: '/a/b/c' -> ['a', 'b', 'c'], '/' -> []
    """
    return [segment for segment in full_path.split(_PATH_SEPARATOR) if segment]


def ancestor_paths(full_path: str) -> list[str]:
    """List every prefix of a path, shortest first, including the path.

    Example: '/a/b/c' -> ['/a', '/a/b', '/a/b/c']

    The root is not included.
    """
    prefixes = []
    current = ''
    for segment in path_segments(full_path):
        current = f'{current}{_PATH_SEPARATOR}{segment}'
        prefixes.append(current)
    return prefixes


def join_path(parent_path: str, name: str) -> str:
    """Join a directory path and a child name.

    Example: ('/', 'a.txt') -> '/a.txt', ('/docs', 'a.txt') -> '/docs/a.txt'
    """
    if parent_path == ROOT_PATH:
        return ROOT_PATH + name
    return f'{parent_path}{_PATH_SEPARATOR}{name}'


def split_path(full_path: str) -> tuple[str, str]:
    """Split a normalized path into parent path and last segment.

    Example: '/docs/readme.txt' -> ('/docs', 'readme.txt'),
    '/readme.txt' -> ('/', 'readme.txt')
    """
    parent, _, name = full_path.rpartition(_PATH_SEPARATOR)
    return parent or ROOT_PATH, name


def descendant_prefix(full_path: str) -> str:
    """Prefix shared by every descendant of a directory.

    The trailing slash makes prefix matches exact: '/doc/' never matches
    '/documents'.
    """
    if full_path == ROOT_PATH:
        return ROOT_PATH
    return full_path + _PATH_SEPARATOR


def is_descendant(candidate: str, ancestor: str) -> bool:
    """Check whether ``candidate`` lies strictly below ``ancestor``."""
    return candidate != ancestor and candidate.startswith(
        descendant_prefix(ancestor),
    )


def replace_prefix(full_path: str, old_path: str, new_path: str) -> str:
    """Move a descendant path from one directory path to another.

    Example: ('/proj/sub/a.txt', '/proj', '/archive') -> '/archive/sub/a.txt'
    """
    relative = full_path[len(descendant_prefix(old_path)):]
    return join_path(new_path, relative)


def validate_filename(filename: str) -> str:
    """Validate a filename.

    Args:
        filename: Bare filename (e.g., 'report.pdf').

    Returns:
        The filename, unchanged.

    Raises:
        ValidationError: If the filename is empty, too long or not a
            single path segment.
    """
    if not filename or not filename.strip():
        raise ValidationError('Filename cannot be empty')

    if len(filename) > settings.FILES_MAX_FILENAME_LENGTH:
        raise ValidationError(
            f'Filename exceeds {settings.FILES_MAX_FILENAME_LENGTH} characters',
        )

    if _PATH_SEPARATOR in filename or '\x00' in filename:
        raise ValidationError(f'Invalid filename: {filename}')

    if filename in _FORBIDDEN_SEGMENTS:
        raise ValidationError(f'Invalid filename: {filename}')

    return filename
