"""Django admin configuration for files app."""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.html import format_html

from server.apps.files.models import Directory, File, FileStatus

_STATUS_COLORS = {
    FileStatus.RESERVED: '#ffc107',
    FileStatus.VALIDATED: '#28a745',
    FileStatus.FAILED: '#dc3545',
}


def _format_bytes(size_bytes: int | None) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes, None when unknown.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes is None:
        return '-'
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


@admin.register(Directory)
class DirectoryAdmin(admin.ModelAdmin[Directory]):
    """Admin interface for Directory model."""

    list_display = [
        'full_path',
        'owner',
        'default_permissions',
        'default_expiration_policy',
        'updated_at',
    ]

    list_filter = [
        'default_permissions',
        'default_expiration_policy',
        'owner',
    ]

    search_fields = [
        'full_path',
        'id',
    ]

    # Paths are rewritten as a subtree; editing one row would desync it
    readonly_fields = [
        'id',
        'parent',
        'full_path',
        'created_at',
        'updated_at',
    ]

    def get_queryset(self, request: HttpRequest) -> QuerySet[Directory]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner', 'parent')


@admin.register(File)
class FileAdmin(admin.ModelAdmin[File]):
    """Admin interface for File model."""

    list_display = [
        'filename',
        'owner',
        'full_path',
        'size_display',
        'status_display',
        'permissions',
        'expires_at',
        'created_at',
    ]

    list_filter = [
        'status',
        'permissions',
        'expiration_policy',
        'owner',
    ]

    search_fields = [
        'full_path',
        'id',
        'object_key',
    ]

    readonly_fields = [
        'id',
        'object_key',
        'size_bytes',
        'mime_type',
        'status',
        'expiration_policy',
        'expires_at',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('File Information', {
            'fields': ('id', 'owner', 'directory', 'filename', 'full_path'),
        }),
        ('Access', {
            'fields': ('permissions', 'expiration_policy', 'expires_at'),
        }),
        ('Storage', {
            'fields': ('status', 'object_key', 'size_bytes', 'mime_type'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def size_display(self, obj: File) -> str:
        """Display file size in human-readable format."""
        return _format_bytes(obj.size_bytes)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def status_display(self, obj: File) -> str:
        """Display upload status as a colored label.

        Args:
            obj: File instance.

        Returns:
            HTML formatted status label.
        """
        return format_html(
            '<span style="color: {color}; font-weight: bold;">'
            '{status}</span>',
            color=_STATUS_COLORS.get(obj.status, '#6c757d'),
            status=obj.get_status_display(),
        )
    status_display.short_description = 'Status'  # type: ignore[attr-defined]

    def get_queryset(self, request: HttpRequest) -> QuerySet[File]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner')
