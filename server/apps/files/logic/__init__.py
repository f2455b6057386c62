"""Business logic layer for files app.

This package contains all business logic for the storage core:
- Directory tree materialization, rename and delete
- File reservation, upload verification, moves and deletion
- Read-access decisions

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
