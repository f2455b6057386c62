"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Custom storage backend (S3/MinIO/R2)
- Object store gateway and object key layout
- Virtual path handling and id generation

Keep infrastructure concerns separate from business logic.
"""
