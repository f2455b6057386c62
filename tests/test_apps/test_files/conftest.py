"""Shared fixtures for files app tests."""

import boto3
import pytest
from django.conf import settings
from django.contrib.auth import get_user_model
from moto import mock_aws

from server.apps.files.infrastructure.gateway import ObjectStoreGateway
from server.apps.files.infrastructure.storage import FileStorage

User = get_user_model()


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def storage_options():
    """Options of the configured default storage."""
    return settings.STORAGES['default']['OPTIONS']


@pytest.fixture
def mock_s3(storage_options):
    """Mock S3 service with the user-content bucket.

    Yields:
        boto3 S3 resource with the bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=storage_options['bucket_name'])

        yield conn


@pytest.fixture
def storage(mock_s3, storage_options):
    """FileStorage bound to the mocked bucket."""
    return FileStorage(**storage_options)


@pytest.fixture
def gateway(storage):
    """Gateway over the mocked bucket.

    Returns:
        ObjectStoreGateway instance.
    """
    return ObjectStoreGateway(storage=storage)


@pytest.fixture
def bucket(mock_s3, storage_options):
    """The mocked bucket itself, for asserting on stored objects."""
    return mock_s3.Bucket(storage_options['bucket_name'])
