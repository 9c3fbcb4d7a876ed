"""
Unit tests for S3 storage (mysql_s3_backup/backup/storage.py).

Tests bucket checks and tree uploads against moto.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mysql_s3_backup.backup.storage import S3Storage, StorageError, create_storage


def client_error(code, operation='HeadBucket'):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def artifact_tree(tmp_path):
    """A backup directory with schema and table level files."""
    root = tmp_path / '2024-01-15_1200'
    root.mkdir()
    (root / 'a.sql.gz').write_bytes(b'dump a')
    (root / 'b.sql.gz').write_bytes(b'dump b')
    (root / 'shop').mkdir()
    (root / 'shop' / 'shop.orders.sql.gz').write_bytes(b'dump orders')
    return root


class TestEnsureTarget:
    """Test bucket existence checks."""

    def test_existing_bucket(self, mock_s3):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')

        assert storage.ensure_target() == 'exists'

    def test_missing_bucket_is_created(self, empty_s3):
        storage = S3Storage(bucket_name='new-bucket', region='us-east-1')

        assert storage.ensure_target() == 'created'
        assert 'new-bucket' in [bucket.name for bucket in empty_s3.buckets.all()]

    def test_missing_bucket_created_outside_us_east_1(self, empty_s3):
        storage = S3Storage(bucket_name='eu-bucket', region='eu-west-1')

        assert storage.ensure_target() == 'created'

        location = storage.s3_client.get_bucket_location(Bucket='eu-bucket')
        assert location['LocationConstraint'] == 'eu-west-1'

    def test_access_denied_is_fatal(self, aws_credentials):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')
        storage.s3_client = MagicMock()
        storage.s3_client.head_bucket.side_effect = client_error('403')

        with pytest.raises(StorageError, match="Failed to check bucket"):
            storage.ensure_target()

        storage.s3_client.create_bucket.assert_not_called()

    def test_create_failure_is_fatal(self, aws_credentials):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')
        storage.s3_client = MagicMock()
        storage.s3_client.head_bucket.side_effect = client_error('404')
        storage.s3_client.create_bucket.side_effect = client_error('BucketAlreadyExists', 'CreateBucket')

        with pytest.raises(StorageError, match="Failed to create bucket"):
            storage.ensure_target()


class TestUploadTree:
    """Test recursive uploads."""

    def test_upload_tree_keeps_relative_layout(self, mock_s3, artifact_tree, keys_in):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')

        keys = storage.upload_tree(str(artifact_tree), '2024-01-15_1200')

        assert keys_in(mock_s3) == [
            '2024-01-15_1200/a.sql.gz',
            '2024-01-15_1200/b.sql.gz',
            '2024-01-15_1200/shop/shop.orders.sql.gz',
        ]
        assert sorted(keys) == keys_in(mock_s3)

    def test_upload_tree_content(self, mock_s3, artifact_tree):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')

        storage.upload_tree(str(artifact_tree), '/nightly/')

        body = mock_s3.Object('test-bucket', 'nightly/a.sql.gz').get()['Body'].read()
        assert body == b'dump a'

    def test_upload_missing_directory(self, mock_s3, tmp_path):
        storage = S3Storage(bucket_name='test-bucket', region='us-east-1')

        with pytest.raises(StorageError, match="Local directory not found"):
            storage.upload_tree(str(tmp_path / 'missing'), 'prefix')

    def test_upload_to_missing_bucket_fails(self, empty_s3, artifact_tree):
        storage = S3Storage(bucket_name='gone-bucket', region='us-east-1')

        with pytest.raises(StorageError, match="S3 upload failed"):
            storage.upload_tree(str(artifact_tree), 'prefix')


class TestCreateStorage:
    def test_create_storage_from_config(self, make_config, aws_credentials):
        config = make_config(aws_bucket='from-config', aws_region='eu-west-1')

        storage = create_storage(config)

        assert storage.bucket_name == 'from-config'
        assert storage.s3_client.meta.region_name == 'eu-west-1'

    def test_unknown_profile(self, make_config, aws_credentials):
        config = make_config(aws_profile='no-such-profile')

        with pytest.raises(StorageError, match="Failed to initialize S3 client"):
            create_storage(config)
