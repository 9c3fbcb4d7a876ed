"""
Remote storage for backup artifacts.

Uploads the local artifact tree to S3 with the key format:
{aws_dir}/{relative path in backup dir}
"""

import logging
from pathlib import Path
from typing import List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

MISSING_BUCKET_CODES = ('404', 'NoSuchBucket', 'NotFound')


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class S3Storage:
    """
    Handler for uploading backups to AWS S3 (or an S3 compatible endpoint).
    """

    def __init__(
        self,
        bucket_name: str,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            profile: Named profile from ~/.aws/credentials and ~/.aws/config
            region: AWS region (default: from the profile)
            endpoint_url: Custom endpoint for S3 compatible services
        """
        self.bucket_name = bucket_name
        self.region = region or None

        try:
            session = boto3.Session(profile_name=profile or None, region_name=self.region)
            self.s3_client = session.client('s3', endpoint_url=endpoint_url or None)
        except BotoCoreError as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def ensure_target(self) -> str:
        """
        Make sure the bucket exists and is reachable, creating it if missing.

        Returns:
            'exists' or 'created'

        Raises:
            StorageError: If the bucket is unreachable or cannot be created
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            logger.info(f"AWS bucket '{self.bucket_name}' accessible ... Done")
            return 'exists'
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code not in MISSING_BUCKET_CODES:
                raise StorageError(f"Failed to check bucket {self.bucket_name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to check bucket {self.bucket_name}: {e}")

        logger.warning(f"No such bucket: {self.bucket_name}")
        self._create_bucket()
        logger.info(f"Created AWS S3 bucket '{self.bucket_name}'")
        return 'created'

    def _create_bucket(self):
        params = {'Bucket': self.bucket_name}
        region = self.region or self.s3_client.meta.region_name
        if region and region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': region}

        try:
            self.s3_client.create_bucket(**params)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"Failed to create bucket {self.bucket_name} ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to create bucket {self.bucket_name}: {e}")

    def upload_tree(self, local_dir: str, prefix: str) -> List[str]:
        """
        Recursively upload a directory.

        Args:
            local_dir: Local artifact tree
            prefix: Destination key prefix

        Returns:
            S3 keys of the uploaded files

        Raises:
            StorageError: If any upload fails
        """
        root = Path(local_dir)
        if not root.is_dir():
            raise StorageError(f"Local directory not found: {local_dir}")

        prefix = prefix.strip('/')
        keys = []

        for file_path in sorted(root.rglob('*')):
            if not file_path.is_file():
                continue

            relative_path = file_path.relative_to(root).as_posix()
            s3_key = f"{prefix}/{relative_path}" if prefix else relative_path

            try:
                self.s3_client.upload_file(str(file_path), self.bucket_name, s3_key)
            except ClientError as e:
                error_code = e.response.get('Error', {}).get('Code', 'Unknown')
                raise StorageError(f"S3 upload failed for {relative_path} ({error_code}): {e}")
            except (BotoCoreError, S3UploadFailedError) as e:
                raise StorageError(f"S3 upload failed for {relative_path}: {e}")

            logger.debug(f"Uploaded {file_path} to s3://{self.bucket_name}/{s3_key}")
            keys.append(s3_key)

        return keys


def create_storage(config) -> S3Storage:
    """Build the S3 handler from the run configuration."""
    return S3Storage(
        bucket_name=config.aws_bucket,
        profile=config.aws_profile,
        region=config.aws_region,
        endpoint_url=config.aws_endpoint_url
    )
