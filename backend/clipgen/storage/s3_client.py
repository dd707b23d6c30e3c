"""
S3-compatible object storage client.

Uses boto3 with the S3 API; works with AWS S3, Cloudflare R2 or MinIO.
Finished outputs and uploaded sources are mirrored here as a backup so a
download can still be served (via presigned URL) after local files are
purged. The bucket stays private.
"""
import logging
from typing import Optional
import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError

from clipgen.config import settings

logger = logging.getLogger(__name__)


class S3Storage:
    """
    S3-compatible client for output mirroring.

    Fails gracefully if not configured (is_configured is False and every
    operation is a logged no-op).
    """

    def __init__(self):
        """
        Initialize the S3 client with boto3.

        Uses environment variables for configuration.
        """
        self._client = None
        self._configured = False

        if not all([
            settings.s3_bucket,
            settings.s3_access_key,
            settings.s3_secret_key
        ]):
            logger.info(
                "S3 mirror not configured. "
                "Set S3_BUCKET, S3_ACCESS_KEY and S3_SECRET_KEY to enable it."
            )
            return

        try:
            self._client = boto3.client(
                's3',
                endpoint_url=settings.s3_endpoint,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                region_name=settings.s3_region,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'path'}
                )
            )
            self._configured = True
            logger.info(f"S3 client initialized for bucket: {settings.s3_bucket}")

        except NoCredentialsError:
            logger.error("S3 credentials not found or invalid")
        except Exception as e:
            logger.error(f"Failed to initialize S3 client: {e}")

    @property
    def is_configured(self) -> bool:
        """Check if S3 client is properly configured."""
        return self._configured and self._client is not None

    @property
    def bucket(self) -> str:
        """Get configured bucket name."""
        return settings.s3_bucket

    @staticmethod
    def output_key(job_id: str) -> str:
        return f"outputs/{job_id}.mp4"

    @staticmethod
    def upload_key(filename: str) -> str:
        return f"uploads/{filename}"

    def upload_file(self, local_path: str, object_key: str, content_type: str = "video/mp4") -> bool:
        """
        Upload a local file.

        Args:
            local_path: File to upload
            object_key: Destination key in the bucket
            content_type: MIME type stored with the object

        Returns:
            True if the upload succeeded
        """
        if not self.is_configured:
            logger.warning(f"Cannot upload {object_key}: S3 not configured")
            return False

        try:
            self._client.upload_file(
                local_path,
                self.bucket,
                object_key,
                ExtraArgs={'ContentType': content_type}
            )
            logger.info(f"Uploaded {local_path} to s3://{self.bucket}/{object_key}")
            return True
        except ClientError as e:
            logger.error(f"Failed to upload {object_key} to S3: {e}")
            return False

    def get_presigned_read_url(self, object_key: str, expiration: Optional[int] = None) -> Optional[str]:
        """
        Generate a presigned GET URL for reading an object.

        Args:
            object_key: The S3 object key
            expiration: URL expiration in seconds (default from settings)

        Returns:
            Presigned URL string, or None if generation fails
        """
        if not self.is_configured:
            return None

        if expiration is None:
            expiration = settings.s3_presign_expiration

        try:
            return self._client.generate_presigned_url(
                ClientMethod='get_object',
                Params={
                    'Bucket': self.bucket,
                    'Key': object_key,
                },
                ExpiresIn=expiration
            )
        except ClientError as e:
            logger.error(f"Failed to generate presigned read URL for {object_key}: {e}")
            return None

    def check_object_exists(self, object_key: str) -> bool:
        """Check if an object exists in the bucket."""
        if not self.is_configured:
            return False

        try:
            self._client.head_object(Bucket=self.bucket, Key=object_key)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey', 'NotFound'):
                return False
            logger.error(f"Error checking object existence: {e}")
            return False


# Singleton instance (lazy initialization)
_s3_storage: Optional[S3Storage] = None


def get_s3_storage() -> S3Storage:
    """
    Get the S3 storage singleton.

    Returns:
        S3Storage instance (may not be configured)
    """
    global _s3_storage
    if _s3_storage is None:
        _s3_storage = S3Storage()
    return _s3_storage
