"""
MinIO client for uploaded chat images.
Stores image bytes under a flat ``images/`` prefix and reads them back for
the /uploads route.
"""
import logging
from typing import Optional, Tuple
from io import BytesIO
from minio import Minio
from minio.error import S3Error
from core.config import settings

logger = logging.getLogger(__name__)

IMAGE_PREFIX = "images/"


class MinIOClient:
    """Client for MinIO object storage operations."""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        """
        Initialize MinIO client and make sure the image bucket exists.

        Args:
            client: Preconfigured Minio instance (built from settings when omitted)
            bucket: Bucket name (settings.minio_bucket when omitted)
        """
        self.bucket = bucket or settings.minio_bucket
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure
        )
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"Created MinIO bucket: {self.bucket}")
            else:
                logger.info(f"MinIO bucket exists: {self.bucket}")
        except S3Error as e:
            logger.error(f"Failed to initialize MinIO client: {e}")
            raise

    def put_image(self, filename: str, data: bytes, content_type: str) -> str:
        """
        Store an image.

        Args:
            filename: Generated image file name (no prefix)
            data: Image bytes
            content_type: MIME type recorded on the object

        Returns:
            Object name inside the bucket
        """
        object_name = f"{IMAGE_PREFIX}{filename}"
        try:
            self.client.put_object(
                self.bucket,
                object_name,
                BytesIO(data),
                len(data),
                content_type=content_type
            )
            logger.info(f"Uploaded image: {object_name} ({len(data)} bytes)")
            return object_name
        except S3Error as e:
            logger.error(f"Failed to upload image {object_name}: {e}")
            raise

    def get_image(self, filename: str) -> Optional[Tuple[bytes, str]]:
        """
        Read an image back.

        Returns:
            (bytes, content_type), or None when the image does not exist
        """
        object_name = f"{IMAGE_PREFIX}{filename}"
        response = None
        try:
            response = self.client.get_object(self.bucket, object_name)
            content_type = response.headers.get("Content-Type", "application/octet-stream")
            return response.read(), content_type
        except S3Error as e:
            if e.code == "NoSuchKey":
                logger.warning(f"Image not found: {object_name}")
                return None
            logger.error(f"Failed to read image {object_name}: {e}")
            raise
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def ping(self) -> bool:
        """Check the bucket is reachable."""
        return self.client.bucket_exists(self.bucket)


# Global MinIO client instance (initialized on first use)
_minio_client: Optional[MinIOClient] = None


def get_minio_client() -> MinIOClient:
    """
    Get or create global MinIO client instance.

    Returns:
        MinIOClient instance
    """
    global _minio_client
    if _minio_client is None:
        _minio_client = MinIOClient()
    return _minio_client
