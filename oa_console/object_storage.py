"""
Object storage for chat attachments (S3 compatible, via the MinIO client).

Used by the media relay to mirror inbound images and by the operator
upload handshake to hand out presigned URLs. Messages keep the object
name of their image, so read URLs can be re-signed whenever they are
served instead of expiring with the first signature.
"""

import io
import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import unquote

from minio import Minio

from oa_console.config import Settings, get_settings
from oa_console.errors import ObjectStorageError

logger = logging.getLogger(__name__)

# SigV4 presigned URLs cannot outlive 7 days
MAX_PRESIGN_SECONDS = 604800


class ObjectStorage:
    def __init__(
        self,
        minio_client: Minio,
        bucket: str,
        url_expires_in: int = 31536000,
        public_base_url: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ):
        self.minio = minio_client
        self.bucket = bucket
        self.url_expires_in = url_expires_in
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        client = Minio(
            settings.STORAGE_ENDPOINT,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            secure=settings.STORAGE_SECURE,
            region=settings.STORAGE_REGION,
        )
        scheme = "https" if settings.STORAGE_SECURE else "http"
        return cls(
            client,
            bucket=settings.STORAGE_BUCKET,
            url_expires_in=settings.STORAGE_URL_EXPIRES_IN,
            public_base_url=settings.STORAGE_PUBLIC_BASE_URL,
            endpoint_url=f"{scheme}://{settings.STORAGE_ENDPOINT}",
        )

    def put_bytes(self, object_name: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Upload (or overwrite) an object."""
        try:
            self.minio.put_object(
                bucket_name=self.bucket,
                object_name=object_name,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except Exception as e:
            logger.error(f"Upload of {object_name} failed: {e}")
            raise ObjectStorageError(f"upload of {object_name} failed") from e
        logger.info(f"Uploaded {object_name} ({len(data)} bytes) to {self.bucket}")

    def durable_url(self, object_name: str) -> str:
        """
        Read URL for an object: a public URL when a public base is
        configured, otherwise a presigned GET URL valid for
        url_expires_in seconds, clamped to what SigV4 allows.
        """
        if self.public_base_url:
            return f"{self.public_base_url}/{self.bucket}/{object_name}"
        expires = min(self.url_expires_in, MAX_PRESIGN_SECONDS)
        try:
            return self.minio.presigned_get_object(
                bucket_name=self.bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires),
            )
        except Exception as e:
            logger.error(f"Signing read URL for {object_name} failed: {e}")
            raise ObjectStorageError(f"signing read URL for {object_name} failed") from e

    def upload_url(self, object_name: str, expires: int = 3600) -> str:
        """Presigned PUT URL the operator's browser uploads to directly."""
        try:
            return self.minio.presigned_put_object(
                bucket_name=self.bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires),
            )
        except Exception as e:
            logger.error(f"Signing upload URL for {object_name} failed: {e}")
            raise ObjectStorageError(f"signing upload URL for {object_name} failed") from e

    def object_name_for_url(self, url: str) -> Optional[str]:
        """Object name behind a URL this bucket handed out; None for any other URL."""
        for base in (self.public_base_url, self.endpoint_url):
            if not base:
                continue
            prefix = f"{base}/{self.bucket}/"
            if url.startswith(prefix):
                return unquote(url[len(prefix):].split("?", 1)[0]) or None
        return None


def get_object_storage() -> ObjectStorage:
    """FastAPI dependency."""
    return ObjectStorage.from_settings(get_settings())
