"""
MinIO blob store for invoice documents
"""
from dataclasses import dataclass
from minio import Minio
from minio.error import S3Error
from typing import Optional
import asyncio
import io
import logging

from app.common.exceptions import StorageUploadFailed
from app.core.config import settings

logger = logging.getLogger(__name__)

NEGOTIATION_INVOICE_FOLDER = "negotiation-invoice"
PAYMENT_INVOICE_FOLDER = "payment-invoice"


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str  # Public URL, safe to persist


def build_object_key(folder: str, file_name: str) -> str:
    return f"{folder}/{file_name}"


def to_public_url(internal_url: str) -> str:
    """Swap the internal storage host for the public one."""
    return internal_url.replace(settings.storage_internal_base_url, settings.STORAGE_PUBLIC_BASE_URL.rstrip("/"), 1)


class BlobStorageService:
    """Uploads invoice PDFs to MinIO and hands back their public URL"""

    def __init__(self, client: Optional[Minio] = None):
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_USE_SSL
        )
        self.bucket_name = settings.MINIO_BUCKET_NAME
        self._bucket_checked = False

    def _ensure_bucket_exists(self):
        """Ensure the bucket exists, create if it doesn't"""
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(self.bucket_name):
            self.client.make_bucket(self.bucket_name)
            logger.info(f"Created MinIO bucket: {self.bucket_name}")
        self._bucket_checked = True

    def _put(self, data: bytes, key: str, content_type: str) -> str:
        self._ensure_bucket_exists()
        self.client.put_object(
            bucket_name=self.bucket_name,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type
        )
        return f"{settings.storage_internal_base_url}/{self.bucket_name}/{key}"

    async def upload(self, data: bytes, key: str, content_type: str) -> StoredObject:
        """Store ``data`` under ``key``; the blocking client call runs in a worker thread."""
        try:
            internal_url = await asyncio.to_thread(self._put, data, key, content_type)
        except S3Error as e:
            logger.error(f"MinIO upload error for {key}: {e}")
            raise StorageUploadFailed()
        except Exception as e:
            # Connection level failures from the HTTP client
            logger.error(f"MinIO unreachable while uploading {key}: {e}")
            raise StorageUploadFailed()
        return StoredObject(key=key, url=to_public_url(internal_url))


_blob_storage: Optional[BlobStorageService] = None


def get_blob_storage() -> BlobStorageService:
    """Process wide client, created on first use"""
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = BlobStorageService()
    return _blob_storage
