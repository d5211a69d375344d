"""
Tests for the MinIO invoice store
"""
import pytest
from minio.error import S3Error

from app.common.exceptions import StorageUploadFailed
from app.core.config import settings
from app.modules.files.service import (
    NEGOTIATION_INVOICE_FOLDER, BlobStorageService, build_object_key, to_public_url
)


class AccessDenied(S3Error):
    def __init__(self):
        Exception.__init__(self, "AccessDenied")

    def __str__(self):
        return "AccessDenied"


class RecordingMinio:
    """Just enough of the Minio client for uploads"""

    def __init__(self, bucket_exists=True, error=None):
        self._bucket_exists = bucket_exists
        self.error = error
        self.created_buckets = []
        self.objects = {}

    def bucket_exists(self, bucket_name):
        return self._bucket_exists

    def make_bucket(self, bucket_name):
        self.created_buckets.append(bucket_name)
        self._bucket_exists = True

    def put_object(self, bucket_name, object_name, data, length, content_type):
        if self.error:
            raise self.error
        self.objects[object_name] = (data.read(), length, content_type)


def test_object_key():
    assert build_object_key(NEGOTIATION_INVOICE_FOLDER, "negotiation-invoice-RE-1-202542") == \
        "negotiation-invoice/negotiation-invoice-RE-1-202542"


def test_public_url_replaces_the_internal_host(monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_PUBLIC_BASE_URL", "https://files.example.com/")
    internal = f"{settings.storage_internal_base_url}/vouchers/payment-invoice/x.pdf"
    assert to_public_url(internal) == "https://files.example.com/vouchers/payment-invoice/x.pdf"


async def test_upload_creates_missing_bucket_and_returns_public_url(monkeypatch):
    monkeypatch.setattr(settings, "STORAGE_PUBLIC_BASE_URL", "https://files.example.com")
    client = RecordingMinio(bucket_exists=False)
    storage = BlobStorageService(client=client)

    stored = await storage.upload(b"%PDF", "negotiation-invoice/a", "application/pdf")

    assert client.created_buckets == [settings.MINIO_BUCKET_NAME]
    assert client.objects["negotiation-invoice/a"] == (b"%PDF", 4, "application/pdf")
    assert stored.key == "negotiation-invoice/a"
    assert stored.url == f"https://files.example.com/{settings.MINIO_BUCKET_NAME}/negotiation-invoice/a"


@pytest.mark.parametrize("error", [
    AccessDenied(),
    ConnectionRefusedError("minio down"),
])
async def test_upload_errors_become_storage_errors(error):
    storage = BlobStorageService(client=RecordingMinio(error=error))
    with pytest.raises(StorageUploadFailed) as exc_info:
        await storage.upload(b"%PDF", "negotiation-invoice/a", "application/pdf")
    assert exc_info.value.status_code == 502
