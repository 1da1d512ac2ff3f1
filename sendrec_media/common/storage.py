import os
from typing import Tuple

import urllib3
from minio import Minio

from .config import settings


def get_minio():
    http_client = urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=10, read=settings.storage_timeout_seconds),
        retries=urllib3.Retry(total=0),
    )
    client = Minio(
        settings.minio_endpoint,
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=settings.minio_secure,
        http_client=http_client,
    )
    return client


def extension_for_content_type(content_type: str) -> str:
    if content_type == "video/mp4":
        return ".mp4"
    if content_type == "video/quicktime":
        return ".mov"
    return ".webm"


def thumbnail_key_for(file_key: str) -> str:
    # keep the prefix, swap the extension
    base, _ = os.path.splitext(file_key)
    return f"{base}.jpg"


class AssetStore:
    """Object storage for recordings, one bucket per deployment.

    Errors from the MinIO client (``minio.error.S3Error``) and from the
    underlying HTTP pool propagate to the caller unchanged.
    """

    def __init__(self, client=None, bucket: str = None):
        self.client = client or get_minio()
        self.bucket = bucket or settings.media_bucket

    def download_to_file(self, key: str, local_path: str) -> None:
        self.client.fget_object(self.bucket, key, local_path)

    def upload_file(self, key: str, local_path: str, content_type: str) -> None:
        self.client.fput_object(self.bucket, key, local_path, content_type=content_type)

    def delete_object(self, key: str) -> None:
        self.client.remove_object(self.bucket, key)

    def head_object(self, key: str) -> Tuple[int, str]:
        stat = self.client.stat_object(self.bucket, key)
        return stat.size, stat.content_type
