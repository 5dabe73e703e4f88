from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from google.cloud import storage

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Filesystem-backed object store laid out like a bucket."""

    def __init__(self, root: Path, bucket: str = "compliance-bucket") -> None:
        self.root = Path(root)
        self.bucket = bucket

    def open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        return None

    def upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        logger.info("[ObjectStore] Uploading object: gs://%s/%s (%s, %d bytes)", self.bucket, key, content_type, len(data))
        root = self.root.resolve()
        p = (root / key).resolve()
        if p == root or not p.is_relative_to(root):
            raise ValueError(f"Object key escapes the store root: {key!r}")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return p.as_uri()

    def count(self) -> int:
        if not self.root.exists():
            return 0
        return sum(1 for p in self.root.rglob("*") if p.is_file())


class GCSObjectStore:
    def __init__(self, bucket: str, project: Optional[str] = None) -> None:
        self.bucket_name = bucket
        self.project = project
        self._client = None
        self._bucket = None

    def open(self) -> None:
        self._client = storage.Client(project=self.project)
        self._bucket = self._client.bucket(self.bucket_name)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._bucket = None

    def upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        if self._bucket is None:
            raise RuntimeError("GCSObjectStore is not open")
        logger.info("[GCS] Uploading object: gs://%s/%s", self.bucket_name, key)
        blob = self._bucket.blob(key)
        blob.upload_from_string(data, content_type=content_type)
        return f"gs://{self.bucket_name}/{key}"

    def count(self) -> int:
        if self._client is None:
            raise RuntimeError("GCSObjectStore is not open")
        return sum(1 for _ in self._client.list_blobs(self.bucket_name))
