from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

OBJECT_STORAGE_ROOT = os.getenv("OBJECT_STORAGE_ROOT", "data/object_storage")
DOCUMENT_BUCKET = os.getenv("DOCUMENT_BUCKET", "pilot-documents")


class ObjectStorageError(Exception):
    pass


@dataclass(frozen=True)
class ObjectStorageObjectMeta:
    bucket: str
    object_key: str
    size_bytes: int
    etag: str
    content_type: str
    absolute_path: Path


class LocalObjectStorageAdapter:
    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir
        self._root_dir.mkdir(parents=True, exist_ok=True)

    def _safe_object_path(self, bucket: str, object_key: str) -> Path:
        normalized_bucket = bucket.strip()
        if not normalized_bucket:
            raise ObjectStorageError("bucket is empty")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ObjectStorageError("invalid object key")
        if not key_path.parts:
            raise ObjectStorageError("object key is empty")
        return self._root_dir / normalized_bucket / Path(*key_path.parts)

    def put_bytes(
        self,
        *,
        bucket: str,
        object_key: str,
        content: bytes,
        content_type: str,
    ) -> ObjectStorageObjectMeta:
        path = self._safe_object_path(bucket, object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return ObjectStorageObjectMeta(
            bucket=bucket,
            object_key=object_key,
            size_bytes=len(content),
            etag=hashlib.sha256(content).hexdigest(),
            content_type=content_type,
            absolute_path=path,
        )

    def delete_bytes(self, *, bucket: str, object_key: str) -> None:
        self._safe_object_path(bucket, object_key).unlink(missing_ok=True)


class ObjectStorageService:
    def __init__(self, root_dir: Path | None = None, bucket: str | None = None) -> None:
        self._adapter = LocalObjectStorageAdapter(root_dir or Path(OBJECT_STORAGE_ROOT))
        self.bucket = bucket or DOCUMENT_BUCKET

    def build_document_key(self, *, user_id: str, document_id: str, file_name: str) -> str:
        safe_file_name = Path(file_name).name.replace("\\", "_").replace("/", "_").strip()
        if not safe_file_name:
            safe_file_name = "document.bin"
        return f"users/{user_id}/{document_id}/{safe_file_name}"

    def put_document(self, *, object_key: str, content: bytes, content_type: str) -> ObjectStorageObjectMeta:
        return self._adapter.put_bytes(
            bucket=self.bucket,
            object_key=object_key,
            content=content,
            content_type=content_type,
        )

    def delete_document(self, *, object_key: str) -> None:
        self._adapter.delete_bytes(bucket=self.bucket, object_key=object_key)

