"""Storage backends for SQL datasets.

SQL exercises reference a SQLite database through the ``dataUrl`` of their
predefined code.  To decouple the query runner from where those files live,
an abstract backend is defined with a common interface.  Two concrete
backends are provided:

* ``LocalStorageBackend`` – stores datasets on the local filesystem under a
  configurable base directory.  Suitable for docker-compose deployments with
  a mounted volume.

* ``GCSStorageBackend`` – stores datasets in Google Cloud Storage.  Suitable
  when deploying to Cloud Run and sharing datasets across instances.

``dataUrl`` values may be plain relative paths (``courses/members.db``) or,
for the GCS backend, full ``gs://bucket/path`` URLs naming the configured
bucket.

Backends are not thread-safe and should be instantiated per worker process.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import List

try:
    from google.cloud import storage  # type: ignore
except ImportError:
    storage = None  # type: ignore


def _normalise(relative_path: str) -> str:
    path = PurePosixPath(relative_path.lstrip("/"))
    if not path.parts or any(part == ".." for part in path.parts):
        raise ValueError(f"Invalid dataset path: {relative_path!r}")
    return str(path)


class StorageBackend:
    """Protocol for dataset storage backends."""

    def resolve(self, data_url: str) -> str:
        """Turn a ``dataUrl`` into a path relative to the backend root."""
        return _normalise(data_url)

    def save(self, relative_path: str, content: bytes) -> str:
        raise NotImplementedError

    def open(self, relative_path: str) -> bytes:
        raise NotImplementedError

    def delete(self, relative_path: str) -> None:
        raise NotImplementedError

    def list(self) -> List[str]:
        raise NotImplementedError


class LocalStorageBackend(StorageBackend):
    """Store datasets on a local filesystem."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save(self, relative_path: str, content: bytes) -> str:
        name = _normalise(relative_path)
        dest = self.base_dir / name
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(content)
        return name

    def open(self, relative_path: str) -> bytes:
        dest = self.base_dir / _normalise(relative_path)
        return dest.read_bytes()

    def delete(self, relative_path: str) -> None:
        path = self.base_dir / _normalise(relative_path)
        if not path.exists():
            raise FileNotFoundError(relative_path)
        path.unlink()

    def list(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        files = []
        for file in self.base_dir.rglob("*"):
            if file.is_file():
                files.append(file.relative_to(self.base_dir).as_posix())
        return sorted(files)


class GCSStorageBackend(StorageBackend):
    """Store datasets in Google Cloud Storage.

    This backend requires ``google-cloud-storage`` to be installed and
    appropriate service credentials to be available (Cloud Run automatically
    provides credentials via its service account).
    """

    def __init__(self, bucket_name: str) -> None:
        if storage is None:
            raise RuntimeError(
                "google-cloud-storage is not installed; cannot use GCSStorageBackend"
            )
        client = storage.Client()
        self.bucket_name = bucket_name
        self.bucket = client.bucket(bucket_name)

    def resolve(self, data_url: str) -> str:
        if data_url.startswith("gs://"):
            bucket, _, blob_name = data_url[len("gs://"):].partition("/")
            if bucket != self.bucket_name:
                raise ValueError(
                    f"Dataset bucket {bucket!r} does not match configured bucket {self.bucket_name!r}"
                )
            return _normalise(blob_name)
        return _normalise(data_url)

    def save(self, relative_path: str, content: bytes) -> str:
        blob_name = _normalise(relative_path)
        self.bucket.blob(blob_name).upload_from_string(content)
        return blob_name

    def open(self, relative_path: str) -> bytes:
        blob = self.bucket.blob(_normalise(relative_path))
        if not blob.exists():
            raise FileNotFoundError(relative_path)
        return blob.download_as_bytes()

    def delete(self, relative_path: str) -> None:
        blob = self.bucket.blob(_normalise(relative_path))
        if not blob.exists():
            raise FileNotFoundError(relative_path)
        blob.delete()

    def list(self) -> List[str]:
        blobs = self.bucket.list_blobs()
        return sorted(blob.name for blob in blobs if not blob.name.endswith("/"))


def build_storage(config) -> StorageBackend:
    """Instantiate the backend selected by ``config``."""
    if config.storage_backend == "gcs":
        if config.gcs_bucket is None:
            raise RuntimeError("CODESANDBOX_GCS_BUCKET must be set when using GCS storage backend")
        return GCSStorageBackend(config.gcs_bucket)
    return LocalStorageBackend(config.storage_path)
