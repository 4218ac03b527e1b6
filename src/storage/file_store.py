"""
Local file storage for uploaded and exported files.

Files live under UPLOAD_DIR/<bucket>/<path>. Buckets in use:
    chalk-talks, research-descriptions, scientific-figures, completed-documents
"""

import os
import logging
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)


class LocalFileStore:
    """Bucket/path file storage on the local disk."""

    def __init__(self, root: str = None, base_url: str = None):
        self.root = Path(root or os.getenv("UPLOAD_DIR", "./storage")).resolve()
        self.base_url = (base_url or os.getenv("FILE_BASE_URL", "/files")).rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"File store rooted at {self.root}")

    def _path(self, bucket: str, path: str) -> Path:
        """Resolve bucket/path, refusing anything outside the root."""
        full = (self.root / bucket / path).resolve()
        if self.root not in full.parents:
            raise ValueError(f"Invalid storage path: {bucket}/{path}")
        return full

    def upload(self, bucket: str, path: str, data: bytes) -> str:
        """Write data, replacing any existing file. Returns the stored path."""
        full = self._path(bucket, path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {bucket}/{path}")
        return path

    def download(self, bucket: str, path: str) -> bytes:
        """
        Read a stored file.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        full = self._path(bucket, path)
        if not full.is_file():
            raise FileNotFoundError(f"{bucket}/{path}")
        return full.read_bytes()

    def exists(self, bucket: str, path: str) -> bool:
        try:
            return self._path(bucket, path).is_file()
        except ValueError:
            return False

    def list(self, bucket: str, prefix: str) -> List[str]:
        """List file paths under a folder prefix, relative to the bucket."""
        folder = self._path(bucket, prefix)
        if not folder.is_dir():
            return []
        bucket_root = self.root / bucket
        return sorted(str(p.relative_to(bucket_root)) for p in folder.rglob("*") if p.is_file())

    def remove(self, bucket: str, paths: List[str]) -> int:
        """Delete files, ignoring ones that are already gone."""
        removed = 0
        for path in paths:
            full = self._path(bucket, path)
            if full.is_file():
                full.unlink()
                removed += 1
        return removed

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/{bucket}/{path}"

    def local_path(self, bucket: str, path: str) -> Path:
        """Filesystem path for serving a file."""
        return self._path(bucket, path)
