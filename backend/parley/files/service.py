"""Attachment storage: bytes on disk, metadata in DuckDB.

Layout:
    {upload_dir}/{id[:2]}/{id}{ext}

Two-character shard directories keep any single directory small. The stored
name never contains client input besides the lower-cased extension.
"""
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

import duckdb

from parley.errors import UploadTooLargeError

from .schemas import StoredUpload

logger = logging.getLogger(__name__)


def _client_basename(filename: str) -> str:
    # Browsers on Windows may send "C:\\fakepath\\name.png"
    name = PurePosixPath(filename.replace("\\", "/")).name.strip()
    return name or "unnamed"


class UploadStore:
    """Saves uploads and answers lookups by upload id."""

    def __init__(self, upload_dir: str, db_path: str = ":memory:", max_bytes: int = 20 * 1024 * 1024):
        self.root = Path(upload_dir)
        self.max_bytes = max_bytes
        self._lock = threading.Lock()
        self.root.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(db_path)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS uploads (
                id VARCHAR PRIMARY KEY,
                name VARCHAR NOT NULL,
                blob VARCHAR NOT NULL,
                mimetype VARCHAR NOT NULL,
                size BIGINT NOT NULL,
                uploaded_at TIMESTAMP NOT NULL
            )
        """)

    def put(self, filename: str, content: bytes, mimetype: str) -> StoredUpload:
        """Write ``content`` to disk and record it.

        Raises:
            UploadTooLargeError: If ``content`` is over the size limit.
        """
        if len(content) > self.max_bytes:
            raise UploadTooLargeError(len(content), self.max_bytes)

        name = _client_basename(filename)
        upload_id = uuid.uuid4().hex
        blob = f"{upload_id[:2]}/{upload_id}{Path(name).suffix.lower()}"
        target = self.root / blob
        target.parent.mkdir(exist_ok=True)
        target.write_bytes(content)

        upload = StoredUpload(
            id=upload_id,
            name=name,
            blob=blob,
            mimetype=mimetype or "application/octet-stream",
            size=len(content),
            uploaded_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._conn.execute(
                "INSERT INTO uploads VALUES (?, ?, ?, ?, ?, ?)",
                [upload.id, upload.name, upload.blob, upload.mimetype, upload.size,
                 upload.uploaded_at.replace(tzinfo=None)],
            )
        logger.info(f"[Uploads] Stored {name} as {blob} ({upload.size} bytes)")
        return upload

    def lookup(self, upload_id: str) -> Optional[StoredUpload]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, blob, mimetype, size, uploaded_at FROM uploads WHERE id = ?",
                [upload_id],
            ).fetchone()
        if row is None:
            return None
        return StoredUpload(
            id=row[0], name=row[1], blob=row[2], mimetype=row[3], size=row[4],
            uploaded_at=row[5].replace(tzinfo=timezone.utc),
        )

    def path_for(self, upload: StoredUpload) -> Optional[Path]:
        """Location of the bytes, or None if they are gone from disk."""
        path = self.root / upload.blob
        return path if path.is_file() else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()


_upload_store: Optional[UploadStore] = None


def get_upload_store() -> UploadStore:
    """Return the process-wide upload store, creating it from config on first use."""
    global _upload_store
    if _upload_store is None:
        from parley.config import get_config

        uploads = get_config().uploads
        _upload_store = UploadStore(uploads.upload_dir, uploads.db_path, uploads.max_file_size_bytes)
    return _upload_store


def set_upload_store(store: Optional[UploadStore]) -> None:
    """Install (or clear, with None) the process-wide upload store."""
    global _upload_store
    _upload_store = store


def reset_upload_store() -> None:
    """Close and forget the process-wide upload store."""
    global _upload_store
    if _upload_store is not None:
        _upload_store.close()
    _upload_store = None
