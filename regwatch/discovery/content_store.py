"""Raw content storage.

Fetched bodies are stored by their SHA-256 digest. The digest doubles as the
item's ``content_hash`` and the reference recorded in ``raw_content_ref``,
so unchanged content is written once no matter how often it is fetched.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import uuid
from pathlib import Path
from typing import Protocol

from .errors import StoreError

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    def put(self, body: bytes) -> str:
        """Store ``body`` and return its reference."""

    def get(self, ref: str) -> bytes:
        """Return the bytes stored under ``ref``."""


def sha256_ref(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


class InMemoryContentStore:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, body: bytes) -> str:
        ref = sha256_ref(body)
        with self._lock:
            self._blobs.setdefault(ref, body)
        return ref

    def get(self, ref: str) -> bytes:
        with self._lock:
            return self._blobs[ref]

    def __len__(self) -> int:
        return len(self._blobs)


class FileContentStore:
    """Content-addressed files under ``root/ab/abcdef...``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, ref: str) -> Path:
        return self.root / ref[:2] / ref

    def put(self, body: bytes) -> str:
        ref = sha256_ref(body)
        path = self._path(ref)
        if path.exists():
            return ref
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(f"{ref}.{uuid.uuid4().hex}.tmp")
            tmp_path.write_bytes(body)
            tmp_path.replace(path)
        except OSError as exc:
            raise StoreError(f"Cannot write content {ref}: {exc}") from exc
        logger.debug("Stored %d bytes as %s", len(body), ref)
        return ref

    def get(self, ref: str) -> bytes:
        try:
            return self._path(ref).read_bytes()
        except OSError as exc:
            raise StoreError(f"Cannot read content {ref}: {exc}") from exc
