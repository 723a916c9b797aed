"""Handoff of classified items to downstream queues.

Scanned PDFs need OCR; every other kind goes to text extraction. Queues
carry item ids only, and delivery is at-least-once: a consumer may see the
same id twice and must treat it idempotently.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Protocol

from .errors import StoreError
from .models import ClassificationKind

logger = logging.getLogger(__name__)

EXTRACT_QUEUE = "extract"
OCR_QUEUE = "ocr"

DEFAULT_ROUTES: dict[ClassificationKind, str] = {
    ClassificationKind.HTML_RAW: EXTRACT_QUEUE,
    ClassificationKind.PDF_TEXT: EXTRACT_QUEUE,
    ClassificationKind.PDF_SCANNED: OCR_QUEUE,
    ClassificationKind.DOCX: EXTRACT_QUEUE,
    ClassificationKind.DOC: EXTRACT_QUEUE,
    ClassificationKind.XLSX: EXTRACT_QUEUE,
    ClassificationKind.XLS: EXTRACT_QUEUE,
}


class WorkQueue(Protocol):
    name: str

    def enqueue(self, item_id: str, kind: ClassificationKind) -> None: ...


class InMemoryQueue:
    def __init__(self, name: str) -> None:
        self.name = name
        self.messages: list[tuple[str, ClassificationKind]] = []
        self._lock = threading.Lock()

    def enqueue(self, item_id: str, kind: ClassificationKind) -> None:
        with self._lock:
            self.messages.append((item_id, kind))

    @property
    def item_ids(self) -> list[str]:
        with self._lock:
            return [item_id for item_id, _ in self.messages]


class JsonlQueue:
    """Queue backed by an append-only JSON Lines file."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = Path(path)
        self._lock = threading.Lock()

    def enqueue(self, item_id: str, kind: ClassificationKind) -> None:
        record = {
            "item_id": item_id,
            "kind": kind.value,
            "enqueued_at": datetime.now(timezone.utc).isoformat(),
        }
        line = json.dumps(record, sort_keys=True) + "\n"
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
        except OSError as exc:
            raise StoreError(f"Cannot write queue {self.path}: {exc}") from exc

    def read(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]


class QueueRouter:
    """Maps classification kinds to named queues."""

    def __init__(
        self,
        queues: Mapping[str, WorkQueue],
        routes: Mapping[ClassificationKind, str] | None = None,
    ) -> None:
        self.routes = dict(routes or DEFAULT_ROUTES)
        missing = set(self.routes.values()) - set(queues)
        if missing:
            raise ValueError(f"No queue configured for: {', '.join(sorted(missing))}")
        self.queues = dict(queues)

    @classmethod
    def in_memory(cls) -> "QueueRouter":
        return cls({
            EXTRACT_QUEUE: InMemoryQueue(EXTRACT_QUEUE),
            OCR_QUEUE: InMemoryQueue(OCR_QUEUE),
        })

    @classmethod
    def jsonl(cls, root: Path) -> "QueueRouter":
        root = Path(root)
        return cls({
            EXTRACT_QUEUE: JsonlQueue(EXTRACT_QUEUE, root / f"{EXTRACT_QUEUE}.jsonl"),
            OCR_QUEUE: JsonlQueue(OCR_QUEUE, root / f"{OCR_QUEUE}.jsonl"),
        })

    def queue_for(self, kind: ClassificationKind) -> WorkQueue:
        return self.queues[self.routes[kind]]

    def hand_off(self, item_id: str, kind: ClassificationKind) -> str:
        """Enqueue ``item_id`` and return the queue name."""
        queue = self.queue_for(kind)
        queue.enqueue(item_id, kind)
        logger.debug("Handed off %s (%s) to %s", item_id, kind.value, queue.name)
        return queue.name
