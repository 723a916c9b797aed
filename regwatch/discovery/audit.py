"""Audit reporting for fetch attempts and item transitions.

The pipeline reports through :class:`SafeAuditLog`, which never lets an
audit failure interrupt discovery: delivery problems are logged and
dropped.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """One audited occurrence.

    ``outcome`` is a short machine-readable label such as ``fetch_failed``,
    ``circuit_open``, ``blocked``, ``handed_off`` or ``retries_exhausted``.
    """

    endpoint_id: str
    url: str
    outcome: str
    timestamp: datetime = field(default_factory=utcnow)
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id,
            "url": self.url,
            "outcome": self.outcome,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }


class AuditLog(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditLog:
    """Writes audit events to a logger."""

    def __init__(self, name: str = "regwatch.audit") -> None:
        self._logger = logging.getLogger(name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info(
            "%s endpoint=%s url=%s %s",
            event.outcome,
            event.endpoint_id,
            event.url,
            json.dumps(event.detail, sort_keys=True, default=str),
        )


class JsonlAuditLog:
    """Appends audit events to a JSON Lines file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), sort_keys=True, default=str) + "\n"
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)


class InMemoryAuditLog:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def outcomes(self) -> list[str]:
        with self._lock:
            return [event.outcome for event in self.events]


class SafeAuditLog:
    """Wraps an audit log so that delivery failures never propagate."""

    def __init__(self, inner: AuditLog) -> None:
        self.inner = inner

    def record(self, event: AuditEvent) -> None:
        try:
            self.inner.record(event)
        except Exception:
            logger.exception(
                "Audit delivery failed for %s (%s)", event.outcome, event.url
            )

    def emit(self, endpoint_id: str, url: str, outcome: str, **detail: Any) -> None:
        self.record(AuditEvent(endpoint_id=endpoint_id, url=url, outcome=outcome, detail=detail))
