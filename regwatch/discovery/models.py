"""Data model for regulatory discovery.

Three durable entities:

- :class:`RegulatorySource`: a government or institutional origin.
- :class:`Endpoint`: one concrete URL polled on a schedule, with health state.
- :class:`DiscoveredItem`: one fetched and triaged unit of content.

Entities serialize to plain dictionaries for the JSON store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Priority(str, Enum):
    """Endpoint polling priority. CRITICAL endpoints are processed first."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Sort key: lower rank is processed earlier."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class Frequency(str, Enum):
    """How often an endpoint is due for polling."""

    EVERY_RUN = "EVERY_RUN"
    DAILY = "DAILY"
    TWICE_WEEKLY = "TWICE_WEEKLY"
    WEEKLY = "WEEKLY"

    @property
    def interval(self) -> timedelta:
        return CHECK_INTERVALS[self]


CHECK_INTERVALS: dict[Frequency, timedelta] = {
    Frequency.EVERY_RUN: timedelta(0),
    Frequency.DAILY: timedelta(hours=24),
    Frequency.TWICE_WEEKLY: timedelta(hours=84),
    Frequency.WEEKLY: timedelta(days=7),
}


class ListingStrategy(str, Enum):
    """How the body of an endpoint is turned into items.

    - HTML_LIST: the endpoint is a listing page; links become items.
    - SITEMAP_XML: the endpoint is a sitemap; ``<loc>`` entries become items.
    - DOCUMENT: the endpoint URL is itself the document.
    """

    HTML_LIST = "HTML_LIST"
    SITEMAP_XML = "SITEMAP_XML"
    DOCUMENT = "DOCUMENT"


class ItemStatus(str, Enum):
    PENDING = "PENDING"
    FETCHED = "FETCHED"
    CLASSIFIED = "CLASSIFIED"
    HANDED_OFF = "HANDED_OFF"
    FAILED = "FAILED"


class ClassificationKind(str, Enum):
    """Routing label assigned to fetched content. Closed set."""

    HTML_RAW = "HTML_RAW"
    PDF_TEXT = "PDF_TEXT"
    PDF_SCANNED = "PDF_SCANNED"
    DOCX = "DOCX"
    DOC = "DOC"
    XLSX = "XLSX"
    XLS = "XLS"

    @property
    def is_office(self) -> bool:
        return self in (
            ClassificationKind.DOCX,
            ClassificationKind.DOC,
            ClassificationKind.XLSX,
            ClassificationKind.XLS,
        )


@dataclass
class RegulatorySource:
    """A government or institutional origin of regulatory content.

    Sources are never deleted, only deactivated, to preserve audit history.
    """

    id: str
    name: str
    domain: str
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegulatorySource":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            domain=data["domain"],
            is_active=data.get("is_active", True),
        )


@dataclass
class Endpoint:
    """One concrete URL polled on a schedule.

    Health fields (``consecutive_errors``, ``last_error``,
    ``circuit_open_until``) are written only by the rate limiter when it
    releases a permit for this endpoint.

    Attributes:
        id: Stable identifier.
        source_id: Owning :class:`RegulatorySource`.
        url: Listing page, sitemap, or document URL.
        priority: Processing order within a cycle.
        frequency: Polling interval.
        name: Human-readable label.
        is_active: Inactive endpoints are never selected.
        listing_strategy: How the fetched body becomes items.
        url_pattern: Optional regex; only discovered links matching it are kept.
        pagination_pattern: Optional suffix such as ``?page={N}``.
        max_pages: Listing pages to follow when paginating (page 1 is the URL).
        last_checked_at: Last successful poll.
        last_attempt_at: Last poll attempt, successful or not.
        last_success_at: Last successful fetch recorded by the rate limiter.
        last_error: Message of the last failure, cleared on success.
        consecutive_errors: Failures since the last success.
        circuit_open_until: Set while the domain circuit is open.
    """

    id: str
    source_id: str
    url: str
    priority: Priority = Priority.MEDIUM
    frequency: Frequency = Frequency.DAILY
    name: str = ""
    is_active: bool = True
    listing_strategy: ListingStrategy = ListingStrategy.HTML_LIST
    url_pattern: str | None = None
    pagination_pattern: str | None = None
    max_pages: int = 1

    last_checked_at: datetime | None = None
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    consecutive_errors: int = 0
    circuit_open_until: datetime | None = None

    def is_circuit_open(self, now: datetime) -> bool:
        return self.circuit_open_until is not None and self.circuit_open_until > now

    def is_due(self, now: datetime) -> bool:
        if self.last_checked_at is None:
            return True
        return self.last_checked_at + self.frequency.interval <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "url": self.url,
            "priority": self.priority.value,
            "frequency": self.frequency.value,
            "name": self.name,
            "is_active": self.is_active,
            "listing_strategy": self.listing_strategy.value,
            "url_pattern": self.url_pattern,
            "pagination_pattern": self.pagination_pattern,
            "max_pages": self.max_pages,
            "last_checked_at": _dt(self.last_checked_at),
            "last_attempt_at": _dt(self.last_attempt_at),
            "last_success_at": _dt(self.last_success_at),
            "last_error": self.last_error,
            "consecutive_errors": self.consecutive_errors,
            "circuit_open_until": _dt(self.circuit_open_until),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Endpoint":
        return cls(
            id=data["id"],
            source_id=data["source_id"],
            url=data["url"],
            priority=Priority(data.get("priority", Priority.MEDIUM.value)),
            frequency=Frequency(data.get("frequency", Frequency.DAILY.value)),
            name=data.get("name", ""),
            is_active=data.get("is_active", True),
            listing_strategy=ListingStrategy(
                data.get("listing_strategy", ListingStrategy.HTML_LIST.value)
            ),
            url_pattern=data.get("url_pattern"),
            pagination_pattern=data.get("pagination_pattern"),
            max_pages=data.get("max_pages", 1),
            last_checked_at=_parse_dt(data.get("last_checked_at")),
            last_attempt_at=_parse_dt(data.get("last_attempt_at")),
            last_success_at=_parse_dt(data.get("last_success_at")),
            last_error=data.get("last_error"),
            consecutive_errors=data.get("consecutive_errors", 0),
            circuit_open_until=_parse_dt(data.get("circuit_open_until")),
        )


@dataclass
class DiscoveredItem:
    """One fetched-and-triaged unit of content.

    The pair (``endpoint_id``, ``url``) is unique across the store. ``url`` is
    always the canonical form.
    """

    endpoint_id: str
    url: str
    id: str = field(default_factory=new_id)
    status: ItemStatus = ItemStatus.PENDING
    kind: ClassificationKind | None = None
    content_hash: str | None = None
    raw_content_ref: str | None = None
    retry_count: int = 0
    version: int = 1
    title: str | None = None
    last_error: str | None = None
    last_attempt_id: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    fetched_at: datetime | None = None
    classified_at: datetime | None = None
    handed_off_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ItemStatus.HANDED_OFF, ItemStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "endpoint_id": self.endpoint_id,
            "url": self.url,
            "status": self.status.value,
            "kind": self.kind.value if self.kind else None,
            "content_hash": self.content_hash,
            "raw_content_ref": self.raw_content_ref,
            "retry_count": self.retry_count,
            "version": self.version,
            "title": self.title,
            "last_error": self.last_error,
            "last_attempt_id": self.last_attempt_id,
            "created_at": self.created_at.isoformat(),
            "fetched_at": _dt(self.fetched_at),
            "classified_at": _dt(self.classified_at),
            "handed_off_at": _dt(self.handed_off_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveredItem":
        kind = data.get("kind")
        return cls(
            id=data["id"],
            endpoint_id=data["endpoint_id"],
            url=data["url"],
            status=ItemStatus(data.get("status", ItemStatus.PENDING.value)),
            kind=ClassificationKind(kind) if kind else None,
            content_hash=data.get("content_hash"),
            raw_content_ref=data.get("raw_content_ref"),
            retry_count=data.get("retry_count", 0),
            version=data.get("version", 1),
            title=data.get("title"),
            last_error=data.get("last_error"),
            last_attempt_id=data.get("last_attempt_id"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            fetched_at=_parse_dt(data.get("fetched_at")),
            classified_at=_parse_dt(data.get("classified_at")),
            handed_off_at=_parse_dt(data.get("handed_off_at")),
        )
