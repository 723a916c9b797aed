"""Configuration for the discovery pipeline.

This module defines configuration dataclasses for discovery cycles,
including the rate limiting and circuit breaker settings that keep the
pipeline from hammering government domains, and the classifier thresholds
that decide how fetched documents are routed.

Every value has a documented default; nothing is compiled into the modules
that consume it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

# Host substrings, not labels: "test" also blocks hosts like contest.gov or
# latest.example.gov.
DEFAULT_BLOCKED_DOMAINS: tuple[str, ...] = ("heartbeat", "test", "synthetic", "debug")

# Total fetch attempts for an item before it is marked FAILED. Items are
# eligible for another attempt while retry_count < MAX_FETCH_ATTEMPTS.
MAX_FETCH_ATTEMPTS = 3


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-domain pacing and circuit breaker settings.

    Attributes:
        request_delay: Minimum time between two requests to the same domain.
        max_requests_per_minute: Sliding-window cap per domain. Requests over
            the cap are delayed, never dropped.
        max_concurrent_requests: In-flight requests per domain. Only 1 is
            supported; requests to different domains run concurrently.
        circuit_breaker_threshold: Consecutive failures that open the circuit.
        circuit_breaker_cooldown: How long an open circuit rejects requests
            before letting one probe through.
        request_timeout_seconds: Deadline for a single fetch.
    """

    request_delay: timedelta = field(default_factory=lambda: timedelta(milliseconds=2000))
    max_requests_per_minute: int = 20
    max_concurrent_requests: int = 1
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown: timedelta = field(default_factory=lambda: timedelta(hours=1))
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_concurrent_requests != 1:
            raise ValueError("max_concurrent_requests must be 1 (requests are serialized per domain)")
        if self.max_requests_per_minute < 1:
            raise ValueError("max_requests_per_minute must be at least 1")
        if self.circuit_breaker_threshold < 1:
            raise ValueError("circuit_breaker_threshold must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RateLimitConfig":
        kwargs: dict[str, Any] = {}
        if "request_delay_ms" in data:
            kwargs["request_delay"] = timedelta(milliseconds=data["request_delay_ms"])
        if "circuit_breaker_cooldown_minutes" in data:
            kwargs["circuit_breaker_cooldown"] = timedelta(
                minutes=data["circuit_breaker_cooldown_minutes"]
            )
        for name in (
            "max_requests_per_minute",
            "max_concurrent_requests",
            "circuit_breaker_threshold",
            "request_timeout_seconds",
        ):
            if name in data:
                kwargs[name] = data[name]
        return cls(**kwargs)


@dataclass(frozen=True)
class ClassifierConfig:
    """Content classifier settings.

    Attributes:
        scanned_pdf_min_chars_per_page: PDFs with at least this many extracted
            characters per page are PDF_TEXT; fewer means PDF_SCANNED. The
            boundary is inclusive on the text side.
        blocked_domains: Domain substrings that are never fetched or
            classified (synthetic and test sources).
        converter_timeout_seconds: Deadline for external office converters.
    """

    scanned_pdf_min_chars_per_page: int = 50
    blocked_domains: tuple[str, ...] = DEFAULT_BLOCKED_DOMAINS
    converter_timeout_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassifierConfig":
        kwargs: dict[str, Any] = {}
        if "scanned_pdf_min_chars_per_page" in data:
            kwargs["scanned_pdf_min_chars_per_page"] = int(data["scanned_pdf_min_chars_per_page"])
        if "blocked_domains" in data:
            kwargs["blocked_domains"] = tuple(data["blocked_domains"])
        if "converter_timeout_seconds" in data:
            kwargs["converter_timeout_seconds"] = float(data["converter_timeout_seconds"])
        return cls(**kwargs)


@dataclass(frozen=True)
class SentinelPoliteness:
    """Cycle-level limits.

    Attributes:
        max_workers: Parallel endpoint tasks. Domains are still serialized by
            the rate limiter.
        max_items_per_endpoint: PENDING items fetched per endpoint per cycle.
            Items not reached stay PENDING for the next cycle.
        max_fetch_attempts: Total attempts before an item is FAILED.
        max_child_sitemaps: Child sitemaps followed per SITEMAP_XML endpoint
            per cycle when the endpoint URL is a sitemap index.
        stale_circuit_window: How long after ``circuit_open_until`` an
            endpoint without a retry attempt gets its error count reset.
    """

    max_workers: int = 8
    max_items_per_endpoint: int = 50
    max_fetch_attempts: int = MAX_FETCH_ATTEMPTS
    max_child_sitemaps: int = 20
    stale_circuit_window: timedelta = field(default_factory=lambda: timedelta(hours=24))

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_fetch_attempts < 1:
            raise ValueError("max_fetch_attempts must be at least 1")
        if self.max_child_sitemaps < 0:
            raise ValueError("max_child_sitemaps must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SentinelPoliteness":
        kwargs: dict[str, Any] = {}
        if "stale_circuit_window_hours" in data:
            kwargs["stale_circuit_window"] = timedelta(hours=data["stale_circuit_window_hours"])
        for name in (
            "max_workers",
            "max_items_per_endpoint",
            "max_fetch_attempts",
            "max_child_sitemaps",
        ):
            if name in data:
                kwargs[name] = int(data[name])
        return cls(**kwargs)


@dataclass
class DiscoveryConfig:
    """Configuration for a discovery cycle.

    Attributes:
        rate_limit: Per-domain pacing and circuit breaker.
        classifier: Classification thresholds and block-list.
        politeness: Cycle-level limits.
        data_root: Root for the store, raw content, queues and audit log.
        user_agent: Identifying User-Agent for outbound requests.
        dry_run: If True, select and report due endpoints without fetching.
    """

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    politeness: SentinelPoliteness = field(default_factory=SentinelPoliteness)
    data_root: "Path | None" = None
    user_agent: str = "regwatch/0.1 (regulatory-monitoring)"
    dry_run: bool = False

    @property
    def blocked_domains(self) -> tuple[str, ...]:
        return self.classifier.blocked_domains

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryConfig":
        """Build a config from the JSON project configuration."""
        classifier_data = dict(data.get("classifier") or {})
        if "blocked_domains" in data and "blocked_domains" not in classifier_data:
            classifier_data["blocked_domains"] = data["blocked_domains"]

        kwargs: dict[str, Any] = {
            "rate_limit": RateLimitConfig.from_dict(data.get("rate_limit") or {}),
            "classifier": ClassifierConfig.from_dict(classifier_data),
            "politeness": SentinelPoliteness.from_dict(data.get("politeness") or {}),
        }
        if data.get("data_root"):
            kwargs["data_root"] = Path(data["data_root"])
        if data.get("user_agent"):
            kwargs["user_agent"] = data["user_agent"]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging/reporting."""
        rate = self.rate_limit
        return {
            "rate_limit": {
                "request_delay_ms": int(rate.request_delay.total_seconds() * 1000),
                "max_requests_per_minute": rate.max_requests_per_minute,
                "max_concurrent_requests": rate.max_concurrent_requests,
                "circuit_breaker_threshold": rate.circuit_breaker_threshold,
                "circuit_breaker_cooldown_minutes": rate.circuit_breaker_cooldown.total_seconds() / 60,
                "request_timeout_seconds": rate.request_timeout_seconds,
            },
            "classifier": {
                f.name: getattr(self.classifier, f.name)
                for f in fields(self.classifier)
            },
            "politeness": {
                "max_workers": self.politeness.max_workers,
                "max_items_per_endpoint": self.politeness.max_items_per_endpoint,
                "max_fetch_attempts": self.politeness.max_fetch_attempts,
                "max_child_sitemaps": self.politeness.max_child_sitemaps,
                "stale_circuit_window_hours": self.politeness.stale_circuit_window.total_seconds() / 3600,
            },
            "data_root": str(self.data_root) if self.data_root else None,
            "user_agent": self.user_agent,
            "dry_run": self.dry_run,
        }
