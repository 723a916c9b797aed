"""Regulatory discovery pipeline.

Polls government endpoints on a schedule, rate-limited and circuit-broken
per domain, deduplicates what it finds, classifies each document and hands
it to the extraction or OCR queue.

Usage:
    from regwatch.discovery.sentinel import Sentinel

    sentinel = Sentinel.from_data_root(Path("data"))
    summary = sentinel.run_discovery_cycle()
    print(summary.summary())

Only leaf modules are re-exported here; :mod:`regwatch.discovery.sentinel`
depends on :mod:`regwatch.parsing` and is imported directly.
"""

from .config import (
    ClassifierConfig,
    DiscoveryConfig,
    MAX_FETCH_ATTEMPTS,
    RateLimitConfig,
    SentinelPoliteness,
)
from .errors import (
    BlockedDomainError,
    CircuitOpenError,
    DiscoveryError,
    StoreError,
)
from .models import (
    ClassificationKind,
    DiscoveredItem,
    Endpoint,
    Frequency,
    ItemStatus,
    ListingStrategy,
    Priority,
    RegulatorySource,
)

__all__ = [
    # Config
    "ClassifierConfig",
    "DiscoveryConfig",
    "MAX_FETCH_ATTEMPTS",
    "RateLimitConfig",
    "SentinelPoliteness",
    # Errors
    "BlockedDomainError",
    "CircuitOpenError",
    "DiscoveryError",
    "StoreError",
    # Models
    "ClassificationKind",
    "DiscoveredItem",
    "Endpoint",
    "Frequency",
    "ItemStatus",
    "ListingStrategy",
    "Priority",
    "RegulatorySource",
]
