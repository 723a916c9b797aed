"""Exception hierarchy for the discovery pipeline.

Everything except :class:`StoreError` is scoped to a single endpoint or a
single item. The scheduler catches these locally; a store failure is the only
condition that aborts a discovery cycle.
"""

from __future__ import annotations

from datetime import datetime


class DiscoveryError(Exception):
    """Base class for all discovery pipeline errors."""


class CircuitOpenError(DiscoveryError):
    """Raised by the rate limiter while a domain's circuit is open."""

    def __init__(self, domain: str, open_until: datetime | None = None) -> None:
        self.domain = domain
        self.open_until = open_until
        if open_until is not None:
            message = f"Circuit breaker open for {domain} until {open_until.isoformat()}"
        else:
            message = f"Circuit breaker open for {domain} (probe in flight)"
        super().__init__(message)


class FetchError(DiscoveryError):
    """A fetch did not produce a usable response."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(message)


class NetworkError(FetchError):
    """Connection-level failure (DNS, refused, reset)."""


class FetchTimeoutError(NetworkError):
    """The fetch exceeded its deadline."""


class HttpStatusError(FetchError):
    """The server answered with an error status."""

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        self.status_code = status_code
        message = f"HTTP {status_code}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(url, message)


class DuplicateDetected(DiscoveryError):
    """URL already known and its content is unchanged.

    Not a failure: callers skip silently.
    """


class DuplicateItemError(DiscoveryError):
    """The store rejected an insert for an existing (endpoint_id, url) pair."""

    def __init__(self, endpoint_id: str, url: str) -> None:
        self.endpoint_id = endpoint_id
        self.url = url
        super().__init__(f"Item already exists for endpoint {endpoint_id}: {url}")


class ParseError(DiscoveryError):
    """A classifier or converter failed on malformed bytes. Terminal per item."""


class UnsupportedContentError(ParseError):
    """Content type is neither a known document format nor HTML-like."""


class EmptyContentError(DiscoveryError):
    """Extraction produced no text. Terminal per item."""


class BlockedDomainError(DiscoveryError):
    """The URL belongs to a block-listed domain."""

    def __init__(self, url: str, pattern: str) -> None:
        self.url = url
        self.pattern = pattern
        super().__init__(f"Blocked domain ({pattern!r}): {url}")


class InvalidTransitionError(DiscoveryError):
    """An item lifecycle transition that the state machine does not allow."""


class StoreError(DiscoveryError):
    """The durable store failed. Aborts the current cycle."""


class CycleCancelled(DiscoveryError):
    """The cycle was cancelled while a fetch was in flight; its result is discarded."""
