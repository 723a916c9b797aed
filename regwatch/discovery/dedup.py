"""URL and content deduplication.

A document is identified by its canonical URL, whichever endpoint lists it.
Two layers apply that identity:

1. An in-cycle set of canonical URLs shared by all endpoints. A URL seen
   earlier in the same cycle, by any endpoint, is rejected without
   touching the store.
2. The store. A URL already stored under any endpoint is known; a new one
   goes through the conditional insert on (endpoint_id, url).

Content is compared by SHA-256 of the raw bytes: the same hash means the
document is unchanged and processing stops silently.
"""

from __future__ import annotations

import logging
import threading

from regwatch.parsing.url_scope import canonicalize_url

from .errors import DuplicateDetected, DuplicateItemError
from .models import DiscoveredItem
from .store import DiscoveryStore

logger = logging.getLogger(__name__)


class Deduplicator:
    """Rejects URLs and content already processed.

    Create one per discovery cycle; the in-memory set lives as long as the
    instance.
    """

    def __init__(self, store: DiscoveryStore) -> None:
        self._store = store
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def _mark_seen(self, url: str) -> bool:
        """Add to the in-cycle set; False if it was already there."""
        with self._lock:
            if url in self._seen:
                return False
            self._seen.add(url)
            return True

    def seen_in_cycle(self, url: str) -> bool:
        with self._lock:
            return canonicalize_url(url) in self._seen

    def known_item(self, endpoint_id: str, url: str) -> DiscoveredItem | None:
        """Return the stored item for ``url``, preferring ``endpoint_id``'s own.

        An item stored under another endpoint is the same document and is
        returned when the endpoint has none.
        """
        url = canonicalize_url(url)
        own = self._store.find_item(endpoint_id, url)
        if own is not None:
            return own
        others = self._store.find_items_by_url(url)
        return others[0] if others else None

    def is_duplicate(self, endpoint_id: str, url: str, content_hash: str | None = None) -> bool:
        """True if ``url`` is already stored and its content is unchanged.

        A URL stored under any endpoint counts. Without ``content_hash``
        only the URL is compared. The cycle itself goes through
        :meth:`register`, :meth:`claim` and :meth:`check_content`; this is
        the single-call query for code outside a cycle.
        """
        existing = self.known_item(endpoint_id, url)
        if existing is None:
            return False
        if content_hash is None:
            return True
        return existing.content_hash == content_hash

    def register(
        self,
        endpoint_id: str,
        url: str,
        title: str | None = None,
    ) -> DiscoveredItem | None:
        """Insert a new PENDING item for ``url``.

        Returns:
            The new item, or None if the URL was already seen this cycle or
            is already stored under any endpoint.
        """
        url = canonicalize_url(url)
        if not self._mark_seen(url):
            logger.debug("Already seen this cycle: %s", url)
            return None

        existing = self._store.find_items_by_url(url)
        if existing:
            logger.debug("Already known from endpoint %s: %s", existing[0].endpoint_id, url)
            return None

        item = DiscoveredItem(endpoint_id=endpoint_id, url=url, title=title or None)
        try:
            return self._store.insert_item(item)
        except DuplicateItemError:
            logger.debug("Already known: %s", url)
            return None

    def claim(self, url: str) -> bool:
        """Reserve ``url`` for processing in this cycle without inserting."""
        return self._mark_seen(canonicalize_url(url))

    def check_content(self, item: DiscoveredItem, content_hash: str) -> bool:
        """Return True if ``content_hash`` is new for ``item``.

        Raises:
            DuplicateDetected: the stored hash equals ``content_hash``
        """
        if item.content_hash is not None and item.content_hash == content_hash:
            raise DuplicateDetected(f"Unchanged content for {item.url}")
        return True
