"""Durable storage for sources, endpoints and discovered items.

The store is an explicit object passed to every component that needs it;
there is no module-level state. Two implementations are provided:

- :class:`InMemoryDiscoveryStore` for tests and dry runs.
- :class:`JsonDiscoveryStore`, which persists the whole store to a single
  JSON document after every mutation using an atomic write
  (write to ``*.tmp`` then rename).

All operations are serialized by a lock. :meth:`DiscoveryStore.insert_item`
is the atomic conditional insert that enforces (endpoint_id, url)
uniqueness.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List

from .errors import DuplicateItemError, StoreError
from .models import DiscoveredItem, Endpoint, ItemStatus, RegulatorySource

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


class DiscoveryStore(ABC):
    """Interface for the discovery store.

    Returned entities are copies: mutating them has no effect until they
    are saved back.
    """

    # Sources

    @abstractmethod
    def upsert_source(self, source: RegulatorySource) -> None: ...

    @abstractmethod
    def get_source(self, source_id: str) -> RegulatorySource | None: ...

    @abstractmethod
    def list_sources(self) -> List[RegulatorySource]: ...

    # Endpoints

    @abstractmethod
    def upsert_endpoint(self, endpoint: Endpoint) -> None: ...

    @abstractmethod
    def get_endpoint(self, endpoint_id: str) -> Endpoint | None: ...

    @abstractmethod
    def list_endpoints(self) -> List[Endpoint]: ...

    # Items

    @abstractmethod
    def insert_item(self, item: DiscoveredItem) -> DiscoveredItem:
        """Insert ``item`` unless (endpoint_id, url) already exists.

        Raises:
            DuplicateItemError: the pair is already stored
        """

    @abstractmethod
    def save_item(self, item: DiscoveredItem) -> None: ...

    @abstractmethod
    def get_item(self, item_id: str) -> DiscoveredItem | None: ...

    @abstractmethod
    def find_item(self, endpoint_id: str, url: str) -> DiscoveredItem | None: ...

    @abstractmethod
    def find_items_by_url(self, url: str) -> List[DiscoveredItem]:
        """Items stored for ``url`` under any endpoint, oldest first."""

    @abstractmethod
    def list_items(
        self,
        endpoint_id: str | None = None,
        status: ItemStatus | None = None,
    ) -> List[DiscoveredItem]: ...

    def active_endpoints(self) -> List[Endpoint]:
        """Active endpoints whose source is active (or unknown)."""
        sources = {source.id: source for source in self.list_sources()}
        result = []
        for endpoint in self.list_endpoints():
            if not endpoint.is_active:
                continue
            source = sources.get(endpoint.source_id)
            if source is not None and not source.is_active:
                continue
            result.append(endpoint)
        return result

    def count_items_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        for item in self.list_items():
            counts[item.status.value] += 1
        return counts


class InMemoryDiscoveryStore(DiscoveryStore):
    """Lock-protected in-memory store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sources: dict[str, RegulatorySource] = {}
        self._endpoints: dict[str, Endpoint] = {}
        self._items: dict[str, DiscoveredItem] = {}
        self._item_keys: dict[tuple[str, str], str] = {}

    def _changed(self) -> None:
        """Hook called under the lock after every mutation."""

    def upsert_source(self, source: RegulatorySource) -> None:
        with self._lock:
            self._sources[source.id] = copy.deepcopy(source)
            self._changed()

    def get_source(self, source_id: str) -> RegulatorySource | None:
        with self._lock:
            source = self._sources.get(source_id)
            return copy.deepcopy(source) if source else None

    def list_sources(self) -> List[RegulatorySource]:
        with self._lock:
            return [copy.deepcopy(source) for source in self._sources.values()]

    def upsert_endpoint(self, endpoint: Endpoint) -> None:
        with self._lock:
            self._endpoints[endpoint.id] = copy.deepcopy(endpoint)
            self._changed()

    def get_endpoint(self, endpoint_id: str) -> Endpoint | None:
        with self._lock:
            endpoint = self._endpoints.get(endpoint_id)
            return copy.deepcopy(endpoint) if endpoint else None

    def list_endpoints(self) -> List[Endpoint]:
        with self._lock:
            return [copy.deepcopy(endpoint) for endpoint in self._endpoints.values()]

    def insert_item(self, item: DiscoveredItem) -> DiscoveredItem:
        key = (item.endpoint_id, item.url)
        with self._lock:
            if key in self._item_keys:
                raise DuplicateItemError(item.endpoint_id, item.url)
            self._items[item.id] = copy.deepcopy(item)
            self._item_keys[key] = item.id
            self._changed()
        return item

    def save_item(self, item: DiscoveredItem) -> None:
        key = (item.endpoint_id, item.url)
        with self._lock:
            existing_id = self._item_keys.get(key)
            if existing_id is not None and existing_id != item.id:
                raise DuplicateItemError(item.endpoint_id, item.url)
            self._items[item.id] = copy.deepcopy(item)
            self._item_keys[key] = item.id
            self._changed()

    def get_item(self, item_id: str) -> DiscoveredItem | None:
        with self._lock:
            item = self._items.get(item_id)
            return copy.deepcopy(item) if item else None

    def find_item(self, endpoint_id: str, url: str) -> DiscoveredItem | None:
        with self._lock:
            item_id = self._item_keys.get((endpoint_id, url))
            if item_id is None:
                return None
            return copy.deepcopy(self._items[item_id])

    def find_items_by_url(self, url: str) -> List[DiscoveredItem]:
        with self._lock:
            items = [copy.deepcopy(item) for item in self._items.values() if item.url == url]
        items.sort(key=lambda item: item.created_at)
        return items

    def list_items(
        self,
        endpoint_id: str | None = None,
        status: ItemStatus | None = None,
    ) -> List[DiscoveredItem]:
        with self._lock:
            items = [
                copy.deepcopy(item)
                for item in self._items.values()
                if (endpoint_id is None or item.endpoint_id == endpoint_id)
                and (status is None or item.status is status)
            ]
        items.sort(key=lambda item: item.created_at)
        return items

    def _load_records(
        self,
        sources: Iterable[RegulatorySource],
        endpoints: Iterable[Endpoint],
        items: Iterable[DiscoveredItem],
    ) -> None:
        for source in sources:
            self._sources[source.id] = source
        for endpoint in endpoints:
            self._endpoints[endpoint.id] = endpoint
        for item in items:
            self._items[item.id] = item
            self._item_keys[(item.endpoint_id, item.url)] = item.id


class JsonDiscoveryStore(InMemoryDiscoveryStore):
    """Store persisted as one JSON document.

    Args:
        path: Location of the JSON file. Created on first write.

    Raises:
        StoreError: the file exists but cannot be read or parsed, or a
            write fails
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.debug("No store at %s, starting empty", self.path)
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Cannot read store {self.path}: {exc}") from exc

        try:
            self._load_records(
                (RegulatorySource.from_dict(entry) for entry in data.get("sources", [])),
                (Endpoint.from_dict(entry) for entry in data.get("endpoints", [])),
                (DiscoveredItem.from_dict(entry) for entry in data.get("items", [])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed store {self.path}: {exc}") from exc

        logger.debug(
            "Loaded store %s: %d sources, %d endpoints, %d items",
            self.path, len(self._sources), len(self._endpoints), len(self._items),
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "version": STORE_FORMAT_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "sources": [source.to_dict() for source in self._sources.values()],
            "endpoints": [endpoint.to_dict() for endpoint in self._endpoints.values()],
            "items": [item.to_dict() for item in self._items.values()],
        }

    def _changed(self) -> None:
        content = json.dumps(self._snapshot(), indent=2, sort_keys=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise StoreError(f"Cannot write store {self.path}: {exc}") from exc
