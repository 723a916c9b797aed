"""Tests for the discovery store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from regwatch.discovery.errors import DuplicateItemError, StoreError
from regwatch.discovery.models import (
    ClassificationKind,
    DiscoveredItem,
    Endpoint,
    ItemStatus,
    ListingStrategy,
    Priority,
    RegulatorySource,
)
from regwatch.discovery.store import InMemoryDiscoveryStore, JsonDiscoveryStore


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryDiscoveryStore()
    return JsonDiscoveryStore(tmp_path / "store.json")


class TestItems:
    """Tests shared by both store implementations."""

    def test_conditional_insert(self, store) -> None:
        store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))

        with pytest.raises(DuplicateItemError):
            store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))

    def test_same_url_other_endpoint(self, store) -> None:
        store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))
        store.insert_item(DiscoveredItem(endpoint_id="e2", url="https://example.gov/a"))

        assert len(store.list_items()) == 2

    def test_find_items_by_url(self, store) -> None:
        store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))
        store.insert_item(DiscoveredItem(endpoint_id="e2", url="https://example.gov/a"))
        store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/b"))

        found = store.find_items_by_url("https://example.gov/a")

        assert sorted(item.endpoint_id for item in found) == ["e1", "e2"]
        assert store.find_items_by_url("https://example.gov/c") == []

    def test_returned_items_are_copies(self, store) -> None:
        item = store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))

        loaded = store.get_item(item.id)
        loaded.status = ItemStatus.FAILED

        assert store.get_item(item.id).status is ItemStatus.PENDING

    def test_save_and_filter(self, store) -> None:
        first = store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/a"))
        store.insert_item(DiscoveredItem(endpoint_id="e1", url="https://example.gov/b"))
        store.insert_item(DiscoveredItem(endpoint_id="e2", url="https://example.gov/c"))
        first.status = ItemStatus.FETCHED
        store.save_item(first)

        assert [i.url for i in store.list_items("e1", ItemStatus.PENDING)] == ["https://example.gov/b"]
        assert store.find_item("e1", "https://example.gov/a").status is ItemStatus.FETCHED
        assert store.count_items_by_status()["PENDING"] == 2

    def test_active_endpoints(self, store) -> None:
        store.upsert_source(RegulatorySource(id="s1", name="Tax", domain="tax.example.gov"))
        store.upsert_source(RegulatorySource(id="s2", name="Old", domain="old.example.gov", is_active=False))
        store.upsert_endpoint(Endpoint(id="e1", source_id="s1", url="https://tax.example.gov/"))
        store.upsert_endpoint(Endpoint(id="e2", source_id="s1", url="https://tax.example.gov/x", is_active=False))
        store.upsert_endpoint(Endpoint(id="e3", source_id="s2", url="https://old.example.gov/"))

        assert [e.id for e in store.active_endpoints()] == ["e1"]


class TestJsonStore:
    """Persistence tests for JsonDiscoveryStore."""

    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        store = JsonDiscoveryStore(path)
        store.upsert_source(RegulatorySource(id="s1", name="Tax", domain="tax.example.gov"))
        store.upsert_endpoint(Endpoint(
            id="e1",
            source_id="s1",
            url="https://tax.example.gov/notices",
            priority=Priority.CRITICAL,
            listing_strategy=ListingStrategy.SITEMAP_XML,
            circuit_open_until=datetime(2024, 3, 1, 10, tzinfo=timezone.utc),
        ))
        item = DiscoveredItem(endpoint_id="e1", url="https://tax.example.gov/n/1")
        store.insert_item(item)
        item.status = ItemStatus.FETCHED
        item.kind = ClassificationKind.PDF_SCANNED
        store.save_item(item)

        reloaded = JsonDiscoveryStore(path)

        endpoint = reloaded.get_endpoint("e1")
        assert endpoint.priority is Priority.CRITICAL
        assert endpoint.listing_strategy is ListingStrategy.SITEMAP_XML
        assert endpoint.circuit_open_until == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        loaded = reloaded.get_item(item.id)
        assert loaded.kind is ClassificationKind.PDF_SCANNED
        with pytest.raises(DuplicateItemError):
            reloaded.insert_item(DiscoveredItem(endpoint_id="e1", url="https://tax.example.gov/n/1"))

    def test_atomic_write_leaves_no_tmp(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "store.json"
        JsonDiscoveryStore(path).upsert_source(RegulatorySource(id="s1", name="Tax", domain="t.example.gov"))

        assert path.exists()
        assert not path.with_suffix(".json.tmp").exists()
        assert json.loads(path.read_text())["sources"][0]["id"] == "s1"

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text("{not json")

        with pytest.raises(StoreError):
            JsonDiscoveryStore(path)

    def test_malformed_records(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"endpoints": [{"id": "e1"}]}))

        with pytest.raises(StoreError):
            JsonDiscoveryStore(path)

    def test_write_failure(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = JsonDiscoveryStore(blocker / "store.json")

        with pytest.raises(StoreError):
            store.upsert_source(RegulatorySource(id="s1", name="Tax", domain="t.example.gov"))
