"""Seed file loading.

Sources and endpoints are defined in a JSON seed file and applied to the
store. Re-applying a seed updates configuration fields of existing
endpoints but never their health or scheduling state. Example::

    {
      "sources": [
        {"id": "tax-authority", "name": "Tax Authority", "domain": "tax.example.gov"}
      ],
      "endpoints": [
        {
          "id": "tax-bulletins",
          "source_id": "tax-authority",
          "url": "https://tax.example.gov/bulletins",
          "priority": "CRITICAL",
          "frequency": "DAILY",
          "listing_strategy": "HTML_LIST",
          "url_pattern": "/bulletins/\\\\d+",
          "pagination_pattern": "?page={N}",
          "max_pages": 3
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List

from regwatch.parsing.url_scope import is_valid_http_url

from .models import Endpoint, RegulatorySource
from .store import DiscoveryStore

logger = logging.getLogger(__name__)

# Fields a seed may set on an existing endpoint
_CONFIG_FIELDS = (
    "source_id",
    "url",
    "priority",
    "frequency",
    "name",
    "is_active",
    "listing_strategy",
    "url_pattern",
    "pagination_pattern",
    "max_pages",
)


class SeedError(ValueError):
    """The seed file is malformed or inconsistent."""


@dataclass
class Seed:
    sources: List[RegulatorySource] = field(default_factory=list)
    endpoints: List[Endpoint] = field(default_factory=list)


@dataclass
class SeedResult:
    sources_added: int = 0
    sources_updated: int = 0
    endpoints_added: int = 0
    endpoints_updated: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sources_added": self.sources_added,
            "sources_updated": self.sources_updated,
            "endpoints_added": self.endpoints_added,
            "endpoints_updated": self.endpoints_updated,
        }


def parse_seed(data: dict[str, Any]) -> Seed:
    """Validate and build a :class:`Seed` from decoded JSON.

    Raises:
        SeedError: missing fields, unknown enum values, invalid URLs or
            regexes, duplicate ids, or endpoints referencing unknown sources
    """
    seed = Seed()
    try:
        seed.sources = [RegulatorySource.from_dict(entry) for entry in data.get("sources", [])]
        seed.endpoints = [Endpoint.from_dict(entry) for entry in data.get("endpoints", [])]
    except (KeyError, TypeError, ValueError) as exc:
        raise SeedError(f"Invalid seed entry: {exc}") from exc

    source_ids = [source.id for source in seed.sources]
    endpoint_ids = [endpoint.id for endpoint in seed.endpoints]
    for kind, ids in (("source", source_ids), ("endpoint", endpoint_ids)):
        duplicates = sorted({value for value in ids if ids.count(value) > 1})
        if duplicates:
            raise SeedError(f"Duplicate {kind} ids: {', '.join(duplicates)}")

    known_sources = set(source_ids)
    for endpoint in seed.endpoints:
        if endpoint.source_id not in known_sources:
            raise SeedError(f"Endpoint {endpoint.id} references unknown source {endpoint.source_id}")
        if not is_valid_http_url(endpoint.url):
            raise SeedError(f"Endpoint {endpoint.id} has an invalid URL: {endpoint.url}")
        if endpoint.max_pages < 1:
            raise SeedError(f"Endpoint {endpoint.id} max_pages must be at least 1")
        if endpoint.pagination_pattern and "{N}" not in endpoint.pagination_pattern:
            raise SeedError(f"Endpoint {endpoint.id} pagination_pattern must contain {{N}}")
        if endpoint.url_pattern:
            try:
                re.compile(endpoint.url_pattern)
            except re.error as exc:
                raise SeedError(f"Endpoint {endpoint.id} has an invalid url_pattern: {exc}") from exc

    return seed


def load_seed(path: Path) -> Seed:
    """Read and validate a seed file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise SeedError(f"Seed file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SeedError(f"Seed file {path} must contain a JSON object")
    return parse_seed(data)


def apply_seed(store: DiscoveryStore, seed: Seed) -> SeedResult:
    """Upsert seed sources and endpoints into ``store``."""
    result = SeedResult()

    for source in seed.sources:
        if store.get_source(source.id) is None:
            result.sources_added += 1
        else:
            result.sources_updated += 1
        store.upsert_source(source)

    for endpoint in seed.endpoints:
        existing = store.get_endpoint(endpoint.id)
        if existing is None:
            store.upsert_endpoint(endpoint)
            result.endpoints_added += 1
            continue
        for name in _CONFIG_FIELDS:
            setattr(existing, name, getattr(endpoint, name))
        store.upsert_endpoint(existing)
        result.endpoints_updated += 1

    logger.info(
        "Applied seed: %d sources (%d new), %d endpoints (%d new)",
        len(seed.sources), result.sources_added,
        len(seed.endpoints), result.endpoints_added,
    )
    return result
