"""Sitemap parsing for SITEMAP_XML endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bs4 import BeautifulSoup

from regwatch.parsing.url_scope import canonicalize_url, is_valid_http_url

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SitemapEntry:
    url: str
    lastmod: str | None = None
    # A child sitemap listed by a sitemap index, not a document
    is_index: bool = False


def parse_sitemap(xml: str) -> list[SitemapEntry]:
    """Return the canonical ``<loc>`` URLs of a urlset or sitemap index.

    Entries under a ``<sitemap>`` element of an index are flagged with
    ``is_index``; they name further sitemaps to fetch, not documents.
    Duplicates after canonicalization are dropped, first occurrence wins.
    """
    soup = BeautifulSoup(xml, "html.parser")
    entries: list[SitemapEntry] = []
    seen: set[str] = set()

    for loc in soup.find_all("loc"):
        raw = loc.get_text(strip=True)
        if not raw or not is_valid_http_url(raw):
            logger.debug("Ignoring sitemap entry %r", raw)
            continue
        url = canonicalize_url(raw)
        if url in seen:
            continue
        seen.add(url)

        lastmod = None
        parent = loc.parent
        if parent is not None:
            lastmod_tag = parent.find("lastmod")
            if lastmod_tag is not None:
                lastmod = lastmod_tag.get_text(strip=True) or None
        is_index = parent is not None and parent.name == "sitemap"
        entries.append(SitemapEntry(url=url, lastmod=lastmod, is_index=is_index))

    return entries


def extract_sitemap_urls(xml: str) -> list[str]:
    """Document URLs of a urlset; child sitemaps of an index are left out."""
    return [entry.url for entry in parse_sitemap(xml) if not entry.is_index]
