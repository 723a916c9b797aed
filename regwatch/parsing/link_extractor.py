"""Link extraction from HTML listing pages.

Listing endpoints (bulletin indexes, notice lists) are HTML pages whose
links point at the actual regulatory documents. This module pulls those
links out, resolves them against the page URL and canonicalizes them so
the deduplicator sees one form per document.

Features:
- Extract links from <a href> and <area href> elements
- Honor <base href>
- Filter out non-HTTP URLs (javascript:, mailto:, etc.) and static assets
- Canonicalize URLs (see :func:`regwatch.parsing.url_scope.canonicalize_url`)
- Keep anchor text for use as an item title
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import List, Set
from urllib.parse import urljoin

from regwatch.parsing.url_scope import (
    canonicalize_url,
    is_valid_http_url,
    should_skip_url,
)

logger = logging.getLogger(__name__)


@dataclass
class ExtractedLink:
    """Represents a link extracted from a listing page.

    Attributes:
        url: The absolute, canonical URL
        anchor_text: The text content of the link (if available)
        rel: The rel attribute value (e.g., "nofollow", "external")
        tag: The HTML tag the link came from (e.g., "a", "area")
    """
    url: str
    anchor_text: str = ""
    rel: str = ""
    tag: str = "a"


class LinkExtractor(HTMLParser):
    """HTML parser that collects document links from a page.

    Usage:
        extractor = LinkExtractor("https://example.gov/notices")
        extractor.feed(html_content)
        links = extractor.get_links()
    """

    def __init__(self, base_url: str):
        super().__init__(convert_charrefs=True)
        self.base_url = base_url
        self._links: List[ExtractedLink] = []
        self._seen_urls: Set[str] = set()
        self._current_anchor_text: List[str] = []
        self._current_link_url: str | None = None
        self._current_link_rel: str = ""
        self._in_anchor = False

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attrs_dict = {k: v or "" for k, v in attrs}

        if tag == "a":
            href = attrs_dict.get("href", "")
            if href:
                self._in_anchor = True
                self._current_link_url = href
                self._current_link_rel = attrs_dict.get("rel", "")
                self._current_anchor_text = []

        elif tag == "base":
            href = attrs_dict.get("href", "")
            if href:
                self.base_url = urljoin(self.base_url, href)

        elif tag == "area":
            href = attrs_dict.get("href", "")
            if href:
                self._add_link(href, tag=tag, rel=attrs_dict.get("rel", ""))

    def handle_endtag(self, tag: str) -> None:
        if tag == "a" and self._in_anchor:
            if self._current_link_url:
                anchor_text = " ".join(" ".join(self._current_anchor_text).split())
                self._add_link(
                    self._current_link_url,
                    anchor_text=anchor_text,
                    tag="a",
                    rel=self._current_link_rel,
                )
            self._in_anchor = False
            self._current_link_url = None
            self._current_link_rel = ""
            self._current_anchor_text = []

    def handle_data(self, data: str) -> None:
        if self._in_anchor:
            self._current_anchor_text.append(data)

    def _add_link(
        self,
        href: str,
        anchor_text: str = "",
        tag: str = "a",
        rel: str = "",
    ) -> None:
        """Add a link to the collection after validation and canonicalization."""
        href = href.strip()
        if not href:
            return

        skip, reason = should_skip_url(href)
        if skip:
            logger.debug("Skipping link %s: %s", href, reason)
            return

        try:
            absolute_url = urljoin(self.base_url, href)
        except ValueError:
            logger.debug("Unresolvable link %s on %s", href, self.base_url)
            return

        if not is_valid_http_url(absolute_url):
            return

        canonical = canonicalize_url(absolute_url)
        if canonical in self._seen_urls:
            return

        self._seen_urls.add(canonical)
        self._links.append(ExtractedLink(
            url=canonical,
            anchor_text=anchor_text,
            rel=rel,
            tag=tag,
        ))

    def get_links(self) -> List[ExtractedLink]:
        return self._links.copy()

    def get_urls(self) -> List[str]:
        return [link.url for link in self._links]


def extract_links(html: str, base_url: str) -> List[ExtractedLink]:
    """Extract all links from HTML content.

    Args:
        html: The HTML content to parse
        base_url: The URL of the page (for resolving relative URLs)

    Returns:
        List of ExtractedLink objects, canonical and unique

    Example:
        >>> html = '<html><body><a href="/notice/1/">Notice</a></body></html>'
        >>> links = extract_links(html, "https://example.gov/")
        >>> links[0].url
        'https://example.gov/notice/1'
    """
    extractor = LinkExtractor(base_url)
    extractor.feed(html)
    extractor.close()
    return extractor.get_links()


def extract_urls(html: str, base_url: str) -> List[str]:
    """Extract just the URLs from HTML content."""
    return [link.url for link in extract_links(html, base_url)]


def filter_links_by_pattern(
    links: List[ExtractedLink],
    url_pattern: str | None,
) -> List[ExtractedLink]:
    """Keep only links whose URL matches ``url_pattern`` (regex search).

    A missing pattern keeps every link.
    """
    if not url_pattern:
        return list(links)
    compiled = re.compile(url_pattern)
    return [link for link in links if compiled.search(link.url)]


def extract_title(html: str) -> str | None:
    """Extract the page title from HTML content."""
    match = re.search(r"<title[^>]*>([^<]+)</title>", html, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    return None
