"""URL canonicalization and filtering for endpoint discovery.

Every component that compares URLs goes through :func:`canonicalize_url`:
the HTML link extractor, the sitemap parser, pagination and the
deduplicator. Two URLs that differ only in case of scheme/host, default
port, fragment, trailing slash or tracking parameters map to the same
canonical string.

Examples:
    >>> canonicalize_url("HTTPS://Example.gov:443/notice/123/?utm_source=x#top")
    'https://example.gov/notice/123'
    >>> canonicalize_url("https://example.gov/")
    'https://example.gov/'
"""

from __future__ import annotations

from typing import Iterable, NamedTuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

# Query parameters that identify a campaign or referrer, never a document
TRACKING_PARAMS = frozenset({"fbclid", "gclid", "ref", "mc_cid", "mc_eid"})
TRACKING_PREFIXES = ("utm_",)

DEFAULT_PORTS = {"http": "80", "https": "443"}


class ParsedURL(NamedTuple):
    """Parsed URL components."""
    scheme: str
    host: str
    port: str
    path: str
    query: str
    fragment: str


def parse_url(url: str) -> ParsedURL:
    """Parse a URL into components with a lowercased scheme and host.

    Args:
        url: The URL to parse

    Returns:
        ParsedURL with normalized components
    """
    parsed = urlparse(url.strip())

    host = parsed.netloc
    # Credentials are never part of a canonical URL
    if "@" in host:
        host = host.rsplit("@", 1)[1]

    port = ""
    if ":" in host:
        if host.startswith("["):
            # IPv6: [::1]:8080
            bracket_end = host.find("]")
            if bracket_end != -1 and bracket_end + 1 < len(host) and host[bracket_end + 1] == ":":
                port = host[bracket_end + 2:]
                host = host[:bracket_end + 1]
        else:
            host, port = host.rsplit(":", 1)

    return ParsedURL(
        scheme=parsed.scheme.lower(),
        host=host.lower(),
        port=port,
        path=parsed.path or "/",
        query=parsed.query,
        fragment=parsed.fragment,
    )


def is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def canonicalize_url(url: str) -> str:
    """Return the canonical form of ``url``.

    Canonicalization:
    - Lowercase scheme and host
    - Remove default ports (80 for http, 443 for https)
    - Strip the fragment
    - Remove the trailing slash from the path, except for the root path
    - Drop tracking query parameters (``utm_*``, ``fbclid``, ``gclid``,
      ``ref``, ``mc_cid``, ``mc_eid``); remaining parameters keep their order

    Args:
        url: Absolute URL

    Returns:
        Canonical URL string
    """
    parsed = parse_url(url)

    port = parsed.port
    if port and DEFAULT_PORTS.get(parsed.scheme) == port:
        port = ""

    netloc = parsed.host
    if port:
        netloc = f"{netloc}:{port}"

    path = parsed.path
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = ""
    if parsed.query:
        kept = [
            (name, value)
            for name, value in parse_qsl(parsed.query, keep_blank_values=True)
            if not is_tracking_param(name)
        ]
        query = urlencode(kept)

    return urlunparse((parsed.scheme, netloc, path, "", query, ""))


def extract_domain(url: str) -> str:
    """Return the lowercased host of ``url`` without port.

    Examples:
        >>> extract_domain("https://www.Example.gov:8443/path")
        'www.example.gov'
    """
    return parse_url(url).host


def resolve_url(base_url: str, relative_url: str) -> str:
    """Resolve a relative URL against a base URL.

    Examples:
        >>> resolve_url("https://example.gov/notices/", "../rules/")
        'https://example.gov/rules/'
    """
    return urljoin(base_url, relative_url)


def is_valid_http_url(url: str) -> bool:
    """Check if a URL is a valid HTTP/HTTPS URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def should_skip_url(url: str) -> tuple[bool, str]:
    """Check if a link should be ignored during discovery.

    Document formats (PDF and office files) are kept: they are the content
    the pipeline exists to find.

    Returns:
        Tuple of (should_skip, reason)
    """
    if not url:
        return True, "Empty URL"

    if url.startswith("#"):
        return True, "Fragment-only URL"

    parsed = urlparse(url)

    if parsed.scheme in ("javascript", "mailto", "tel", "data", "file"):
        return True, f"Non-HTTP scheme: {parsed.scheme}"

    skip_extensions = {
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico",  # Images
        ".mp4", ".webm", ".avi", ".mov", ".wmv",  # Video
        ".mp3", ".wav", ".ogg", ".flac",  # Audio
        ".zip", ".tar", ".gz", ".rar", ".7z",  # Archives
        ".exe", ".dmg", ".msi", ".deb", ".rpm",  # Executables
        ".css", ".js", ".woff", ".woff2", ".ttf", ".eot",  # Web assets
    }

    path_lower = parsed.path.lower()
    for ext in skip_extensions:
        if path_lower.endswith(ext):
            return True, f"Skipped extension: {ext}"

    return False, ""


def find_blocked_pattern(url: str, blocked_domains: Iterable[str]) -> str | None:
    """Return the block-list pattern that matches ``url``'s host, if any.

    Matching is a case-insensitive substring test on the host, so
    ``"test"`` blocks ``test.example.gov`` and ``example-test.gov``, and also
    ``contest.gov``. Use a full host name as the pattern to block one site
    exactly.
    """
    host = extract_domain(url)
    for pattern in blocked_domains:
        if pattern and pattern.lower() in host:
            return pattern
    return None


def pagination_url(base_url: str, pattern: str, page: int) -> str:
    """Build the URL of listing page ``page`` from a pagination pattern.

    ``{N}`` in the pattern is replaced by the page number. A pattern that
    starts with ``?`` or ``&`` is appended as a query parameter, one that
    starts with ``/`` extends the path, and an absolute URL is used as is.

    Examples:
        >>> pagination_url("https://example.gov/notices", "?page={N}", 2)
        'https://example.gov/notices?page=2'
        >>> pagination_url("https://example.gov/notices?type=a", "?page={N}", 3)
        'https://example.gov/notices?type=a&page=3'
        >>> pagination_url("https://example.gov/notices/", "/page/{N}", 2)
        'https://example.gov/notices/page/2'
    """
    suffix = pattern.replace("{N}", str(page))
    if is_valid_http_url(suffix):
        return canonicalize_url(suffix)

    base = canonicalize_url(base_url)
    if suffix.startswith(("?", "&")):
        separator = "&" if "?" in base else "?"
        return canonicalize_url(base + separator + suffix[1:])
    if suffix.startswith("/"):
        return canonicalize_url(base.rstrip("/") + suffix)
    return canonicalize_url(resolve_url(base + "/", suffix))
