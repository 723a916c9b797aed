"""HTTP fetching for discovery.

A thin wrapper around :class:`requests.Session` that turns transport and
status failures into the discovery error hierarchy. A fetch is a single
request: retries and pacing belong to the rate limiter and the item
lifecycle, so a half-open circuit lets exactly one request through.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests

from regwatch.discovery.errors import FetchTimeoutError, HttpStatusError, NetworkError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "regwatch/0.1 (regulatory-monitoring)"
DEFAULT_TIMEOUT_SECONDS = 30.0

_DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
              "application/pdf,application/msword,*/*;q=0.8",
    "Accept-Language": "en,es;q=0.8,*;q=0.5",
}


def content_hash(body: bytes) -> str:
    """SHA-256 hex digest of raw response bytes."""
    return hashlib.sha256(body).hexdigest()


@dataclass(slots=True)
class FetchResponse:
    """Result of a successful fetch."""

    url: str
    final_url: str
    status_code: int
    content_type: str | None
    body: bytes
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def content_hash(self) -> str:
        return content_hash(self.body)

    @property
    def text(self) -> str:
        """Body decoded with the charset from the content type (UTF-8 default)."""
        charset = "utf-8"
        if self.content_type and "charset=" in self.content_type.lower():
            charset = self.content_type.lower().split("charset=", 1)[1].split(";")[0].strip() or charset
        try:
            return self.body.decode(charset, errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status_code": self.status_code,
            "content_type": self.content_type,
            "content_length": len(self.body),
            "content_hash": self.content_hash,
            "fetched_at": self.fetched_at.isoformat(),
        }


class Fetcher:
    """Fetch URLs with an identifying User-Agent and a bounded timeout.

    Raises:
        FetchTimeoutError: the request exceeded ``timeout``
        NetworkError: DNS, connection or TLS failure
        HttpStatusError: the server answered with status >= 400
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(_DEFAULT_HEADERS)
        self.session.headers["User-Agent"] = user_agent

    def fetch(self, url: str) -> FetchResponse:
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.Timeout as exc:
            raise FetchTimeoutError(url, f"Timed out after {self.timeout}s: {exc}") from exc
        except requests.RequestException as exc:
            raise NetworkError(url, f"Request failed: {exc}") from exc

        if response.status_code >= 400:
            raise HttpStatusError(url, response.status_code, response.reason or "")

        return FetchResponse(
            url=url,
            final_url=response.url or url,
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type"),
            body=response.content,
        )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
