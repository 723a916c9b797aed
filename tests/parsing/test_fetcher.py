"""Tests for the HTTP fetcher."""

from __future__ import annotations

import pytest
import requests
import responses

from regwatch.discovery.errors import FetchTimeoutError, HttpStatusError, NetworkError
from regwatch.parsing.fetcher import FetchResponse, Fetcher, content_hash


@pytest.fixture
def fetcher():
    with Fetcher(user_agent="regwatch-tests/1.0", timeout=5) as f:
        yield f


class TestFetcher:
    """Tests for Fetcher.fetch."""

    @responses.activate
    def test_success(self, fetcher: Fetcher) -> None:
        responses.add(
            responses.GET,
            "https://example.gov/notices",
            body=b"<html><body>Notices</body></html>",
            content_type="text/html; charset=utf-8",
        )

        response = fetcher.fetch("https://example.gov/notices")

        assert response.status_code == 200
        assert response.body == b"<html><body>Notices</body></html>"
        assert response.content_type == "text/html; charset=utf-8"
        assert response.content_hash == content_hash(response.body)

    @responses.activate
    def test_sends_user_agent(self, fetcher: Fetcher) -> None:
        responses.add(responses.GET, "https://example.gov/", body="ok")

        fetcher.fetch("https://example.gov/")

        assert responses.calls[0].request.headers["User-Agent"] == "regwatch-tests/1.0"

    @responses.activate
    def test_http_error_status(self, fetcher: Fetcher) -> None:
        responses.add(responses.GET, "https://example.gov/missing", status=404)

        with pytest.raises(HttpStatusError) as exc_info:
            fetcher.fetch("https://example.gov/missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://example.gov/missing"

    @responses.activate
    def test_server_error_not_retried(self, fetcher: Fetcher) -> None:
        """One call, one request: retries belong to the caller."""
        responses.add(responses.GET, "https://example.gov/flaky", status=503)

        with pytest.raises(HttpStatusError):
            fetcher.fetch("https://example.gov/flaky")

        assert len(responses.calls) == 1

    @responses.activate
    def test_timeout(self, fetcher: Fetcher) -> None:
        responses.add(
            responses.GET,
            "https://example.gov/slow",
            body=requests.exceptions.ReadTimeout("read timed out"),
        )

        with pytest.raises(FetchTimeoutError):
            fetcher.fetch("https://example.gov/slow")

    @responses.activate
    def test_connection_error(self, fetcher: Fetcher) -> None:
        responses.add(
            responses.GET,
            "https://example.gov/down",
            body=requests.exceptions.ConnectionError("refused"),
        )

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch("https://example.gov/down")

        assert not isinstance(exc_info.value, FetchTimeoutError)

    @responses.activate
    def test_redirect_final_url(self, fetcher: Fetcher) -> None:
        responses.add(
            responses.GET,
            "https://example.gov/old",
            status=301,
            headers={"Location": "https://example.gov/new"},
        )
        responses.add(responses.GET, "https://example.gov/new", body="moved")

        response = fetcher.fetch("https://example.gov/old")

        assert response.url == "https://example.gov/old"
        assert response.final_url == "https://example.gov/new"


class TestFetchResponse:
    """Tests for FetchResponse helpers."""

    def test_text_uses_charset(self) -> None:
        response = FetchResponse(
            url="https://example.gov/",
            final_url="https://example.gov/",
            status_code=200,
            content_type="text/html; charset=iso-8859-1",
            body="Resolución".encode("iso-8859-1"),
        )

        assert response.text == "Resolución"

    def test_text_unknown_charset_falls_back(self) -> None:
        response = FetchResponse(
            url="https://example.gov/",
            final_url="https://example.gov/",
            status_code=200,
            content_type="text/html; charset=made-up",
            body="Resolución".encode("utf-8"),
        )

        assert response.text == "Resolución"

    def test_to_dict(self) -> None:
        response = FetchResponse(
            url="https://example.gov/a",
            final_url="https://example.gov/a",
            status_code=200,
            content_type=None,
            body=b"abc",
        )

        data = response.to_dict()

        assert data["content_length"] == 3
        assert data["content_hash"] == content_hash(b"abc")
        assert "fetched_at" in data
