"""Content classification for fetched items.

The classifier decides which downstream processor an item goes to. It
proposes a :class:`ClassificationKind` and persists nothing.

Order of checks:

1. Block-listed domains are rejected before anything else.
2. Binary formats are detected from the URL extension, then from the
   content-type header; the extension wins when the two disagree.
3. PDFs are split by text density: fewer than
   ``scanned_pdf_min_chars_per_page`` extracted characters per page means
   the document is a scan and needs OCR.
4. Office formats are converted to text.
5. HTML-like content is kept raw; its visible text is only checked for
   emptiness.
6. Anything else is unsupported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from regwatch.discovery.config import ClassifierConfig
from regwatch.discovery.errors import (
    BlockedDomainError,
    EmptyContentError,
    ParseError,
    UnsupportedContentError,
)
from regwatch.discovery.models import ClassificationKind
from regwatch.parsing.converters import (
    DocConverter,
    PdfExtractor,
    extract_docx_text,
    extract_pdf_text,
    extract_xls_text,
    extract_xlsx_text,
)
from regwatch.parsing.url_scope import find_blocked_pattern

logger = logging.getLogger(__name__)

_PDF = "pdf"

EXTENSION_FORMATS: dict[str, str] = {
    ".pdf": _PDF,
    ".docx": ClassificationKind.DOCX.value,
    ".doc": ClassificationKind.DOC.value,
    ".xlsx": ClassificationKind.XLSX.value,
    ".xls": ClassificationKind.XLS.value,
}

MEDIA_TYPE_FORMATS: dict[str, str] = {
    "application/pdf": _PDF,
    "application/x-pdf": _PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ClassificationKind.DOCX.value,
    "application/msword": ClassificationKind.DOC.value,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ClassificationKind.XLSX.value,
    "application/vnd.ms-excel": ClassificationKind.XLS.value,
}

_HTML_LIKE_MEDIA_TYPES = ("application/xhtml+xml", "application/xml")


@dataclass(slots=True)
class ClassificationResult:
    """Proposed classification for one fetched body."""

    kind: ClassificationKind
    text: str | None = None
    page_count: int | None = None
    chars_per_page: float | None = None
    converter: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "page_count": self.page_count,
            "chars_per_page": self.chars_per_page,
            "converter": self.converter,
            "text_length": len(self.text) if self.text is not None else None,
        }


def media_type_of(content_type: str | None) -> str:
    """``text/html; charset=utf-8`` -> ``text/html``."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def format_from_extension(url: str) -> str | None:
    path = urlparse(url).path.lower()
    for extension, fmt in EXTENSION_FORMATS.items():
        if path.endswith(extension):
            return fmt
    return None


def is_html_like(media_type: str) -> bool:
    if not media_type:
        return True
    if media_type.startswith("text/"):
        return True
    return media_type in _HTML_LIKE_MEDIA_TYPES or media_type.endswith("+xml")


def visible_text(body: bytes) -> str:
    """Visible text of an HTML document, scripts and styles removed."""
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


class ContentClassifier:
    """Assigns a :class:`ClassificationKind` to fetched content.

    Args:
        config: Thresholds and block-list.
        pdf_extractor: Returns the text layer and page count of a PDF.
        doc_converter: Converter for legacy .doc files.
    """

    def __init__(
        self,
        config: ClassifierConfig | None = None,
        pdf_extractor: PdfExtractor = extract_pdf_text,
        doc_converter: DocConverter | None = None,
        docx_extractor: Callable[[bytes], str] = extract_docx_text,
        xlsx_extractor: Callable[[bytes], str] = extract_xlsx_text,
        xls_extractor: Callable[[bytes], str] = extract_xls_text,
    ) -> None:
        self.config = config or ClassifierConfig()
        self._pdf_extractor = pdf_extractor
        self._doc_converter = doc_converter or DocConverter(
            timeout=self.config.converter_timeout_seconds
        )
        self._office_extractors: dict[ClassificationKind, Callable[[bytes], str]] = {
            ClassificationKind.DOCX: docx_extractor,
            ClassificationKind.XLSX: xlsx_extractor,
            ClassificationKind.XLS: xls_extractor,
        }

    def check_blocked(self, url: str) -> None:
        pattern = find_blocked_pattern(url, self.config.blocked_domains)
        if pattern is not None:
            raise BlockedDomainError(url, pattern)

    def detect_format(self, url: str, content_type: str | None) -> str:
        """Return ``"pdf"``, an office kind value, or ``"html"``.

        Raises:
            UnsupportedContentError: content type is neither a document
                format nor HTML-like
        """
        from_extension = format_from_extension(url)
        media_type = media_type_of(content_type)
        from_header = MEDIA_TYPE_FORMATS.get(media_type)

        if from_extension is not None:
            if from_header is not None and from_header != from_extension:
                logger.debug(
                    "Extension of %s says %s but Content-Type says %s; using extension",
                    url, from_extension, from_header,
                )
            return from_extension
        if from_header is not None:
            return from_header
        if is_html_like(media_type):
            return "html"
        raise UnsupportedContentError(f"Unsupported content type {media_type!r} for {url}")

    def classify(self, url: str, content_type: str | None, body: bytes) -> ClassificationResult:
        """Classify one fetched body.

        Raises:
            BlockedDomainError: the URL is on a block-listed domain
            ParseError: the body cannot be parsed as its detected format
            EmptyContentError: the body parses but contains no text
        """
        self.check_blocked(url)
        fmt = self.detect_format(url, content_type)

        if fmt == _PDF:
            result = self._classify_pdf(body)
        elif fmt == "html":
            result = self._classify_html(body)
        else:
            result = self._classify_office(ClassificationKind(fmt), body)

        logger.debug("Classified %s as %s", url, result.kind.value)
        return result

    def _classify_pdf(self, body: bytes) -> ClassificationResult:
        pdf = self._pdf_extractor(body)
        if pdf.page_count <= 0:
            raise ParseError("PDF has no pages")

        chars_per_page = pdf.chars_per_page
        if chars_per_page >= self.config.scanned_pdf_min_chars_per_page:
            kind = ClassificationKind.PDF_TEXT
        else:
            # A scan is routed to OCR, never treated as empty
            kind = ClassificationKind.PDF_SCANNED

        return ClassificationResult(
            kind=kind,
            text=pdf.text,
            page_count=pdf.page_count,
            chars_per_page=chars_per_page,
            converter="pypdf",
        )

    def _classify_office(self, kind: ClassificationKind, body: bytes) -> ClassificationResult:
        if kind is ClassificationKind.DOC:
            converted = self._doc_converter.convert(body)
            text, converter = converted.text, converted.converter
        else:
            text = self._office_extractors[kind](body)
            converter = {
                ClassificationKind.DOCX: "python-docx",
                ClassificationKind.XLSX: "openpyxl",
                ClassificationKind.XLS: "xlrd",
            }[kind]

        if not text.strip():
            raise EmptyContentError(f"No text extracted from {kind.value} document")
        return ClassificationResult(kind=kind, text=text, converter=converter)

    def _classify_html(self, body: bytes) -> ClassificationResult:
        text = visible_text(body)
        if not text.strip():
            raise EmptyContentError("HTML document has no visible text")
        return ClassificationResult(kind=ClassificationKind.HTML_RAW, text=text, converter="html")
