"""Tests for the content classifier."""

from __future__ import annotations

import io
import subprocess

import pytest

from regwatch.discovery.config import ClassifierConfig
from regwatch.discovery.errors import (
    BlockedDomainError,
    EmptyContentError,
    ParseError,
    UnsupportedContentError,
)
from regwatch.discovery.models import ClassificationKind
from regwatch.parsing.classifier import ContentClassifier, media_type_of
from regwatch.parsing.converters import ConvertedText, DocConverter, PdfText


def pdf_stub(chars_per_page: int, pages: int = 2):
    """PDF extractor returning ``chars_per_page`` characters on each page."""

    def extract(body: bytes) -> PdfText:
        return PdfText(text="x" * (chars_per_page * pages), page_count=pages)

    return extract


class StubDocConverter:
    def __init__(self, text: str = "Legacy circular text", converter: str = "antiword") -> None:
        self.text = text
        self.converter = converter
        self.calls = 0

    def convert(self, body: bytes) -> ConvertedText:
        self.calls += 1
        return ConvertedText(text=self.text, converter=self.converter)


def make_docx(*paragraphs: str) -> bytes:
    import docx

    document = docx.Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def make_xlsx(rows: list[list[object]]) -> bytes:
    from openpyxl import Workbook

    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


# =============================================================================
# PDF density
# =============================================================================


class TestPdfClassification:
    """Tests for the scanned/text PDF split."""

    def test_at_threshold_is_text(self) -> None:
        classifier = ContentClassifier(pdf_extractor=pdf_stub(50))

        result = classifier.classify("https://example.gov/c.pdf", "application/pdf", b"%PDF")

        assert result.kind is ClassificationKind.PDF_TEXT
        assert result.chars_per_page == 50
        assert result.page_count == 2

    def test_below_threshold_is_scanned(self) -> None:
        classifier = ContentClassifier(pdf_extractor=pdf_stub(49))

        result = classifier.classify("https://example.gov/c.pdf", "application/pdf", b"%PDF")

        assert result.kind is ClassificationKind.PDF_SCANNED

    def test_no_text_is_scanned_not_empty(self) -> None:
        classifier = ContentClassifier(pdf_extractor=pdf_stub(0, pages=4))

        result = classifier.classify("https://example.gov/scan.pdf", None, b"%PDF")

        assert result.kind is ClassificationKind.PDF_SCANNED
        assert result.chars_per_page == 0

    def test_configurable_threshold(self) -> None:
        classifier = ContentClassifier(
            config=ClassifierConfig(scanned_pdf_min_chars_per_page=10),
            pdf_extractor=pdf_stub(12),
        )

        assert classifier.classify("https://example.gov/c.pdf", None, b"").kind is ClassificationKind.PDF_TEXT

    def test_zero_pages_is_parse_error(self) -> None:
        classifier = ContentClassifier(pdf_extractor=lambda body: PdfText(text="", page_count=0))

        with pytest.raises(ParseError):
            classifier.classify("https://example.gov/c.pdf", "application/pdf", b"%PDF")

    def test_corrupt_pdf_with_real_extractor(self) -> None:
        classifier = ContentClassifier()

        with pytest.raises(ParseError):
            classifier.classify("https://example.gov/c.pdf", "application/pdf", b"not a pdf at all")


# =============================================================================
# Format detection
# =============================================================================


class TestDetectFormat:
    """Tests for extension and header based detection."""

    def test_extension_wins_over_header(self) -> None:
        """A .pdf served as text/html is still a PDF."""
        classifier = ContentClassifier(pdf_extractor=pdf_stub(80))

        result = classifier.classify("https://example.gov/files/r.pdf", "text/html", b"%PDF")

        assert result.kind is ClassificationKind.PDF_TEXT

    def test_header_used_without_extension(self) -> None:
        classifier = ContentClassifier(pdf_extractor=pdf_stub(80))

        result = classifier.classify("https://example.gov/download?id=7", "application/pdf", b"%PDF")

        assert result.kind is ClassificationKind.PDF_TEXT

    def test_extension_case_insensitive(self) -> None:
        classifier = ContentClassifier(pdf_extractor=pdf_stub(80))

        assert classifier.detect_format("https://example.gov/R.PDF", None) == "pdf"

    def test_missing_content_type_is_html(self) -> None:
        classifier = ContentClassifier()

        assert classifier.detect_format("https://example.gov/notice/1", None) == "html"

    def test_unsupported(self) -> None:
        classifier = ContentClassifier()

        with pytest.raises(UnsupportedContentError):
            classifier.classify("https://example.gov/feed", "application/octet-stream", b"\x00\x01")

    def test_unsupported_is_parse_error(self) -> None:
        assert issubclass(UnsupportedContentError, ParseError)

    def test_media_type_of(self) -> None:
        assert media_type_of("Text/HTML; charset=UTF-8") == "text/html"
        assert media_type_of(None) == ""


# =============================================================================
# HTML
# =============================================================================


class TestHtmlClassification:
    """Tests for HTML_RAW classification."""

    def test_html_raw(self) -> None:
        classifier = ContentClassifier()
        body = b"<html><body><h1>Resolution 12/2024</h1><p>Effective today.</p></body></html>"

        result = classifier.classify("https://example.gov/notice/12", "text/html", body)

        assert result.kind is ClassificationKind.HTML_RAW
        assert "Resolution 12/2024" in result.text
        assert result.converter == "html"

    def test_scripts_only_is_empty(self) -> None:
        classifier = ContentClassifier()
        body = b"<html><head><script>var a = 1;</script><style>p{}</style></head><body> </body></html>"

        with pytest.raises(EmptyContentError):
            classifier.classify("https://example.gov/notice/13", "text/html", body)


# =============================================================================
# Office formats
# =============================================================================


class TestOfficeClassification:
    """Tests for DOCX, XLSX, XLS and DOC handling."""

    def test_docx(self) -> None:
        classifier = ContentClassifier()
        body = make_docx("Circular 4/2024", "Applies to all filers.")

        result = classifier.classify("https://example.gov/c4.docx", None, body)

        assert result.kind is ClassificationKind.DOCX
        assert "Circular 4/2024" in result.text
        assert result.converter == "python-docx"

    def test_empty_docx(self) -> None:
        classifier = ContentClassifier()

        with pytest.raises(EmptyContentError):
            classifier.classify("https://example.gov/blank.docx", None, make_docx())

    def test_xlsx(self) -> None:
        classifier = ContentClassifier()
        body = make_xlsx([["Code", "Rate"], ["A-1", 0.21]])

        result = classifier.classify("https://example.gov/rates.xlsx", None, body)

        assert result.kind is ClassificationKind.XLSX
        assert "A-1" in result.text
        assert result.converter == "openpyxl"

    def test_xls_uses_injected_extractor(self) -> None:
        classifier = ContentClassifier(xls_extractor=lambda body: "Table 1\tvalue")

        result = classifier.classify("https://example.gov/old.xls", "application/vnd.ms-excel", b"\xd0\xcf")

        assert result.kind is ClassificationKind.XLS
        assert result.converter == "xlrd"

    def test_corrupt_docx(self) -> None:
        classifier = ContentClassifier()

        with pytest.raises(ParseError):
            classifier.classify("https://example.gov/broken.docx", None, b"PK\x03\x04 garbage")

    def test_doc_goes_through_converter(self) -> None:
        converter = StubDocConverter(converter="soffice")
        classifier = ContentClassifier(doc_converter=converter)

        result = classifier.classify("https://example.gov/legacy.doc", "application/msword", b"\xd0\xcf")

        assert result.kind is ClassificationKind.DOC
        assert result.converter == "soffice"
        assert converter.calls == 1


class TestBlockedDomain:
    """Block-listed domains are rejected before any parsing."""

    def test_blocked(self) -> None:
        calls = []
        classifier = ContentClassifier(pdf_extractor=lambda body: calls.append(body))

        with pytest.raises(BlockedDomainError) as exc_info:
            classifier.classify("https://synthetic.example.gov/a.pdf", "application/pdf", b"%PDF")

        assert exc_info.value.pattern == "synthetic"
        assert calls == []


# =============================================================================
# DocConverter
# =============================================================================


class FakeRunner:
    """Stands in for subprocess.run; scripted per tool."""

    def __init__(self, antiword=None, soffice=None) -> None:
        self.antiword = antiword
        self.soffice = soffice
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        behaviour = self.soffice if "--headless" in args else self.antiword
        if isinstance(behaviour, BaseException):
            raise behaviour
        returncode, output = behaviour
        if "--headless" in args and returncode == 0:
            outdir = args[args.index("--outdir") + 1]
            with open(f"{outdir}/document.txt", "w", encoding="utf-8") as f:
                f.write(output)
            output = ""
        return subprocess.CompletedProcess(args, returncode, stdout=output.encode(), stderr=b"boom")


class TestDocConverter:
    """Tests for the antiword / LibreOffice fallback chain."""

    def test_antiword_first(self) -> None:
        runner = FakeRunner(antiword=(0, "From antiword"))

        result = DocConverter(runner=runner).convert(b"\xd0\xcf")

        assert result == ConvertedText(text="From antiword", converter="antiword")
        assert len(runner.calls) == 1

    def test_falls_back_to_soffice(self) -> None:
        runner = FakeRunner(antiword=FileNotFoundError("antiword"), soffice=(0, "From soffice"))

        result = DocConverter(runner=runner).convert(b"\xd0\xcf")

        assert result.converter == "soffice"
        assert result.text == "From soffice"

    def test_antiword_nonzero_exit_falls_back(self) -> None:
        runner = FakeRunner(antiword=(1, ""), soffice=(0, "Converted"))

        assert DocConverter(runner=runner).convert(b"").text == "Converted"

    def test_antiword_blank_output_falls_back(self) -> None:
        """antiword can exit 0 and print nothing for documents it cannot read."""
        runner = FakeRunner(antiword=(0, "  \n\n "), soffice=(0, "Circular 7"))

        result = DocConverter(runner=runner).convert(b"\xd0\xcf")

        assert result == ConvertedText(text="Circular 7", converter="soffice")
        assert len(runner.calls) == 2

    def test_both_fail(self) -> None:
        runner = FakeRunner(
            antiword=FileNotFoundError("antiword"),
            soffice=subprocess.TimeoutExpired("soffice", 60),
        )

        with pytest.raises(ParseError, match="DOC conversion failed"):
            DocConverter(runner=runner).convert(b"\xd0\xcf")
