"""Text extraction for binary document formats.

One handler per format. Every handler takes raw bytes and returns plain
text (PDF also returns its page count); any failure inside a third-party
parser or external converter surfaces as :class:`ParseError`.

Legacy Word (.doc) files have no maintained pure-Python reader, so they go
through ``antiword`` with a LibreOffice headless conversion as fallback.
"""

from __future__ import annotations

import io
import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from regwatch.discovery.errors import ParseError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PdfText:
    """Text layer of a PDF."""

    text: str
    page_count: int

    @property
    def chars_per_page(self) -> float:
        if self.page_count <= 0:
            return 0.0
        return len(self.text.strip()) / self.page_count


@dataclass(slots=True)
class ConvertedText:
    text: str
    converter: str


PdfExtractor = Callable[[bytes], PdfText]


def extract_pdf_text(body: bytes) -> PdfText:
    """Extract the text layer of every page with pypdf."""
    from pypdf import PdfReader

    try:
        reader = PdfReader(io.BytesIO(body))
        pages = [page.extract_text() or "" for page in reader.pages]
    except Exception as exc:
        raise ParseError(f"Unreadable PDF: {exc}") from exc

    return PdfText(text="\n".join(pages), page_count=len(pages))


def extract_docx_text(body: bytes) -> str:
    """Paragraph and table text of a .docx file."""
    import docx

    try:
        document = docx.Document(io.BytesIO(body))
    except Exception as exc:
        raise ParseError(f"Unreadable DOCX: {exc}") from exc

    parts = [paragraph.text for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.append("\t".join(cell.text for cell in row.cells))
    return "\n".join(parts)


def extract_xlsx_text(body: bytes) -> str:
    """Cell values of every sheet of an .xlsx workbook, tab-separated."""
    from openpyxl import load_workbook

    try:
        workbook = load_workbook(io.BytesIO(body), read_only=True, data_only=True)
    except Exception as exc:
        raise ParseError(f"Unreadable XLSX: {exc}") from exc

    lines: list[str] = []
    try:
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows(values_only=True):
                values = [str(value) for value in row if value is not None]
                if values:
                    lines.append("\t".join(values))
    finally:
        workbook.close()
    return "\n".join(lines)


def extract_xls_text(body: bytes) -> str:
    """Cell values of every sheet of a legacy .xls workbook."""
    import xlrd

    try:
        workbook = xlrd.open_workbook(file_contents=body)
    except Exception as exc:
        raise ParseError(f"Unreadable XLS: {exc}") from exc

    lines: list[str] = []
    for sheet in workbook.sheets():
        for row_index in range(sheet.nrows):
            values = [
                str(value)
                for value in sheet.row_values(row_index)
                if value not in ("", None)
            ]
            if values:
                lines.append("\t".join(values))
    return "\n".join(lines)


class DocConverter:
    """Convert legacy .doc bytes to text using external tools.

    ``antiword`` is tried first; if it is missing, fails or prints no text,
    LibreOffice (``soffice --headless --convert-to txt``) is used. Both failing is a
    :class:`ParseError`.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        antiword: str = "antiword",
        soffice: str = "soffice",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.timeout = timeout
        self.antiword = antiword
        self.soffice = soffice
        self._run = runner

    def convert(self, body: bytes) -> ConvertedText:
        errors: list[str] = []
        with tempfile.TemporaryDirectory(prefix="regwatch-doc-") as tmp:
            source = Path(tmp) / "document.doc"
            source.write_bytes(body)

            try:
                return ConvertedText(text=self._antiword(source), converter="antiword")
            except ParseError as exc:
                logger.info("antiword failed, falling back to LibreOffice: %s", exc)
                errors.append(str(exc))

            try:
                return ConvertedText(text=self._soffice(source, Path(tmp)), converter="soffice")
            except ParseError as exc:
                errors.append(str(exc))

        raise ParseError("DOC conversion failed: " + "; ".join(errors))

    def _execute(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        executable = shutil.which(args[0]) or args[0]
        try:
            result = self._run(
                [executable, *args[1:]],
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ParseError(f"{args[0]} not installed") from exc
        except subprocess.TimeoutExpired as exc:
            raise ParseError(f"{args[0]} timed out after {self.timeout}s") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
            raise ParseError(f"{args[0]} exited with {result.returncode}: {stderr.strip()}")
        return result

    def _antiword(self, source: Path) -> str:
        result = self._execute([self.antiword, str(source)])
        text = result.stdout.decode("utf-8", errors="replace")
        if not text.strip():
            raise ParseError("antiword produced no text")
        return text

    def _soffice(self, source: Path, outdir: Path) -> str:
        self._execute([
            self.soffice,
            "--headless",
            "--convert-to",
            "txt:Text",
            "--outdir",
            str(outdir),
            str(source),
        ])
        converted = outdir / (source.stem + ".txt")
        if not converted.exists():
            raise ParseError("soffice produced no output")
        return converted.read_text(encoding="utf-8", errors="replace")
