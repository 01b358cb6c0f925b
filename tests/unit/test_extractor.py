"""Unit tests for TextExtractor and the raw PDF operator scan."""

from __future__ import annotations

import io

import pytest
from docx import Document

from vaultrag.services.ingestion.extractor import (
    MEDIA_TYPE_DOCX,
    MEDIA_TYPE_MARKDOWN,
    MEDIA_TYPE_PDF,
    MEDIA_TYPE_TEXT,
    TextExtractor,
    guess_media_type,
    normalize_media_type,
    scan_pdf_operators,
)
from vaultrag.utils.errors import ParseFailureError, UnsupportedFormatError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _minimal_pdf(text: str) -> bytes:
    """Build a one-page uncompressed PDF that draws *text* with Helvetica."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def extractor() -> TextExtractor:
    return TextExtractor()


# ---------------------------------------------------------------------------
# Media types
# ---------------------------------------------------------------------------


class TestMediaTypes:
    def test_normalize_strips_parameters(self) -> None:
        assert normalize_media_type("Text/Plain; charset=UTF-8") == MEDIA_TYPE_TEXT

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("report.PDF", MEDIA_TYPE_PDF),
            ("memo.docx", MEDIA_TYPE_DOCX),
            ("notes.txt", MEDIA_TYPE_TEXT),
            ("plan.md", MEDIA_TYPE_MARKDOWN),
            ("photo.png", None),
        ],
    )
    def test_guess_media_type(self, filename: str, expected: str | None) -> None:
        assert guess_media_type(filename) == expected

    @pytest.mark.asyncio
    async def test_unsupported_type(self, extractor: TextExtractor) -> None:
        with pytest.raises(UnsupportedFormatError) as exc_info:
            await extractor.extract(b"\x89PNG\r\n", "image/png")
        assert exc_info.value.media_type == "image/png"

    @pytest.mark.asyncio
    async def test_empty_media_type_unsupported(self, extractor: TextExtractor) -> None:
        with pytest.raises(UnsupportedFormatError):
            await extractor.extract(b"hello", "")


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------


class TestPlainText:
    @pytest.mark.asyncio
    async def test_utf8_text(self, extractor: TextExtractor) -> None:
        text = await extractor.extract("Résumé of the backup plan".encode(), MEDIA_TYPE_TEXT)
        assert text == "Résumé of the backup plan"

    @pytest.mark.asyncio
    async def test_markdown_with_charset(self, extractor: TextExtractor) -> None:
        text = await extractor.extract(b"# Title\nbody", "text/markdown; charset=utf-8")
        assert text == "# Title\nbody"

    @pytest.mark.asyncio
    async def test_invalid_utf8(self, extractor: TextExtractor) -> None:
        with pytest.raises(ParseFailureError):
            await extractor.extract(b"\xff\xfe\xfa\xfb", MEDIA_TYPE_TEXT)

    @pytest.mark.asyncio
    async def test_empty_text_is_not_an_error(self, extractor: TextExtractor) -> None:
        assert await extractor.extract(b"", MEDIA_TYPE_TEXT) == ""


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


class TestPdf:
    @pytest.mark.asyncio
    async def test_well_formed_pdf(self, extractor: TextExtractor) -> None:
        text = await extractor.extract(_minimal_pdf("Hello vaultrag"), MEDIA_TYPE_PDF)
        assert "Hello vaultrag" in text

    @pytest.mark.asyncio
    async def test_broken_pdf_recovered_by_operator_scan(self, extractor: TextExtractor) -> None:
        data = b"%PDF-1.4\nBT (Quarterly report) Tj ET\n"
        text = await extractor.extract(data, MEDIA_TYPE_PDF)
        assert "Quarterly report" in text

    @pytest.mark.asyncio
    async def test_non_pdf_bytes(self, extractor: TextExtractor) -> None:
        with pytest.raises(ParseFailureError):
            await extractor.extract(b"this is certainly not a pdf document", MEDIA_TYPE_PDF)


class TestScanPdfOperators:
    def test_tj_strings_with_escapes(self) -> None:
        data = b"BT (First line) Tj (Second \\(draft\\)) Tj ET"
        assert scan_pdf_operators(data) == "First line\nSecond (draft)"

    def test_tj_arrays_and_quote_operators(self) -> None:
        data = (
            b"BT [(Reco) -20 (very) 5 ( plan)] TJ (Next line) ' "
            b"1 0 (Spaced \\(line\\)) \" [(A)] TJ ET"
        )
        assert scan_pdf_operators(data) == "Recovery plan\nNext line\nSpaced (line)\nA"

    def test_printable_runs_when_no_tj(self) -> None:
        data = b"\x00\x01Backup policy\x02\x03ab\x04Encryption at rest\x05"
        assert scan_pdf_operators(data) == "Backup policy\nEncryption at rest"

    def test_nothing_recoverable(self) -> None:
        assert scan_pdf_operators(b"\x00\x01ab\x02") == ""


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------


class TestDocx:
    @pytest.mark.asyncio
    async def test_paragraphs_joined(self, extractor: TextExtractor) -> None:
        data = _docx_bytes("First paragraph", "Second paragraph")
        text = await extractor.extract(data, MEDIA_TYPE_DOCX)
        assert text == "First paragraph\nSecond paragraph"

    @pytest.mark.asyncio
    async def test_garbage_docx(self, extractor: TextExtractor) -> None:
        with pytest.raises(ParseFailureError):
            await extractor.extract(b"PK not really a zip", MEDIA_TYPE_DOCX)
