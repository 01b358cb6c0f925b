"""Plain-text extraction from uploaded documents.

Supports three declared media types:

* ``application/pdf`` -- PyMuPDF (fitz) page by page.  If PyMuPDF rejects
  the file, an operator scan recovers text from PDFs written without stream
  compression: first the strings shown by the text-show operators (``Tj``,
  ``TJ``, ``'`` and ``"``), then, as a last resort, runs of printable ASCII.
* ``application/vnd.openxmlformats-officedocument.wordprocessingml.document``
  -- python-docx paragraphs.
* ``text/plain`` (and ``text/markdown``) -- strict UTF-8 decode.

Extraction is all-or-nothing: either the full text comes back or an error
is raised.  A file that parses but holds no text returns ``""``; deciding
whether that is too little text is the ingestion service's job.
"""

from __future__ import annotations

import asyncio
import io
import re

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from docx import Document

from vaultrag.utils.errors import ParseFailureError, UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)

MEDIA_TYPE_PDF = "application/pdf"
MEDIA_TYPE_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MEDIA_TYPE_TEXT = "text/plain"
MEDIA_TYPE_MARKDOWN = "text/markdown"

SUPPORTED_MEDIA_TYPES = frozenset(
    {MEDIA_TYPE_PDF, MEDIA_TYPE_DOCX, MEDIA_TYPE_TEXT, MEDIA_TYPE_MARKDOWN}
)

# Body of a parenthesised PDF string, with \\, \( and \) escapes.
_STRING_BODY = r"(?:\\\\|\\\(|\\\)|[^()])*"
_PDF_STRING = re.compile(r"\((" + _STRING_BODY + r")\)")
# (..) Tj, (..) ', aw ac (..) " and [(..) -120 (..)] TJ.
_TEXT_SHOW = re.compile(
    r"\((" + _STRING_BODY + r")\)\s*(?:Tj|'|\")"
    r"|\[((?:\(" + _STRING_BODY + r"\)|[^\]])*)\]\s*TJ"
)
_STRING_ESCAPES = re.compile(r"\\([\\()])")
_PRINTABLE_RUN = re.compile(r"[\x20-\x7E]{6,}")
_TRAILING_SPACE = re.compile(r"\s+\n")

_FILE_EXTENSIONS: dict[str, str] = {
    ".pdf": MEDIA_TYPE_PDF,
    ".docx": MEDIA_TYPE_DOCX,
    ".txt": MEDIA_TYPE_TEXT,
    ".md": MEDIA_TYPE_MARKDOWN,
    ".markdown": MEDIA_TYPE_MARKDOWN,
}


def normalize_media_type(media_type: str) -> str:
    """Lower-case *media_type* and drop parameters such as ``; charset=utf-8``."""
    return media_type.split(";", 1)[0].strip().lower()


def guess_media_type(filename: str) -> str | None:
    """Map a filename's extension to a supported media type, if any."""
    lowered = filename.lower()
    for extension, media_type in _FILE_EXTENSIONS.items():
        if lowered.endswith(extension):
            return media_type
    return None


def _has_pdf_header(data: bytes) -> bool:
    return b"%PDF" in data[:1024]


def scan_pdf_operators(data: bytes) -> str:
    """Recover text from an uncompressed PDF by scanning its raw bytes.

    Returns the strings drawn by the text-show operators (``Tj``, ``TJ``,
    ``'`` and ``"``), one operator per line.  If there are none, returns the
    printable ASCII runs of six or more characters, and ``""`` when neither
    finds anything.
    """
    raw = data.decode("latin-1")

    shown: list[str] = []
    for match in _TEXT_SHOW.finditer(raw):
        if match.group(1) is not None:
            parts = [match.group(1)]
        else:
            # Kerning numbers between the array's strings are dropped.
            parts = _PDF_STRING.findall(match.group(2))
        shown.append("".join(_STRING_ESCAPES.sub(r"\1", p) for p in parts))
    if shown:
        text = "\n".join(shown)
    else:
        text = "\n".join(_PRINTABLE_RUN.findall(raw))

    return _TRAILING_SPACE.sub("\n", text).strip()


class TextExtractor:
    """Converts document bytes plus a declared media type into plain text."""

    async def extract(self, data: bytes, media_type: str) -> str:
        """Extract plain text from *data*.

        Parameters
        ----------
        data:
            Raw document bytes.
        media_type:
            Declared media type; parameters after ``;`` are ignored.

        Returns
        -------
        str
            The extracted text.  May be empty for documents with no text.

        Raises
        ------
        UnsupportedFormatError
            If *media_type* is not one of :data:`SUPPORTED_MEDIA_TYPES`.
        ParseFailureError
            If the bytes cannot be parsed as the declared type.
        """
        kind = normalize_media_type(media_type)
        if kind not in SUPPORTED_MEDIA_TYPES:
            raise UnsupportedFormatError(
                message=f"Unsupported format: {kind or 'unknown'}",
                media_type=kind,
            )
        # Parsers are CPU-bound; keep them off the event loop.
        return await asyncio.to_thread(self.extract_sync, data, kind)

    def extract_sync(self, data: bytes, media_type: str) -> str:
        """Synchronous body of :meth:`extract` (media type already normalised)."""
        if media_type == MEDIA_TYPE_PDF:
            text = self._extract_pdf(data)
        elif media_type == MEDIA_TYPE_DOCX:
            text = self._extract_docx(data)
        elif media_type in (MEDIA_TYPE_TEXT, MEDIA_TYPE_MARKDOWN):
            text = self._extract_text(data)
        else:
            raise UnsupportedFormatError(
                message=f"Unsupported format: {media_type}", media_type=media_type
            )

        logger.info(
            "text_extracted",
            media_type=media_type,
            input_bytes=len(data),
            text_chars=len(text),
        )
        return text

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:  # noqa: BLE001 - PyMuPDF raises several types
            logger.warning("pdf_open_failed", error_type=type(exc).__name__, input_bytes=len(data))
            return TextExtractor._pdf_fallback(data, exc)

        try:
            pages = [page.get_text("text") for page in doc]
        except Exception as exc:  # noqa: BLE001
            logger.warning("pdf_text_failed", error_type=type(exc).__name__)
            return TextExtractor._pdf_fallback(data, exc)
        finally:
            doc.close()

        text = "\n".join(p.strip() for p in pages if p.strip())
        if not text:
            # MuPDF repairs aggressively and will "open" arbitrary bytes.
            if not _has_pdf_header(data):
                raise ParseFailureError(message="File is not a PDF")
            # Parsed fine but drew nothing (scanned pages, odd encodings).
            text = scan_pdf_operators(data)
        return text

    @staticmethod
    def _pdf_fallback(data: bytes, cause: Exception) -> str:
        if not _has_pdf_header(data):
            raise ParseFailureError(message="File is not a PDF") from cause
        text = scan_pdf_operators(data)
        if not text:
            raise ParseFailureError(message="PDF could not be parsed") from cause
        logger.info("pdf_operator_scan_used", text_chars=len(text))
        return text

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:  # noqa: BLE001 - zip, XML and package errors
            raise ParseFailureError(message="DOCX could not be parsed") from exc
        return "\n".join(p.text for p in document.paragraphs).strip()

    @staticmethod
    def _extract_text(data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseFailureError(message="Text is not valid UTF-8") from exc
