"""Character-based text chunking.

Three strategies, all measured in characters (not tokens):

1. **Sliding window** (:meth:`TextChunker.chunk`) -- fixed ``max_chars``
   windows where each window starts ``overlap`` characters before the
   previous one ended.  Used for uploaded documents.

2. **Paragraphs** (:meth:`TextChunker.chunk_paragraphs`) -- split on blank
   lines, drop paragraphs shorter than a minimum length.  Used for
   structured source material that already has sensible boundaries.

3. **Markdown sections** (:meth:`TextChunker.chunk_markdown_sections`) --
   split on ``#``/``##``/``###`` headings, carry the heading as the section
   title, and cut long sections into fixed windows.  Used by the vault index
   builder.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

import structlog

from vaultrag.utils.errors import InvalidConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_HEADING = re.compile(r"^#{1,3}\s")
_HEADING_MARKER = re.compile(r"^#+\s+")


@dataclass(frozen=True)
class MarkdownSection:
    """One heading-delimited slice of a markdown file."""

    title: str
    content: str


class TextChunker:
    """Splits text into overlapping fixed-size character windows.

    Parameters
    ----------
    max_chars:
        Maximum characters per fragment (default 800).
    overlap:
        Characters shared by consecutive fragments (default 150).  Must be
        smaller than *max_chars*, otherwise the window would never advance.

    Raises
    ------
    InvalidConfigurationError
        If ``max_chars <= 0``, ``overlap < 0`` or ``overlap >= max_chars``.
    """

    def __init__(self, max_chars: int = 800, overlap: int = 150) -> None:
        if max_chars <= 0:
            raise InvalidConfigurationError(message=f"max_chars must be positive, got {max_chars}")
        if overlap < 0:
            raise InvalidConfigurationError(message=f"overlap must be >= 0, got {overlap}")
        if overlap >= max_chars:
            raise InvalidConfigurationError(
                message=f"overlap ({overlap}) must be smaller than max_chars ({max_chars})"
            )
        self._max_chars = max_chars
        self._overlap = overlap

    @property
    def max_chars(self) -> int:
        return self._max_chars

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[str]:
        """Split *text* into overlapping windows.

        The text is trimmed first.  Fragment ``i+1`` starts ``overlap``
        characters before fragment ``i`` ended; the last fragment ends
        exactly at the end of the text and may be shorter than
        ``max_chars``.  Empty or whitespace-only input yields ``[]``.
        """
        body = text.strip()
        if not body:
            return []

        fragments: list[str] = []
        start = 0
        length = len(body)
        while start < length:
            end = min(length, start + self._max_chars)
            fragments.append(body[start:end])
            if end == length:
                break
            start = max(0, end - self._overlap)

        logger.debug(
            "chunking_complete",
            strategy="window",
            num_chunks=len(fragments),
            text_chars=length,
        )
        return fragments

    @staticmethod
    def chunk_paragraphs(text: str, min_chars: int = 20) -> list[str]:
        """Split *text* on blank lines; drop paragraphs under *min_chars*."""
        parts = (p.strip() for p in _PARAGRAPH_BREAK.split(text))
        return [p for p in parts if len(p) >= min_chars]

    @staticmethod
    def chunk_markdown_sections(
        filename: str,
        text: str,
        min_chars: int = 50,
        window_chars: int = 2000,
    ) -> list[MarkdownSection]:
        """Split markdown into heading-delimited sections.

        A heading line (``#`` to ``###``) starts a new section whose title is
        the heading text; content before the first heading is titled with
        the filename stem.  The heading line stays in the section body.
        Sections whose trimmed body is *min_chars* characters or fewer are
        dropped; longer ones are cut into consecutive *window_chars* windows
        sharing the section title.
        """
        if window_chars <= 0:
            raise InvalidConfigurationError(
                message=f"window_chars must be positive, got {window_chars}"
            )

        sections: list[MarkdownSection] = []
        title = PurePath(filename).stem
        buffer: list[str] = []

        def flush() -> None:
            body = "\n".join(buffer).strip()
            if len(body) <= min_chars:
                return
            for start in range(0, len(body), window_chars):
                sections.append(MarkdownSection(title=title, content=body[start : start + window_chars]))

        for line in text.split("\n"):
            if _HEADING.match(line):
                flush()
                title = _HEADING_MARKER.sub("", line).strip() or PurePath(filename).stem
                buffer = [line]
            else:
                buffer.append(line)
        flush()

        logger.debug("chunking_complete", strategy="markdown", num_chunks=len(sections))
        return sections
