"""Document ingestion for the vaultrag fragment store.

Orchestrates the pipeline: **extract -> chunk -> embed -> store**.

1. **Extract** (extractor.py / TextExtractor) -- PDF, DOCX or plain-text
   bytes become plain text.

2. **Chunk** (chunker.py / TextChunker) -- fixed-size overlapping character
   windows; paragraph and markdown-section splitting for structured notes.

3. **Embed** (via IEmbeddingProvider) -- one vector per fragment, in a
   single batched call per document.

4. **Store** (via IVectorStoreProvider) -- fragments replace any earlier
   copy of the same file for the same owner.

IngestionService handles single uploaded documents; VaultIndexBuilder
indexes a whole directory of markdown notes.
"""

from vaultrag.services.ingestion.chunker import MarkdownSection, TextChunker
from vaultrag.services.ingestion.extractor import TextExtractor
from vaultrag.services.ingestion.ingestion_service import IngestionService
from vaultrag.services.ingestion.vault_index_builder import VaultIndexBuilder

__all__ = [
    "IngestionService",
    "MarkdownSection",
    "TextChunker",
    "TextExtractor",
    "VaultIndexBuilder",
]
