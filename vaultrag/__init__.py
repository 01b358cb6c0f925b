"""vaultrag -- document ingestion and owner-scoped semantic search."""

__version__ = "0.1.0"
