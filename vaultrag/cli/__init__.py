"""Command-line tools for managing a vaultrag corpus.

- ``python -m vaultrag.cli ingest FILE --owner ID`` -- ingest one document
- ``python -m vaultrag.cli search QUERY --owner ID`` -- ranked fragments
- ``python -m vaultrag.cli migrate`` -- create the pgvector schema and ANN index
- ``python -m vaultrag.cli build-index DIR --owner ID`` -- index a notes directory
- ``python -m vaultrag.cli purge --owner ID | --source NAME`` -- delete fragments
- ``python -m vaultrag.cli stats`` -- per-store counts
"""
