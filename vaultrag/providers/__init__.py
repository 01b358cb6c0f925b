"""Concrete adapters for the interfaces in ``vaultrag.interfaces``."""
