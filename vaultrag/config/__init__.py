"""Configuration module -- exports Settings."""

from vaultrag.config.settings import Settings

__all__ = ["Settings"]
