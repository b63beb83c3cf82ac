"""Persistence adapters."""

from datadock.adapters.storage.file_store import CatalogFileStore

__all__ = ["CatalogFileStore"]
