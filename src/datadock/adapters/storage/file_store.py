"""Flat-file persistence for the data source catalog.

The catalog is stored as a JSON array of ``[name, definition]`` pairs and
rewritten wholesale on every mutation. File I/O runs in the default
executor so the event loop never blocks; writes go to a temporary file
that replaces the catalog atomically.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from datadock.adapters.datasource.errors import CatalogCorruptError

logger = structlog.get_logger()


class CatalogFileStore:
    """Reads and writes the catalog file.

    Attributes:
        path: Location of the catalog file.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the store.

        Args:
            path: Location of the catalog file. Parent directories are
                created on the first save.
        """
        self.path = Path(path)

    async def load(self) -> list[tuple[str, dict[str, Any]]]:
        """Load persisted pairs. A missing file is an empty catalog.

        Raises:
            CatalogCorruptError: If the file exists but is not a valid catalog.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._load_sync)

    async def save(self, pairs: list[tuple[str, dict[str, Any]]]) -> None:
        """Rewrite the catalog file with the given ordered pairs."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, pairs)

    def _load_sync(self) -> list[tuple[str, dict[str, Any]]]:
        if not self.path.exists():
            logger.info("catalog_file_missing", path=str(self.path))
            return []

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogCorruptError(str(self.path), message=f"Cannot read catalog: {e}") from e

        if not isinstance(raw, list):
            raise CatalogCorruptError(str(self.path))

        pairs = []
        for item in raw:
            if (
                not isinstance(item, list)
                or len(item) != 2
                or not isinstance(item[0], str)
                or not isinstance(item[1], dict)
            ):
                raise CatalogCorruptError(str(self.path))
            pairs.append((item[0], item[1]))
        return pairs

    def _save_sync(self, pairs: list[tuple[str, dict[str, Any]]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([[name, record] for name, record in pairs], indent=2)

        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
