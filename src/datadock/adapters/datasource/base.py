"""Base adapter interface and abstract base classes.

This module defines the abstract base class that all adapters must implement,
providing a consistent interface for connecting to and querying data sources.

Subclasses implement the private ``_list_schemas``/``_execute``/... hooks and
raise ``AdapterError`` subclasses on failure. The public operations wrap the
hooks: they time the call, translate driver exceptions through
``_translate_error`` and always return an ``Envelope``.
"""

from __future__ import annotations

import csv
import io
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Self

import structlog

from datadock.adapters.datasource.errors import (
    AdapterError,
    ConnectionLostError,
    InternalError,
    InvalidArgumentError,
    UnsupportedFormatError,
)
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ConnectionTestResult,
    Envelope,
    SourceType,
)

logger = structlog.get_logger()

EXPORT_FORMATS = ("json", "csv")


class BaseAdapter(ABC):
    """Abstract base class for all data source adapters.

    All adapters must implement this interface to provide:
    - Connection management (connect/disconnect/ping)
    - Structure discovery (schemas, tables, table structure)
    - Statement execution, pagination and export

    Attributes:
        config: Configuration dictionary for the adapter.
    """

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize the adapter with configuration.

        Args:
            config: Configuration dictionary specific to the adapter type.
        """
        self._config = config
        self._connected = False

    @property
    @abstractmethod
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        ...

    @property
    @abstractmethod
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        ...

    @property
    def config(self) -> dict[str, Any]:
        """Configuration the adapter was created with."""
        return self._config

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the data source.

        Raises:
            ConnectionFailedError: If connection cannot be established.
            AuthenticationFailedError: If credentials are invalid.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the data source."""
        ...

    @abstractmethod
    async def ping(self) -> ConnectionTestResult:
        """Issue a cheap liveness check without changing any state."""
        ...

    @abstractmethod
    async def _list_schemas(self) -> Envelope: ...

    @abstractmethod
    async def _list_tables(self, schema: str) -> Envelope: ...

    @abstractmethod
    async def _get_structure(self, schema: str, table: str) -> Envelope: ...

    @abstractmethod
    async def _execute(self, statement: str, params: Any = None) -> Envelope: ...

    @abstractmethod
    async def _paginate(
        self,
        schema: str,
        table: str,
        page: int,
        page_size: int,
        filter: Any,
        order_by: Any,
    ) -> Envelope: ...

    @abstractmethod
    async def _fetch_all(self, schema: str, table: str) -> list[dict[str, Any]]:
        """Fetch every row of a table for export."""
        ...

    @abstractmethod
    async def _status(self) -> Envelope:
        """Collect server status and statistics."""
        ...

    def _translate_error(self, error: Exception) -> AdapterError:
        """Map a driver exception onto the error taxonomy.

        Adapters override this to recognize their driver's error codes.
        """
        return InternalError(message=str(error) or type(error).__name__)

    async def list_schemas(self) -> Envelope:
        """List schemas (databases, namespaces) visible to the session."""
        return await self._run("list_schemas", self._list_schemas)

    async def list_tables(self, schema: str) -> Envelope:
        """List tables or collections within a schema."""
        return await self._run("list_tables", self._list_tables, schema)

    async def get_structure(self, schema: str, table: str) -> Envelope:
        """Describe columns, indexes and foreign keys of a table."""
        return await self._run("get_structure", self._get_structure, schema, table)

    async def execute(self, statement: str, params: Any = None) -> Envelope:
        """Execute a statement, script or command batch."""
        return await self._run("execute", self._execute, statement, params)

    async def status(self) -> Envelope:
        """Report server status, settings and activity."""
        return await self._run("status", self._status)

    async def paginate(
        self,
        schema: str,
        table: str,
        page: int = 1,
        page_size: int = 50,
        filter: Any = None,
        order_by: Any = None,
    ) -> Envelope:
        """Return one page of rows together with pagination info."""
        if page < 1:
            return Envelope.from_error(InvalidArgumentError("page must be >= 1", "page"))
        if page_size < 1:
            return Envelope.from_error(
                InvalidArgumentError("pageSize must be >= 1", "page_size")
            )
        return await self._run(
            "paginate", self._paginate, schema, table, page, page_size, filter, order_by
        )

    async def export_all(self, schema: str, table: str, format: str = "json") -> Envelope:
        """Export every row of a table as JSON or CSV text."""
        fmt = (format or "").lower()
        if fmt not in EXPORT_FORMATS:
            return Envelope.from_error(UnsupportedFormatError(format))

        async def _export() -> Envelope:
            rows = await self._fetch_all(schema, table)
            if fmt == "json":
                return Envelope.ok(json.dumps(rows, indent=2, default=str))
            return Envelope.ok(self._to_csv([self._flatten_row(row) for row in rows]))

        return await self._run("export_all", _export)

    async def _run(
        self,
        operation: str,
        func: Callable[..., Awaitable[Envelope]],
        *args: Any,
    ) -> Envelope:
        """Run an operation hook and convert any failure into an envelope."""
        if not self._connected:
            return Envelope.from_error(
                ConnectionLostError(f"Not connected to {self.source_type.value}")
            )

        start_time = time.time()
        try:
            envelope = await func(*args)
        except AdapterError as e:
            logger.info(
                "adapter_operation_failed",
                source_type=self.source_type.value,
                operation=operation,
                code=e.code.value,
                error=e.message,
            )
            return Envelope.from_error(e)
        except Exception as e:
            error = self._translate_error(e)
            logger.info(
                "adapter_operation_failed",
                source_type=self.source_type.value,
                operation=operation,
                code=error.code.value,
                error=error.message,
            )
            return Envelope.from_error(error)

        execution_time_ms = int((time.time() - start_time) * 1000)
        return envelope.with_execution_time(execution_time_ms)

    def _flatten_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Prepare a row for CSV output. Nested values are JSON-encoded."""
        return {
            key: json.dumps(value, default=str) if isinstance(value, dict | list) else value
            for key, value in row.items()
        }

    @staticmethod
    def _to_csv(rows: list[dict[str, Any]]) -> str:
        """Render rows as CSV with a header of all keys in first-seen order."""
        header: list[str] = []
        for row in rows:
            for key in row:
                if key not in header:
                    header.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=header, restval="", lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: "" if value is None else value for key, value in row.items()})
        return buffer.getvalue()

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit."""
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        """Check if adapter is currently connected."""
        return self._connected
