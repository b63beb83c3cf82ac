"""Connection registry service.

Owns the table of live engine sessions keyed by connection id. Sessions are
opened through the adapter factory and closed only on explicit disconnect
or shutdown; a dead session stays registered until a caller removes it.
"""

from __future__ import annotations

import inspect
import secrets
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

import structlog

from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import (
    AdapterError,
    ConnectionFailedError,
    ConnectionNotFoundError,
    InvalidArgumentError,
)
from datadock.adapters.datasource.registry import (
    AdapterRegistry,
    get_registry,
    parse_source_type,
)
from datadock.adapters.datasource.types import (
    ConnectionTestResult,
    ConnectResult,
    Envelope,
    SourceType,
)
from datadock.models.datasource import ConnectionEntry

logger = structlog.get_logger()

DISPATCH_OPERATIONS = frozenset(
    {
        "list_schemas",
        "list_tables",
        "get_structure",
        "execute",
        "paginate",
        "export_all",
        "explain",
        "status",
        "insert_row",
        "update_rows",
        "delete_rows",
        "create_table",
        "drop_table",
        "list_views",
        "list_sequences",
        "create_index",
        "drop_index",
        "drop_collection",
    }
)


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


class ConnectionRegistry:
    """In-memory table of open connections across all engine types."""

    def __init__(
        self,
        adapter_registry: AdapterRegistry | None = None,
        defaults: Callable[[SourceType], dict[str, Any]] | None = None,
        default_page_size: int = 50,
    ) -> None:
        """Initialize the registry.

        Args:
            adapter_registry: Factory used to create adapters.
            defaults: Returns engine default config for a source type.
            default_page_size: Page size used when ``paginate`` gets none.
        """
        self._adapters = adapter_registry or get_registry()
        self._defaults = defaults
        self._default_page_size = default_page_size
        self._connections: dict[str, ConnectionEntry] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def _merge_config(self, source_type: SourceType, config: dict[str, Any]) -> dict[str, Any]:
        """Apply engine defaults under the caller's config."""
        defaults = dict(self._defaults(source_type)) if self._defaults else {}
        if config.get("host"):
            # An explicit host wins over a default URL
            defaults.pop("url", None)
        return {**defaults, **{k: v for k, v in config.items() if v is not None}}

    @staticmethod
    def generate_id(source_type: SourceType, config: dict[str, Any]) -> str:
        """Build a connection id from type, host and target database.

        A random suffix keeps ids unique when two connects to the same
        target land in the same millisecond.
        """
        host = config.get("host")
        if not host and config.get("url"):
            host = urlparse(str(config["url"])).hostname
        target = config.get("database")
        if not target and config.get("db") not in (None, ""):
            target = f"db{config['db']}"
        return "_".join(
            [
                source_type.value,
                str(host or "localhost"),
                str(target or "server"),
                str(int(time.time() * 1000)),
                secrets.token_hex(4),
            ]
        )

    def _prepare(
        self, source_type: SourceType | str, config: dict[str, Any]
    ) -> tuple[SourceType, dict[str, Any], BaseAdapter]:
        parsed = parse_source_type(source_type)
        merged = self._merge_config(parsed, config or {})
        self._adapters.validate_config(parsed, merged)
        return parsed, merged, self._adapters.create(parsed, merged)

    async def connect(self, source_type: SourceType | str, config: dict[str, Any]) -> ConnectResult:
        """Open a native session and register it.

        A session that fails partway through opening is closed before the
        failure is returned.
        """
        start_time = time.time()
        try:
            parsed, merged, adapter = self._prepare(source_type, config)
        except AdapterError as e:
            return ConnectResult(success=False, error=e.message, code=e.code.value)

        try:
            await adapter.connect()
        except Exception as e:
            await self._close_quietly(adapter, "connect_cleanup")
            error = e if isinstance(e, AdapterError) else ConnectionFailedError(str(e))
            logger.warning(
                "connection_failed",
                source_type=parsed.value,
                host=merged.get("host") or merged.get("url"),
                code=error.code.value,
                error=error.message,
            )
            return ConnectResult(
                success=False,
                response_time_ms=_elapsed_ms(start_time),
                error=error.message,
                code=error.code.value,
            )

        connection_id = self.generate_id(parsed, merged)
        self._connections[connection_id] = ConnectionEntry(
            connection_id=connection_id,
            source_type=parsed,
            adapter=adapter,
            config=merged,
        )
        response_time_ms = _elapsed_ms(start_time)
        logger.info(
            "connection_opened",
            connection_id=connection_id,
            source_type=parsed.value,
            response_time_ms=response_time_ms,
        )
        return ConnectResult(
            success=True,
            connection_id=connection_id,
            response_time_ms=response_time_ms,
        )

    async def disconnect(self, connection_id: str) -> Envelope:
        """Close and forget a connection. Unknown ids yield ``NOT_FOUND``."""
        entry = self._connections.pop(connection_id, None)
        if entry is None:
            return Envelope.from_error(ConnectionNotFoundError(connection_id))

        await self._close_quietly(entry.adapter, connection_id)
        logger.info("connection_closed", connection_id=connection_id)
        return Envelope.ok({"connectionId": connection_id})

    async def test_connection(self, connection_id: str) -> ConnectionTestResult:
        """Check a registered connection. The entry is kept even on failure."""
        entry = self._connections.get(connection_id)
        if entry is None:
            error = ConnectionNotFoundError(connection_id)
            return ConnectionTestResult(
                success=False, message=error.message, error_code=error.code.value
            )
        return await entry.adapter.ping()

    async def test_new_connection(
        self, source_type: SourceType | str, config: dict[str, Any]
    ) -> ConnectionTestResult:
        """Open a throwaway session to check reachability, then close it."""
        start_time = time.time()
        try:
            _parsed, _merged, adapter = self._prepare(source_type, config)
        except AdapterError as e:
            return ConnectionTestResult(
                success=False, latency_ms=0, message=e.message, error_code=e.code.value
            )

        try:
            await adapter.connect()
            result = await adapter.ping()
        except Exception as e:
            error = e if isinstance(e, AdapterError) else ConnectionFailedError(str(e))
            return ConnectionTestResult(
                success=False,
                latency_ms=_elapsed_ms(start_time),
                message=error.message,
                error_code=error.code.value,
            )
        finally:
            await self._close_quietly(adapter, "test_connection")

        return result.model_copy(update={"latency_ms": _elapsed_ms(start_time)})

    def get(self, connection_id: str) -> ConnectionEntry | None:
        """Look up a registered connection."""
        return self._connections.get(connection_id)

    def get_adapter(self, connection_id: str) -> BaseAdapter:
        """Return the adapter of a registered connection.

        Raises:
            ConnectionNotFoundError: If the id is not registered.
        """
        entry = self._connections.get(connection_id)
        if entry is None:
            raise ConnectionNotFoundError(connection_id)
        return entry.adapter

    def list_connections(self) -> list[dict[str, Any]]:
        """Describe every open connection, with passwords masked."""
        return [entry.describe() for entry in self._connections.values()]

    async def call(self, connection_id: str, operation: str, **kwargs: Any) -> Envelope:
        """Dispatch an adapter operation to a registered connection."""
        entry = self._connections.get(connection_id)
        if entry is None:
            return Envelope.from_error(ConnectionNotFoundError(connection_id))
        if operation not in DISPATCH_OPERATIONS:
            return Envelope.from_error(
                InvalidArgumentError(f"Unknown operation: {operation}", "operation")
            )

        method = getattr(entry.adapter, operation, None)
        if method is None:
            return Envelope.from_error(
                InvalidArgumentError(
                    f"{entry.source_type.value} does not support {operation}", "operation"
                )
            )
        if operation == "paginate":
            kwargs.setdefault("page_size", self._default_page_size)
        try:
            inspect.signature(method).bind(**kwargs)
        except TypeError as e:
            return Envelope.from_error(
                InvalidArgumentError(f"Invalid arguments for {operation}: {e}", "arguments")
            )
        envelope: Envelope = await method(**kwargs)
        return envelope

    async def shutdown(self) -> None:
        """Close every open connection."""
        connections, self._connections = self._connections, {}
        for connection_id, entry in connections.items():
            await self._close_quietly(entry.adapter, connection_id)
        if connections:
            logger.info("registry_shutdown", closed=len(connections))

    @staticmethod
    async def _close_quietly(adapter: BaseAdapter, context: str) -> None:
        try:
            await adapter.disconnect()
        except Exception as e:
            logger.warning("connection_close_failed", context=context, error=str(e))
