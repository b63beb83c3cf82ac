"""Data source catalog service.

Durable naming, validation and statistics layer above the connection
registry. The whole catalog is rewritten to the file store after every
mutation; live sessions are referenced by connection id only and never
survive a restart.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import ValidationError

from datadock.adapters.datasource.errors import (
    AdapterError,
    CatalogCorruptError,
    DataSourceNotFoundError,
    DuplicateNameError,
    ErrorCode,
    InvalidConfigError,
    MissingRequiredFieldError,
    NotConnectedError,
    UnsupportedSourceTypeError,
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
from datadock.adapters.storage.file_store import CatalogFileStore
from datadock.models.datasource import DataSourceDefinition, utc_now
from datadock.services.connections import ConnectionRegistry

logger = structlog.get_logger()

UPDATABLE_FIELDS = {
    "type": "type",
    "config": "config",
    "description": "description",
    "tags": "tags",
    "isDefault": "is_default",
    "is_default": "is_default",
}


def _target_key(source_type: SourceType, config: dict[str, Any]) -> tuple[str, ...]:
    """Identify the backend a config points at."""
    db = config.get("db", config.get("database")) if source_type == SourceType.REDIS else None
    return (
        source_type.value,
        str(config.get("host") or config.get("url") or ""),
        str(config.get("port") or ""),
        str(db if db is not None else config.get("database") or ""),
    )


class DataSourceCatalog:
    """Persistent collection of named data source definitions."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: CatalogFileStore,
        adapter_registry: AdapterRegistry | None = None,
    ) -> None:
        """Initialize the catalog.

        Args:
            registry: Registry that opens and owns live sessions.
            store: File store the catalog is persisted to.
            adapter_registry: Factory used to validate configs.
        """
        self._registry = registry
        self._store = store
        self._adapters = adapter_registry or get_registry()
        self._sources: dict[str, DataSourceDefinition] = {}
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Load the catalog file.

        Definitions persisted as connected are reset to disconnected since
        their sessions died with the previous process.

        Raises:
            CatalogCorruptError: If the file cannot be parsed.
        """
        sources: dict[str, DataSourceDefinition] = {}
        stale = 0
        for name, record in await self._store.load():
            try:
                definition = DataSourceDefinition.model_validate(record)
            except ValidationError as e:
                raise CatalogCorruptError(
                    str(self._store.path),
                    message=f"Invalid definition '{name}' in catalog: {e.errors()[0]['msg']}",
                ) from e
            if definition.status == "connected" or definition.connection_id is not None:
                definition.status = "disconnected"
                definition.connection_id = None
                stale += 1
            sources[name] = definition

        self._sources = sources
        if stale:
            await self._persist()
        logger.info("catalog_loaded", sources=len(sources), reset_connections=stale)

    async def shutdown(self) -> None:
        """Disconnect every live definition and persist."""
        changed = False
        for definition in self._sources.values():
            if definition.connection_id is not None:
                result = await self._registry.disconnect(definition.connection_id)
                if not result.success:
                    logger.warning(
                        "catalog_disconnect_failed", name=definition.name, error=result.error
                    )
                definition.mark_disconnected()
                changed = True
        if changed:
            await self._persist()

    async def _persist(self) -> None:
        async with self._write_lock:
            await self._store.save(
                [(name, definition.to_record()) for name, definition in self._sources.items()]
            )

    def _require(self, name: str) -> DataSourceDefinition:
        definition = self._sources.get(name)
        if definition is None:
            raise DataSourceNotFoundError(name)
        return definition

    def _validate(self, source_type: SourceType | str, config: Any) -> SourceType:
        if not isinstance(config, dict):
            raise InvalidConfigError("config must be an object", field="config")
        return self._adapters.validate_config(source_type, config)

    # -- CRUD -----------------------------------------------------------------

    async def create(self, definition: dict[str, Any]) -> DataSourceDefinition:
        """Validate and add a definition.

        Only ``name``, ``type``, ``config``, ``description``, ``tags`` and
        ``isDefault`` are taken from the input; id, status, timestamps and
        statistics are assigned here.

        Raises:
            MissingRequiredFieldError: If name, type or a required config field is absent.
            UnsupportedSourceTypeError: If the type is unknown.
            DuplicateNameError: If the name is already taken.
        """
        for key in ("name", "type"):
            if not definition.get(key):
                raise MissingRequiredFieldError(key)
        config = definition.get("config") or {}
        source_type = self._validate(definition["type"], config)

        try:
            new = DataSourceDefinition(
                name=definition["name"],
                type=source_type,
                config=dict(config),
                description=definition.get("description") or "",
                tags=list(definition.get("tags") or []),
                is_default=bool(definition.get("isDefault", definition.get("is_default", False))),
            )
        except ValidationError as e:
            raise InvalidConfigError(str(e.errors()[0]["msg"])) from e

        if new.name in self._sources:
            raise DuplicateNameError(new.name)

        if new.is_default:
            self._clear_default()
        self._sources[new.name] = new
        await self._persist()
        logger.info("datasource_created", name=new.name, source_type=source_type.value)
        return new.model_copy(deep=True)

    async def update(self, name: str, partial: dict[str, Any]) -> DataSourceDefinition:
        """Apply a partial update.

        Raises:
            DataSourceNotFoundError: If the name is unknown.
            InvalidConfigError: If a key is not updatable.
        """
        definition = self._require(name)
        changes: dict[str, Any] = {}
        for key, value in partial.items():
            field = UPDATABLE_FIELDS.get(key)
            if field is None:
                raise InvalidConfigError(f"Field cannot be updated: {key}", field=key)
            changes[field] = value

        if "type" in changes or "config" in changes:
            changes["type"] = self._validate(
                changes.get("type", definition.type),
                changes.get("config", definition.config),
            )

        try:
            updated = DataSourceDefinition.model_validate(
                {**definition.model_dump(), **changes, "updated_at": utc_now()}
            )
        except ValidationError as e:
            raise InvalidConfigError(str(e.errors()[0]["msg"])) from e

        if updated.is_default and not definition.is_default:
            self._clear_default()
        self._sources[name] = updated
        await self._persist()
        logger.info("datasource_updated", name=name, fields=sorted(changes))
        return updated.model_copy(deep=True)

    async def delete(self, name: str) -> None:
        """Remove a definition, disconnecting it first if live.

        Raises:
            DataSourceNotFoundError: If the name is unknown.
        """
        definition = self._require(name)
        if definition.connection_id is not None:
            result = await self._registry.disconnect(definition.connection_id)
            if not result.success:
                logger.warning("datasource_disconnect_failed", name=name, error=result.error)

        del self._sources[name]
        await self._persist()
        logger.info("datasource_deleted", name=name)

    def _clear_default(self) -> None:
        for other in self._sources.values():
            other.is_default = False

    # -- Connections ----------------------------------------------------------

    async def connect_by_name(self, name: str) -> ConnectResult:
        """Open a session for a definition and record statistics.

        A previous session of the same definition is closed once the new
        one is open.
        """
        if name not in self._sources:
            error = DataSourceNotFoundError(name)
            return ConnectResult(success=False, error=error.message, code=error.code.value)

        definition = self._sources[name]
        result = await self._registry.connect(definition.type, definition.config)

        # The definition may have been deleted while the session was opening
        current = self._sources.get(name)
        if current is None:
            if result.success and result.connection_id:
                await self._registry.disconnect(result.connection_id)
            error = DataSourceNotFoundError(name)
            return ConnectResult(success=False, error=error.message, code=error.code.value)

        if result.success and result.connection_id:
            previous = current.connection_id
            if previous is not None and previous != result.connection_id:
                await self._registry.disconnect(previous)
            current.mark_connected(result.connection_id)
            current.connection_stats.record_success(result.response_time_ms or 0)
            logger.info("datasource_connected", name=name, connection_id=result.connection_id)
        else:
            current.connection_stats.record_failure()
            logger.warning("datasource_connect_failed", name=name, error=result.error)

        await self._persist()
        return result

    async def disconnect_by_name(self, name: str) -> Envelope:
        """Close the session of a definition."""
        definition = self._sources.get(name)
        if definition is None:
            return Envelope.from_error(DataSourceNotFoundError(name))
        if definition.connection_id is None:
            return Envelope.from_error(NotConnectedError(name))

        result = await self._registry.disconnect(definition.connection_id)
        # NOT_FOUND means the session is already gone; reconcile the status too
        if result.success or result.code == ErrorCode.NOT_FOUND.value:
            definition.mark_disconnected()
            await self._persist()
            logger.info("datasource_disconnected", name=name)
        return result

    async def test_definition(self, definition: dict[str, Any]) -> ConnectionTestResult:
        """Check that a definition can reach its backend without saving it."""
        start_time = time.time()
        try:
            source_type = self._validate(definition.get("type") or "", definition.get("config"))
        except AdapterError as e:
            return ConnectionTestResult(
                success=False, latency_ms=0, message=e.message, error_code=e.code.value
            )

        result = await self._registry.test_new_connection(source_type, definition["config"])
        return result.model_copy(
            update={"latency_ms": int((time.time() - start_time) * 1000)}
        )

    async def connect_or_create(
        self,
        source_type: SourceType | str,
        config: dict[str, Any],
        name: str | None = None,
        description: str = "",
        tags: Iterable[str] = (),
    ) -> tuple[DataSourceDefinition, ConnectResult]:
        """Connect the definition targeting the same backend, creating one if needed."""
        parsed = self._validate(source_type, config)
        key = _target_key(parsed, config)

        existing = next(
            (d for d in self._sources.values() if _target_key(d.type, d.config) == key),
            None,
        )
        if existing is None:
            base_name = name or (
                f"{parsed.value}_{config.get('host') or 'localhost'}_{config.get('port') or 'default'}"
            )
            candidate, counter = base_name, 1
            while candidate in self._sources:
                candidate = f"{base_name}-{counter}"
                counter += 1
            existing = await self.create(
                {
                    "name": candidate,
                    "type": parsed,
                    "config": config,
                    "description": description,
                    "tags": list(tags),
                }
            )

        result = await self.connect_by_name(existing.name)
        return self._require(existing.name).model_copy(deep=True), result

    async def dispatch(self, name: str, operation: str, **kwargs: Any) -> Envelope:
        """Run an adapter operation on a connected definition.

        A ``CONNECTION_LOST`` result drops the dead session and marks the
        definition disconnected.
        """
        definition = self._sources.get(name)
        if definition is None:
            return Envelope.from_error(DataSourceNotFoundError(name))
        connection_id = definition.connection_id
        if connection_id is None:
            return Envelope.from_error(NotConnectedError(name))

        envelope = await self._registry.call(connection_id, operation, **kwargs)
        lost = envelope.code == ErrorCode.CONNECTION_LOST.value
        missing = envelope.code == ErrorCode.NOT_FOUND.value and connection_id not in self._registry
        if lost or missing:
            if lost:
                await self._registry.disconnect(connection_id)
            if definition.connection_id == connection_id:
                definition.mark_disconnected()
                await self._persist()
            logger.warning("datasource_connection_lost", name=name, connection_id=connection_id)
        return envelope

    # -- Queries --------------------------------------------------------------

    def get(self, name: str) -> DataSourceDefinition | None:
        """Return a copy of a definition, or None."""
        definition = self._sources.get(name)
        return definition.model_copy(deep=True) if definition else None

    def list(
        self,
        type: SourceType | str | None = None,
        tag: str | None = None,
        status: str | None = None,
    ) -> list[DataSourceDefinition]:
        """List definitions, optionally filtered by type, tag and status."""
        wanted_type = None
        if type:
            try:
                wanted_type = parse_source_type(type)
            except UnsupportedSourceTypeError:
                return []
        return [
            d.model_copy(deep=True)
            for d in self._sources.values()
            if (wanted_type is None or d.type == wanted_type)
            and (tag is None or tag in d.tags)
            and (status is None or d.status == status)
        ]

    def search(self, query: str) -> list[DataSourceDefinition]:
        """Case-insensitive substring search over name, description, tags and type."""
        needle = query.strip().lower()
        if not needle:
            return self.list()
        return [
            d.model_copy(deep=True)
            for d in self._sources.values()
            if needle in d.name.lower()
            or needle in d.description.lower()
            or needle in d.type.value
            or any(needle in tag.lower() for tag in d.tags)
        ]

    def tags(self) -> list[str]:
        """All tags in use, sorted."""
        return sorted({tag for d in self._sources.values() for tag in d.tags})

    def stats(self) -> dict[str, Any]:
        """Aggregate counts and connection statistics."""
        sources = list(self._sources.values())
        by_type: dict[str, int] = {}
        for d in sources:
            by_type[d.type.value] = by_type.get(d.type.value, 0) + 1

        total_connections = sum(d.connection_stats.total_connections for d in sources)
        # Plain mean of per-source averages; never-connected sources count as 0
        average = sum(d.connection_stats.avg_response_time_ms for d in sources)
        connected = sum(1 for d in sources if d.status == "connected")
        return {
            "total": len(sources),
            "connected": connected,
            "disconnected": len(sources) - connected,
            "byType": by_type,
            "totalConnections": total_connections,
            "failedConnections": sum(d.connection_stats.failed_connections for d in sources),
            "avgResponseTimeMs": average / len(sources) if sources else 0.0,
        }
