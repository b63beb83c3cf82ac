"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from datadock.adapters.datasource import get_registry
from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import ConnectionFailedError, ConnectionLostError
from datadock.adapters.datasource.sql.mysql import MYSQL_CONFIG_SCHEMA
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ConnectionTestResult,
    Envelope,
    Pagination,
    ResultMeta,
    SourceCategory,
    SourceType,
    TableStructure,
)
from datadock.adapters.storage import CatalogFileStore
from datadock.services import ConnectionRegistry, DataSourceCatalog

FAKE_ROWS = [{"id": 1, "name": "alice"}, {"id": 2, "name": "bob"}]


class FakeAdapter(BaseAdapter):
    """In-memory adapter driven by its config.

    Config flags:
        fail: connect raises ConnectionFailedError
        unreachable: ping reports failure
        lost: every operation raises ConnectionLostError
    """

    instances: list[FakeAdapter] = []

    def __init__(self, config: dict[str, Any]) -> None:
        super().__init__(config)
        self.disconnect_calls = 0
        FakeAdapter.instances.append(self)

    @property
    def source_type(self) -> SourceType:
        return SourceType.MYSQL

    @property
    def capabilities(self) -> AdapterCapabilities:
        return AdapterCapabilities(supports_sql=True)

    async def connect(self) -> None:
        if self._config.get("fail"):
            raise ConnectionFailedError(f"Cannot reach {self._config.get('host')}")
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def ping(self) -> ConnectionTestResult:
        if self._config.get("unreachable"):
            return ConnectionTestResult(
                success=False, message="unreachable", error_code="CONNECTION_LOST"
            )
        return ConnectionTestResult(success=True, latency_ms=1, message="Connection successful")

    def _check(self) -> None:
        if self._config.get("lost"):
            raise ConnectionLostError()

    async def _list_schemas(self) -> Envelope:
        self._check()
        return Envelope.ok(["app", "analytics"])

    async def _list_tables(self, schema: str) -> Envelope:
        self._check()
        return Envelope.ok(["users"])

    async def _get_structure(self, schema: str, table: str) -> Envelope:
        self._check()
        return Envelope.ok(TableStructure())

    async def _execute(self, statement: str, params: Any = None) -> Envelope:
        self._check()
        return Envelope.ok(FAKE_ROWS, ResultMeta(row_count=len(FAKE_ROWS)))

    async def _paginate(self, schema, table, page, page_size, filter, order_by) -> Envelope:
        self._check()
        start = (page - 1) * page_size
        rows = FAKE_ROWS[start : start + page_size]
        return Envelope.ok(
            {"rows": rows, "pagination": Pagination.build(page, page_size, len(FAKE_ROWS))}
        )

    async def _fetch_all(self, schema: str, table: str) -> list[dict[str, Any]]:
        self._check()
        return list(FAKE_ROWS)

    async def _status(self) -> Envelope:
        self._check()
        return Envelope.ok({"uptime": 1})


@pytest.fixture
def fake_adapter() -> Iterator[type[FakeAdapter]]:
    """Register FakeAdapter in place of the MySQL adapter for one test."""
    registry = get_registry()
    original_class = registry.get_adapter_class(SourceType.MYSQL)
    original_definition = registry.get_definition(SourceType.MYSQL)
    FakeAdapter.instances = []

    registry.register(
        source_type=SourceType.MYSQL,
        adapter_class=FakeAdapter,
        display_name="Fake",
        category=SourceCategory.RELATIONAL,
        icon="fake",
        description="In-memory adapter for tests",
        capabilities=AdapterCapabilities(supports_sql=True),
        config_schema=MYSQL_CONFIG_SCHEMA,
    )
    try:
        yield FakeAdapter
    finally:
        assert original_class is not None and original_definition is not None
        registry.register(
            source_type=SourceType.MYSQL,
            adapter_class=original_class,
            display_name=original_definition.display_name,
            category=original_definition.category,
            icon=original_definition.icon,
            description=original_definition.description,
            capabilities=original_definition.capabilities,
            config_schema=original_definition.config_schema,
        )


@pytest.fixture
def connection_registry(fake_adapter: type[FakeAdapter]) -> ConnectionRegistry:
    """Connection registry backed by the fake adapter."""
    return ConnectionRegistry()


@pytest.fixture
def catalog_path(tmp_path: Path) -> Path:
    """Location of a catalog file inside a temporary directory."""
    return tmp_path / "data" / "sources.json"


@pytest.fixture
async def catalog(
    connection_registry: ConnectionRegistry, catalog_path: Path
) -> DataSourceCatalog:
    """Initialized, empty catalog backed by a temporary file."""
    catalog = DataSourceCatalog(
        registry=connection_registry,
        store=CatalogFileStore(catalog_path),
    )
    await catalog.init()
    return catalog


@pytest.fixture
def db1() -> dict[str, Any]:
    """A minimal relational definition."""
    return {
        "name": "db1",
        "type": "mysql",
        "config": {"host": "localhost", "user": "root", "password": ""},
        "description": "Local MySQL",
        "tags": ["local", "dev"],
    }
