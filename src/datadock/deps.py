"""Settings, service construction and lifecycle management."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog

from datadock.adapters.datasource import SourceType, get_registry
from datadock.adapters.storage import CatalogFileStore
from datadock.services.catalog import DataSourceCatalog
from datadock.services.connections import ConnectionRegistry

logger = structlog.get_logger()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


class Settings:
    """Application settings loaded from environment."""

    def __init__(self) -> None:
        """Load settings from environment variables."""
        self.catalog_path = os.getenv("DATADOCK_CATALOG_PATH", "data/sources.json")
        self.connect_timeout = _int_env("DATADOCK_CONNECT_TIMEOUT", 10)
        self.default_page_size = _int_env("DATADOCK_DEFAULT_PAGE_SIZE", 50)
        self.scan_count = _int_env("DATADOCK_SCAN_COUNT", 100)
        self.sample_size = _int_env("DATADOCK_SAMPLE_SIZE", 50)

        # Engine defaults, applied under each caller's config
        self.mysql_host = os.getenv("MYSQL_HOST", "localhost")
        self.mysql_port = _int_env("MYSQL_PORT", 3306)
        self.mysql_user = os.getenv("MYSQL_USER", "root")
        self.mysql_password = os.getenv("MYSQL_PASSWORD", "")
        self.mysql_database = os.getenv("MYSQL_DATABASE", "")

        self.pg_host = os.getenv("PG_HOST", "localhost")
        self.pg_port = _int_env("PG_PORT", 5432)
        self.pg_user = os.getenv("PG_USER", "postgres")
        self.pg_password = os.getenv("PG_PASSWORD", "")
        self.pg_database = os.getenv("PG_DATABASE", "postgres")

        self.mongodb_url = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
        self.mongodb_database = os.getenv("MONGODB_DATABASE", "test")

        self.redis_host = os.getenv("REDIS_HOST", "localhost")
        self.redis_port = _int_env("REDIS_PORT", 6379)
        self.redis_password = os.getenv("REDIS_PASSWORD", "")
        self.redis_db = _int_env("REDIS_DB", 0)

    def engine_defaults(self, source_type: SourceType) -> dict[str, Any]:
        """Default connection parameters for an engine.

        Empty values are left out so they never shadow an adapter's own
        defaults.
        """
        common: dict[str, Any] = {
            "connect_timeout": self.connect_timeout,
            "scan_count": self.scan_count,
            "sample_size": self.sample_size,
        }
        engine: dict[str, Any]
        if source_type == SourceType.MYSQL:
            engine = {
                "host": self.mysql_host,
                "port": self.mysql_port,
                "user": self.mysql_user,
                "password": self.mysql_password,
                "database": self.mysql_database,
            }
        elif source_type == SourceType.POSTGRESQL:
            engine = {
                "host": self.pg_host,
                "port": self.pg_port,
                "user": self.pg_user,
                "password": self.pg_password,
                "database": self.pg_database,
            }
        elif source_type == SourceType.MONGODB:
            engine = {"url": self.mongodb_url, "database": self.mongodb_database}
        elif source_type == SourceType.REDIS:
            engine = {
                "host": self.redis_host,
                "port": self.redis_port,
                "password": self.redis_password,
                "db": self.redis_db,
            }
        else:
            engine = {}
        common.update({k: v for k, v in engine.items() if v not in (None, "")})
        return common


@dataclass
class ServiceContainer:
    """Services constructed once per process and passed to callers."""

    settings: Settings
    registry: ConnectionRegistry
    catalog: DataSourceCatalog

    async def shutdown(self) -> None:
        """Disconnect catalog sources, then close any remaining sessions."""
        try:
            await self.catalog.shutdown()
        except Exception as e:
            logger.warning("catalog_shutdown_failed", error=str(e))
        await self.registry.shutdown()


async def create_services(settings: Settings | None = None) -> ServiceContainer:
    """Build the registry and catalog and load the persisted catalog.

    Raises:
        CatalogCorruptError: If the catalog file cannot be parsed.
    """
    settings = settings or Settings()
    adapters = get_registry()
    registry = ConnectionRegistry(
        adapter_registry=adapters,
        defaults=settings.engine_defaults,
        default_page_size=settings.default_page_size,
    )
    catalog = DataSourceCatalog(
        registry=registry,
        store=CatalogFileStore(settings.catalog_path),
        adapter_registry=adapters,
    )
    await catalog.init()
    logger.info(
        "services_started",
        catalog_path=settings.catalog_path,
        source_types=[t.value for t in adapters.registered_types],
    )
    return ServiceContainer(settings=settings, registry=registry, catalog=catalog)


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncIterator[ServiceContainer]:
    """Service lifespan - setup and teardown."""
    services = await create_services(settings)
    try:
        yield services
    finally:
        await services.shutdown()
        logger.info("services_stopped")
