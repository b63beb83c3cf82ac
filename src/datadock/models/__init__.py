"""Domain models for data source definitions and live connections."""

from datadock.models.datasource import (
    ConnectionEntry,
    ConnectionStats,
    DataSourceDefinition,
    mask_config,
)

__all__ = [
    "ConnectionEntry",
    "ConnectionStats",
    "DataSourceDefinition",
    "mask_config",
]
