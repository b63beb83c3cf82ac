"""Unified data source adapter layer.

This module provides a pluggable adapter architecture that normalizes
relational, document and key-value engines into one result envelope.
"""

from datadock.adapters.datasource.base import BaseAdapter

# Import adapters to trigger registration via decorators
from datadock.adapters.datasource.document.mongodb import MongoDBAdapter
from datadock.adapters.datasource.errors import (
    AdapterError,
    ConnectionFailedError,
    ConnectionLostError,
    ErrorCode,
    NoDatabaseSelectedError,
)
from datadock.adapters.datasource.keyvalue.redis import RedisAdapter
from datadock.adapters.datasource.registry import (
    AdapterRegistry,
    get_registry,
    parse_source_type,
    register_adapter,
)
from datadock.adapters.datasource.sql.base import SQLAdapter
from datadock.adapters.datasource.sql.mysql import MySQLAdapter
from datadock.adapters.datasource.sql.postgres import PostgresAdapter
from datadock.adapters.datasource.type_mapping import normalize_type, parse_type_length
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ColumnDefinition,
    ColumnInfo,
    ConfigField,
    ConfigSchema,
    ConnectionTestResult,
    ConnectResult,
    Envelope,
    ForeignKeyInfo,
    IndexInfo,
    NormalizedType,
    Pagination,
    ResultMeta,
    SourceCategory,
    SourceType,
    SourceTypeDefinition,
    TableStructure,
)

__all__ = [
    # Base classes
    "BaseAdapter",
    "SQLAdapter",
    "AdapterRegistry",
    "get_registry",
    "parse_source_type",
    "register_adapter",
    # Adapters
    "MySQLAdapter",
    "PostgresAdapter",
    "MongoDBAdapter",
    "RedisAdapter",
    # Errors
    "AdapterError",
    "ConnectionFailedError",
    "ConnectionLostError",
    "ErrorCode",
    "NoDatabaseSelectedError",
    # Types
    "AdapterCapabilities",
    "ColumnDefinition",
    "ColumnInfo",
    "ConfigField",
    "ConfigSchema",
    "ConnectResult",
    "ConnectionTestResult",
    "Envelope",
    "ForeignKeyInfo",
    "IndexInfo",
    "NormalizedType",
    "Pagination",
    "ResultMeta",
    "SourceCategory",
    "SourceType",
    "SourceTypeDefinition",
    "TableStructure",
    # Utilities
    "normalize_type",
    "parse_type_length",
]
