"""Type normalization mappings for all data sources.

This module provides mappings from native data types to normalized types,
and extracts declared length/precision from native type text so every
engine reports the same column metadata.
"""

from __future__ import annotations

import re

from datadock.adapters.datasource.types import NormalizedType, SourceType

# PostgreSQL type mappings
POSTGRESQL_TYPE_MAP: dict[str, NormalizedType] = {
    # String types
    "varchar": NormalizedType.STRING,
    "character varying": NormalizedType.STRING,
    "text": NormalizedType.STRING,
    "char": NormalizedType.STRING,
    "character": NormalizedType.STRING,
    "bpchar": NormalizedType.STRING,
    "name": NormalizedType.STRING,
    "uuid": NormalizedType.STRING,
    "citext": NormalizedType.STRING,
    "interval": NormalizedType.STRING,
    "inet": NormalizedType.STRING,
    "cidr": NormalizedType.STRING,
    "xml": NormalizedType.STRING,
    # Integer types
    "smallint": NormalizedType.INTEGER,
    "integer": NormalizedType.INTEGER,
    "int": NormalizedType.INTEGER,
    "int2": NormalizedType.INTEGER,
    "int4": NormalizedType.INTEGER,
    "bigint": NormalizedType.INTEGER,
    "int8": NormalizedType.INTEGER,
    "serial": NormalizedType.INTEGER,
    "bigserial": NormalizedType.INTEGER,
    "oid": NormalizedType.INTEGER,
    # Float types
    "real": NormalizedType.FLOAT,
    "float4": NormalizedType.FLOAT,
    "double precision": NormalizedType.FLOAT,
    "float8": NormalizedType.FLOAT,
    # Decimal types
    "numeric": NormalizedType.DECIMAL,
    "decimal": NormalizedType.DECIMAL,
    "money": NormalizedType.DECIMAL,
    # Boolean
    "boolean": NormalizedType.BOOLEAN,
    "bool": NormalizedType.BOOLEAN,
    # Date/Time types
    "date": NormalizedType.DATE,
    "time": NormalizedType.TIME,
    "time without time zone": NormalizedType.TIME,
    "time with time zone": NormalizedType.TIME,
    "timestamp": NormalizedType.TIMESTAMP,
    "timestamp without time zone": NormalizedType.TIMESTAMP,
    "timestamp with time zone": NormalizedType.TIMESTAMP,
    "timestamptz": NormalizedType.TIMESTAMP,
    # Binary
    "bytea": NormalizedType.BINARY,
    # JSON types
    "json": NormalizedType.JSON,
    "jsonb": NormalizedType.JSON,
    "array": NormalizedType.ARRAY,
}

# MySQL type mappings
MYSQL_TYPE_MAP: dict[str, NormalizedType] = {
    # String types
    "varchar": NormalizedType.STRING,
    "char": NormalizedType.STRING,
    "text": NormalizedType.STRING,
    "tinytext": NormalizedType.STRING,
    "mediumtext": NormalizedType.STRING,
    "longtext": NormalizedType.STRING,
    "enum": NormalizedType.STRING,
    "set": NormalizedType.STRING,
    # Integer types
    "tinyint": NormalizedType.INTEGER,
    "smallint": NormalizedType.INTEGER,
    "mediumint": NormalizedType.INTEGER,
    "int": NormalizedType.INTEGER,
    "integer": NormalizedType.INTEGER,
    "bigint": NormalizedType.INTEGER,
    "year": NormalizedType.INTEGER,
    # Float types
    "float": NormalizedType.FLOAT,
    "double": NormalizedType.FLOAT,
    "double precision": NormalizedType.FLOAT,
    # Decimal types
    "decimal": NormalizedType.DECIMAL,
    "numeric": NormalizedType.DECIMAL,
    # Boolean (MySQL uses BIT or TINYINT(1))
    "bit": NormalizedType.BOOLEAN,
    "bool": NormalizedType.BOOLEAN,
    "boolean": NormalizedType.BOOLEAN,
    # Date/Time types
    "date": NormalizedType.DATE,
    "time": NormalizedType.TIME,
    "datetime": NormalizedType.DATETIME,
    "timestamp": NormalizedType.TIMESTAMP,
    # Binary types
    "binary": NormalizedType.BINARY,
    "varbinary": NormalizedType.BINARY,
    "tinyblob": NormalizedType.BINARY,
    "blob": NormalizedType.BINARY,
    "mediumblob": NormalizedType.BINARY,
    "longblob": NormalizedType.BINARY,
    # JSON
    "json": NormalizedType.JSON,
    # Spatial types
    "geometry": NormalizedType.STRING,
    "point": NormalizedType.STRING,
    "polygon": NormalizedType.STRING,
}

# MongoDB BSON type mappings
MONGODB_TYPE_MAP: dict[str, NormalizedType] = {
    "string": NormalizedType.STRING,
    "int": NormalizedType.INTEGER,
    "int32": NormalizedType.INTEGER,
    "long": NormalizedType.INTEGER,
    "int64": NormalizedType.INTEGER,
    "double": NormalizedType.FLOAT,
    "decimal128": NormalizedType.DECIMAL,
    "bool": NormalizedType.BOOLEAN,
    "date": NormalizedType.TIMESTAMP,
    "timestamp": NormalizedType.TIMESTAMP,
    "objectid": NormalizedType.STRING,
    "object": NormalizedType.JSON,
    "array": NormalizedType.ARRAY,
    "bindata": NormalizedType.BINARY,
    "regex": NormalizedType.STRING,
    "null": NormalizedType.UNKNOWN,
}

# Redis value type mappings (as reported by TYPE)
REDIS_TYPE_MAP: dict[str, NormalizedType] = {
    "string": NormalizedType.STRING,
    "hash": NormalizedType.MAP,
    "list": NormalizedType.ARRAY,
    "set": NormalizedType.ARRAY,
    "zset": NormalizedType.ARRAY,
    "stream": NormalizedType.JSON,
}

SOURCE_TYPE_MAPS: dict[SourceType, dict[str, NormalizedType]] = {
    SourceType.POSTGRESQL: POSTGRESQL_TYPE_MAP,
    SourceType.MYSQL: MYSQL_TYPE_MAP,
    SourceType.MONGODB: MONGODB_TYPE_MAP,
    SourceType.REDIS: REDIS_TYPE_MAP,
}

_PARAMS_RE = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")


def normalize_type(
    native_type: str,
    source_type: SourceType,
) -> NormalizedType:
    """Normalize a native type to the standard type system.

    Args:
        native_type: The native type string from the data source.
        source_type: The source type to use for mapping.

    Returns:
        Normalized type enum value.
    """
    if not native_type:
        return NormalizedType.UNKNOWN

    type_map = SOURCE_TYPE_MAPS.get(source_type, {})
    clean_type = native_type.lower().strip()

    # MySQL reports booleans as tinyint(1)
    if source_type == SourceType.MYSQL and clean_type.startswith("tinyint(1)"):
        return NormalizedType.BOOLEAN

    # Handle array types (e.g., "integer[]", "ARRAY")
    if "[]" in clean_type or clean_type.startswith("array"):
        return NormalizedType.ARRAY

    # Strip parameters and modifiers (e.g., "varchar(255)", "int(11) unsigned")
    base_type = re.sub(r"\(.*\)", "", clean_type).strip()
    base_type = base_type.replace(" unsigned", "").replace(" zerofill", "").strip()

    if base_type in type_map:
        return type_map[base_type]

    for key, value in type_map.items():
        if key in base_type or base_type in key:
            return value

    return NormalizedType.UNKNOWN


def parse_type_length(native_type: str) -> tuple[int | None, int | None]:
    """Extract declared length and scale from a native type description.

    ``varchar(255)`` yields ``(255, None)``; ``decimal(10,2)`` yields
    ``(10, 2)``; types without parameters yield ``(None, None)``.

    Args:
        native_type: The native type string, as reported by the engine.

    Returns:
        Tuple of (length, scale).
    """
    if not native_type:
        return None, None
    match = _PARAMS_RE.search(native_type)
    if not match:
        return None, None
    length = int(match.group(1))
    scale = int(match.group(2)) if match.group(2) is not None else None
    return length, scale
