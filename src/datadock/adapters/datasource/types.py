"""Type definitions for the unified data source layer.

This module defines the data structures shared by all adapters, ensuring
consistent output regardless of the underlying engine. Every public adapter
operation returns an ``Envelope``; ``Envelope.to_wire()`` produces the
camelCase dictionary consumed by the routing layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from datadock.adapters.datasource.errors import AdapterError, ErrorCode


class SourceType(str, Enum):
    """Supported data source types."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"
    REDIS = "redis"

    @classmethod
    def _missing_(cls, value: object) -> SourceType | None:
        """Accept case variations and the ``postgres`` alias."""
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        if lowered == "postgres":
            return cls.POSTGRESQL
        for member in cls:
            if member.value == lowered:
                return member
        return None


class SourceCategory(str, Enum):
    """Categories of data sources."""

    RELATIONAL = "relational"
    DOCUMENT = "document"
    KEY_VALUE = "key_value"


class NormalizedType(str, Enum):
    """Normalized type system that maps all source types."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    TIMESTAMP = "timestamp"
    BINARY = "binary"
    JSON = "json"
    ARRAY = "array"
    MAP = "map"
    UNKNOWN = "unknown"


class QueryLanguage(str, Enum):
    """Query languages supported by adapters."""

    SQL = "sql"
    MQL = "mql"  # JSON find/aggregate documents
    COMMAND = "command"  # Newline-delimited key-value commands


class WireModel(BaseModel):
    """Frozen model serialized with camelCase keys."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ResultMeta(WireModel):
    """Execution metadata attached to successful envelopes."""

    execution_time_ms: int | None = None
    affected_rows: int | None = None
    row_count: int | None = None


class Envelope(WireModel):
    """Result of every public adapter operation.

    Exactly one of ``data`` and ``error`` is meaningful: a successful
    envelope never carries an error, a failed one always carries a message.
    ``code`` holds the taxonomy code of a failure so callers can tell a lost
    connection from a query error without inspecting engine fields.
    """

    success: bool
    data: Any = None
    meta: ResultMeta | None = None
    error: str | None = None
    code: str | None = None
    sql: str | None = None
    suggestion: str | None = None

    @model_validator(mode="after")
    def _check_outcome(self) -> Envelope:
        if self.success and self.error is not None:
            raise ValueError("successful envelope cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("failed envelope requires an error message")
        return self

    @classmethod
    def ok(cls, data: Any = None, meta: ResultMeta | None = None) -> Envelope:
        """Build a successful envelope."""
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def fail(
        cls,
        message: str,
        code: ErrorCode | str = ErrorCode.INTERNAL_ERROR,
        sql: str | None = None,
        suggestion: str | None = None,
    ) -> Envelope:
        """Build a failed envelope."""
        return cls(
            success=False,
            error=message,
            code=code.value if isinstance(code, ErrorCode) else code,
            sql=sql,
            suggestion=suggestion,
        )

    @classmethod
    def from_error(cls, error: AdapterError) -> Envelope:
        """Convert an adapter error into a failed envelope."""
        return cls.fail(
            error.message,
            code=error.code,
            sql=error.sql,
            suggestion=error.suggestion,
        )

    def with_execution_time(self, execution_time_ms: int) -> Envelope:
        """Return a copy with the execution time recorded in ``meta``."""
        if not self.success:
            return self
        meta = self.meta or ResultMeta()
        if meta.execution_time_ms is not None:
            return self
        return self.model_copy(
            update={"meta": meta.model_copy(update={"execution_time_ms": execution_time_ms})}
        )


class ConnectResult(WireModel):
    """Result of opening a connection through the registry or catalog."""

    success: bool
    connection_id: str | None = None
    response_time_ms: int | None = None
    error: str | None = None
    code: str | None = None


class ConnectionTestResult(WireModel):
    """Result of testing a connection."""

    success: bool
    latency_ms: int | None = None
    server_version: str | None = None
    message: str
    error_code: str | None = None


class ColumnInfo(WireModel):
    """Unified column representation."""

    name: str
    native_type: str
    data_type: NormalizedType
    length: int | None = None
    scale: int | None = None
    nullable: bool = True
    is_primary_key: bool = False
    default_value: str | None = None
    extra: str | None = None


class IndexInfo(WireModel):
    """Index over one or more columns."""

    name: str
    columns: list[str]
    unique: bool = False
    index_type: str | None = None


class ForeignKeyInfo(WireModel):
    """Foreign key from a local column to a referenced column."""

    name: str
    column: str
    referenced_table: str
    referenced_column: str
    referenced_schema: str | None = None


class TableStructure(WireModel):
    """Structure of one table or collection.

    The key-value engine returns an empty structure since it has no schema.
    """

    columns: list[ColumnInfo] = Field(default_factory=list)
    indexes: list[IndexInfo] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = Field(default_factory=list)
    row_count: int | None = None


class ColumnDefinition(WireModel):
    """Column requested by ``create_table``.

    ``type`` is a bare type name such as ``VARCHAR`` or ``integer``;
    ``length`` is appended in parentheses. ``default_value`` is a SQL
    expression and is emitted as written.
    """

    name: str
    type: str = Field(pattern=r"^[A-Za-z][A-Za-z0-9_ ]*$")
    length: int | None = Field(default=None, gt=0)
    nullable: bool = True
    default_value: str | None = None
    auto_increment: bool = False
    primary_key: bool = False
    unique: bool = False


class Pagination(WireModel):
    """Paging information for a page of rows."""

    page: int
    page_size: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> Pagination:
        """Compute total pages from the total row count."""
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=(total + page_size - 1) // page_size if total else 0,
        )


class AdapterCapabilities(BaseModel):
    """Capabilities of an adapter."""

    model_config = ConfigDict(frozen=True)

    supports_sql: bool = False
    supports_explain: bool = False
    supports_structure: bool = True
    supports_schemas: bool = True
    query_language: QueryLanguage = QueryLanguage.SQL


class ConfigField(BaseModel):
    """Configuration field for connection forms."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: Literal["string", "integer", "boolean", "secret"]
    required: bool
    default_value: Any | None = None
    placeholder: str | None = None
    description: str | None = None


class ConfigSchema(BaseModel):
    """Configuration schema for an adapter.

    ``required_one_of`` lists groups of fields where at least one member of
    each group must be present (e.g. ``url`` or ``host``).
    """

    model_config = ConfigDict(frozen=True)

    fields: list[ConfigField]
    required_one_of: list[list[str]] = Field(default_factory=list)


class SourceTypeDefinition(BaseModel):
    """Complete definition of a source type."""

    model_config = ConfigDict(frozen=True)

    type: SourceType
    display_name: str
    category: SourceCategory
    icon: str
    description: str
    capabilities: AdapterCapabilities
    config_schema: ConfigSchema
