"""Error definitions for the adapter layer.

This module defines all adapter and service exceptions with consistent
error codes that map across all engine types. Errors are raised inside
adapters and services and converted into result envelopes at the public
method boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for all adapters and services."""

    # Connection errors
    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    CONNECTION_LOST = "CONNECTION_LOST"

    # Permission errors
    ACCESS_DENIED = "ACCESS_DENIED"

    # Query errors
    QUERY_SYNTAX_ERROR = "QUERY_SYNTAX_ERROR"
    QUERY_FAILED = "QUERY_FAILED"
    NO_DATABASE_SELECTED = "NO_DATABASE_SELECTED"
    UNSUPPORTED_COMMAND = "UNSUPPORTED_COMMAND"

    # Schema errors
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"

    # Request / configuration errors
    INVALID_CONFIG = "INVALID_CONFIG"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    UNSUPPORTED_SOURCE_TYPE = "UNSUPPORTED_SOURCE_TYPE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"

    # Registry / catalog errors
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    NOT_CONNECTED = "NOT_CONNECTED"
    CATALOG_CORRUPT = "CATALOG_CORRUPT"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AdapterError(Exception):
    """Base exception for all adapter and service errors.

    Attributes:
        code: Standardized error code.
        message: Human-readable error message.
        details: Additional error details.
        retryable: Whether the operation can be retried by the caller.
        sql: Statement that produced the error, for relational engines.
        suggestion: Guidance shown next to the error.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        sql: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize the adapter error."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.sql = sql
        self.suggestion = suggestion

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logs and API responses."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details if self.details else None,
                "retryable": self.retryable,
                "sql": self.sql,
                "suggestion": self.suggestion,
            }
        }


class ConnectionFailedError(AdapterError):
    """Failed to establish connection to data source."""

    def __init__(
        self,
        message: str = "Failed to connect to data source",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize connection failed error."""
        super().__init__(
            code=ErrorCode.CONNECTION_FAILED,
            message=message,
            details=details,
            retryable=True,
        )


class ConnectionTimeoutError(AdapterError):
    """Connection attempt timed out."""

    def __init__(
        self,
        message: str = "Connection timed out",
        timeout_seconds: int | float | None = None,
    ) -> None:
        """Initialize connection timeout error."""
        super().__init__(
            code=ErrorCode.CONNECTION_TIMEOUT,
            message=message,
            details={"timeout_seconds": timeout_seconds} if timeout_seconds else None,
            retryable=True,
        )


class AuthenticationFailedError(AdapterError):
    """Authentication credentials were rejected."""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize authentication failed error."""
        super().__init__(
            code=ErrorCode.AUTHENTICATION_FAILED,
            message=message,
            details=details,
            retryable=False,
        )


class ConnectionLostError(AdapterError):
    """The live session is no longer usable."""

    def __init__(
        self,
        message: str = "Connection to data source was lost",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize connection lost error."""
        super().__init__(
            code=ErrorCode.CONNECTION_LOST,
            message=message,
            details=details,
            retryable=True,
            suggestion="Reconnect the data source and try again",
        )


class AccessDeniedError(AdapterError):
    """Access to resource was denied."""

    def __init__(
        self,
        message: str = "Access denied",
        resource: str | None = None,
    ) -> None:
        """Initialize access denied error."""
        super().__init__(
            code=ErrorCode.ACCESS_DENIED,
            message=message,
            details={"resource": resource} if resource else None,
            retryable=False,
        )


class QuerySyntaxError(AdapterError):
    """Query syntax is invalid."""

    def __init__(
        self,
        message: str = "Query syntax error",
        query: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize query syntax error."""
        super().__init__(
            code=ErrorCode.QUERY_SYNTAX_ERROR,
            message=message,
            retryable=False,
            sql=query,
            suggestion=suggestion,
        )


class QueryFailedError(AdapterError):
    """Engine rejected a statement or command."""

    def __init__(
        self,
        message: str,
        query: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize query failed error."""
        super().__init__(
            code=ErrorCode.QUERY_FAILED,
            message=message,
            details=details,
            retryable=False,
            sql=query,
        )


class NoDatabaseSelectedError(AdapterError):
    """A relational statement ran on a session without an active schema."""

    def __init__(self, query: str | None = None) -> None:
        """Initialize no database selected error."""
        super().__init__(
            code=ErrorCode.NO_DATABASE_SELECTED,
            message=(
                "Please select a database first. Pick a database in the structure "
                "browser or start the script with USE <database>;"
            ),
            retryable=False,
            sql=query,
            suggestion="Select a database and run the query again",
        )


class UnsupportedCommandError(AdapterError):
    """Key-value command is not part of the supported command set."""

    def __init__(self, command: str) -> None:
        """Initialize unsupported command error."""
        super().__init__(
            code=ErrorCode.UNSUPPORTED_COMMAND,
            message=f"Unsupported command: {command}",
            details={"command": command},
            retryable=False,
        )


class TableNotFoundError(AdapterError):
    """Table or collection not found."""

    def __init__(
        self,
        table_name: str,
        message: str | None = None,
    ) -> None:
        """Initialize table not found error."""
        super().__init__(
            code=ErrorCode.TABLE_NOT_FOUND,
            message=message or f"Table not found: {table_name}",
            details={"table_name": table_name},
            retryable=False,
        )


class InvalidConfigError(AdapterError):
    """Configuration or definition is invalid."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        field: str | None = None,
    ) -> None:
        """Initialize invalid config error."""
        super().__init__(
            code=ErrorCode.INVALID_CONFIG,
            message=message,
            details={"field": field} if field else None,
            retryable=False,
        )


class MissingRequiredFieldError(AdapterError):
    """Required configuration field is missing."""

    def __init__(
        self,
        field: str,
        message: str | None = None,
    ) -> None:
        """Initialize missing required field error."""
        super().__init__(
            code=ErrorCode.MISSING_REQUIRED_FIELD,
            message=message or f"Missing required field: {field}",
            details={"field": field},
            retryable=False,
        )


class UnsupportedSourceTypeError(AdapterError):
    """Requested engine type has no registered adapter."""

    def __init__(self, source_type: str) -> None:
        """Initialize unsupported source type error."""
        super().__init__(
            code=ErrorCode.UNSUPPORTED_SOURCE_TYPE,
            message=f"Unsupported database type: {source_type}",
            details={"source_type": source_type},
            retryable=False,
        )


class UnsupportedFormatError(AdapterError):
    """Export format is not supported."""

    def __init__(self, format: str) -> None:
        """Initialize unsupported format error."""
        super().__init__(
            code=ErrorCode.UNSUPPORTED_FORMAT,
            message=f"Unsupported export format: {format}",
            details={"format": format, "supported": ["json", "csv"]},
            retryable=False,
        )


class InvalidArgumentError(AdapterError):
    """An operation argument is out of range or malformed."""

    def __init__(
        self,
        message: str,
        argument: str | None = None,
    ) -> None:
        """Initialize invalid argument error."""
        super().__init__(
            code=ErrorCode.INVALID_ARGUMENT,
            message=message,
            details={"argument": argument} if argument else None,
            retryable=False,
        )


class ConnectionNotFoundError(AdapterError):
    """Connection identifier is not present in the registry."""

    def __init__(self, connection_id: str) -> None:
        """Initialize connection not found error."""
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"Connection does not exist: {connection_id}",
            details={"connection_id": connection_id},
            retryable=False,
        )


class DataSourceNotFoundError(AdapterError):
    """Data source name is not present in the catalog."""

    def __init__(self, name: str) -> None:
        """Initialize data source not found error."""
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"Data source '{name}' does not exist",
            details={"name": name},
            retryable=False,
        )


class DuplicateNameError(AdapterError):
    """Data source name already exists in the catalog."""

    def __init__(self, name: str) -> None:
        """Initialize duplicate name error."""
        super().__init__(
            code=ErrorCode.DUPLICATE_NAME,
            message=f"Data source name '{name}' already exists",
            details={"name": name},
            retryable=False,
        )


class NotConnectedError(AdapterError):
    """Data source has no live connection."""

    def __init__(self, name: str) -> None:
        """Initialize not connected error."""
        super().__init__(
            code=ErrorCode.NOT_CONNECTED,
            message=f"Data source '{name}' is not connected",
            details={"name": name},
            retryable=False,
            suggestion="Connect the data source first",
        )


class CatalogCorruptError(AdapterError):
    """The persisted catalog file could not be parsed."""

    def __init__(
        self,
        path: str,
        message: str | None = None,
    ) -> None:
        """Initialize catalog corrupt error."""
        super().__init__(
            code=ErrorCode.CATALOG_CORRUPT,
            message=message or f"Catalog file is not valid: {path}",
            details={"path": path},
            retryable=False,
        )


class InternalError(AdapterError):
    """Internal adapter error."""

    def __init__(
        self,
        message: str = "Internal error",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize internal error."""
        super().__init__(
            code=ErrorCode.INTERNAL_ERROR,
            message=message,
            details=details,
            retryable=False,
        )
