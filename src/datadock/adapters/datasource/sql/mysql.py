"""MySQL adapter implementation.

This module provides a MySQL adapter that implements the unified
data source interface on top of a single aiomysql session.
"""

from __future__ import annotations

import time
from typing import Any

import structlog

from datadock.adapters.datasource.errors import (
    AccessDeniedError,
    AdapterError,
    AuthenticationFailedError,
    ConnectionFailedError,
    ConnectionLostError,
    ConnectionTimeoutError,
    NoDatabaseSelectedError,
    QueryFailedError,
    QuerySyntaxError,
    TableNotFoundError,
)
from datadock.adapters.datasource.registry import register_adapter
from datadock.adapters.datasource.sql.base import SQLAdapter
from datadock.adapters.datasource.type_mapping import normalize_type, parse_type_length
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ColumnInfo,
    ConfigField,
    ConfigSchema,
    ConnectionTestResult,
    Envelope,
    ForeignKeyInfo,
    IndexInfo,
    QueryLanguage,
    SourceCategory,
    SourceType,
    TableStructure,
)

logger = structlog.get_logger()

# Client-side and server-side codes meaning the session is gone
CONNECTION_LOST_CODES = {0, 2006, 2013, 2055}
NO_DATABASE_SELECTED = 1046
ACCESS_DENIED_CODES = {1044, 1142, 1143}
AUTH_FAILED = 1045
SYNTAX_ERROR = 1064
TABLE_MISSING = 1146

MYSQL_CONFIG_SCHEMA = ConfigSchema(
    fields=[
        ConfigField(
            name="host",
            label="Host",
            type="string",
            required=True,
            placeholder="localhost",
            description="MySQL server hostname or IP address",
        ),
        ConfigField(name="port", label="Port", type="integer", required=False, default_value=3306),
        ConfigField(name="user", label="User", type="string", required=True),
        ConfigField(name="password", label="Password", type="secret", required=True),
        ConfigField(
            name="database",
            label="Database",
            type="string",
            required=False,
            description="Default database selected on connect",
        ),
    ],
)

MYSQL_CAPABILITIES = AdapterCapabilities(
    supports_sql=True,
    supports_explain=True,
    query_language=QueryLanguage.SQL,
)


def _errno(error: Exception) -> int | None:
    """Extract the MySQL error number from a driver exception."""
    args = getattr(error, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


@register_adapter(
    source_type=SourceType.MYSQL,
    display_name="MySQL",
    category=SourceCategory.RELATIONAL,
    icon="mysql",
    description="Connect to MySQL servers to browse databases and run SQL scripts",
    capabilities=MYSQL_CAPABILITIES,
    config_schema=MYSQL_CONFIG_SCHEMA,
)
class MySQLAdapter(SQLAdapter):
    """MySQL database adapter.

    Wraps one aiomysql connection. ``USE db`` statements change the
    session's active database and are not row-producing.
    """

    dialect = "mysql"

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize MySQL adapter.

        Args:
            config: Configuration dictionary with:
                - host: Server hostname
                - port: Server port (optional, default 3306)
                - user: Username
                - password: Password (may be empty)
                - database: Default database (optional)
                - connect_timeout: Timeout in seconds (optional)
        """
        super().__init__(config)
        self._conn: Any = None

    @property
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        return SourceType.MYSQL

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        return MYSQL_CAPABILITIES

    async def connect(self) -> None:
        """Establish connection to MySQL."""
        try:
            import aiomysql
        except ImportError as e:
            raise ConnectionFailedError(
                message="aiomysql is not installed. Install with: pip install aiomysql",
                details={"error": str(e)},
            ) from e

        timeout = self._config.get("connect_timeout", 10)
        try:
            self._conn = await aiomysql.connect(
                host=self._config.get("host", "localhost"),
                port=int(self._config.get("port") or 3306),
                user=self._config.get("user", ""),
                password=self._config.get("password") or "",
                db=self._config.get("database") or None,
                connect_timeout=timeout,
                charset="utf8mb4",
                autocommit=True,
            )
            self._connected = True
        except Exception as e:
            await self.disconnect()
            error_str = str(e).lower()
            if _errno(e) == AUTH_FAILED or "access denied" in error_str:
                raise AuthenticationFailedError(
                    message="Access denied for MySQL user",
                    details={"error": str(e)},
                ) from e
            elif "unknown database" in error_str:
                raise ConnectionFailedError(
                    message=f"Database does not exist: {self._config.get('database')}",
                    details={"error": str(e)},
                ) from e
            elif "timeout" in error_str or "timed out" in error_str:
                raise ConnectionTimeoutError(
                    message="Connection to MySQL timed out",
                    timeout_seconds=timeout,
                ) from e
            else:
                raise ConnectionFailedError(
                    message=f"Failed to connect to MySQL: {str(e)}",
                    details={"error": str(e)},
                ) from e

    async def disconnect(self) -> None:
        """Close the MySQL session."""
        conn, self._conn = self._conn, None
        self._connected = False
        if conn is not None:
            try:
                await conn.ensure_closed()
            except Exception as e:
                logger.warning("mysql_close_failed", error=str(e))
                conn.close()

    async def ping(self) -> ConnectionTestResult:
        """Test MySQL liveness without reconnecting."""
        start_time = time.time()
        try:
            if not self._connected or self._conn is None:
                raise ConnectionLostError("Not connected to MySQL")
            await self._conn.ping(reconnect=False)
            latency_ms = int((time.time() - start_time) * 1000)
            return ConnectionTestResult(
                success=True,
                latency_ms=latency_ms,
                server_version=f"MySQL {self._conn.get_server_info()}",
                message="Connection successful",
            )
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            error = e if isinstance(e, AdapterError) else self._translate_error(e)
            return ConnectionTestResult(
                success=False,
                latency_ms=latency_ms,
                message=error.message,
                error_code=error.code.value,
            )

    def _translate_error(self, error: Exception) -> AdapterError:
        """Map pymysql errors onto the error taxonomy."""
        errno = _errno(error)
        message = str(error.args[1]) if len(error.args) > 1 else str(error)

        if errno == NO_DATABASE_SELECTED:
            return NoDatabaseSelectedError()
        # pymysql raises InterfaceError(0, "") once the socket is closed
        if (
            errno in CONNECTION_LOST_CODES
            or type(error).__name__ == "InterfaceError"
            or isinstance(error, OSError)
        ):
            return ConnectionLostError(details={"error": str(error)})
        if errno == SYNTAX_ERROR:
            return QuerySyntaxError(message=message)
        if errno in ACCESS_DENIED_CODES:
            return AccessDeniedError(message=message)
        if errno == TABLE_MISSING:
            return TableNotFoundError(table_name="", message=message)
        return QueryFailedError(message=message or type(error).__name__)

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier with backticks."""
        return "`" + name.replace("`", "``") + "`"

    async def _run_statement(
        self,
        sql: str,
        params: Any = None,
    ) -> tuple[list[dict[str, Any]], int]:
        import aiomysql

        if self._conn is None:
            raise ConnectionLostError("Not connected to MySQL")

        async with self._conn.cursor(aiomysql.DictCursor) as cur:
            await cur.execute(sql, params or None)
            rows = list(await cur.fetchall()) if cur.description else []
            return rows, max(cur.rowcount, 0)

    def escape_where(self, where: str) -> str:
        """Double percent signs so pyformat binding leaves them literal."""
        return where.replace("%", "%%")

    async def _run_insert(self, sql: str, values: list[Any]) -> tuple[int, Any]:
        import aiomysql

        if self._conn is None:
            raise ConnectionLostError("Not connected to MySQL")

        async with self._conn.cursor(aiomysql.DictCursor) as cur:
            await cur.execute(sql, values)
            return max(cur.rowcount, 0), cur.lastrowid

    async def _fetch_rows(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        rows, _ = await self._run_statement(sql, params)
        return rows

    async def _select_schema(self, statement: str) -> None:
        await self._run_statement(statement)

    async def _list_schemas(self) -> Envelope:
        rows = await self._fetch_rows("SHOW DATABASES")
        return Envelope.ok([next(iter(row.values())) for row in rows])

    async def _list_tables(self, schema: str) -> Envelope:
        if not schema:
            return Envelope.ok([])
        rows = await self._fetch_rows(f"SHOW TABLES FROM {self.quote_identifier(schema)}")
        return Envelope.ok([next(iter(row.values())) for row in rows])

    async def _get_structure(self, schema: str, table: str) -> Envelope:
        table_ref = self.quote_table(schema, table)

        describe_rows = await self._fetch_rows(f"DESCRIBE {table_ref}")
        columns = []
        for row in describe_rows:
            native_type = str(row["Type"])
            length, scale = parse_type_length(native_type)
            default = row.get("Default")
            columns.append(
                ColumnInfo(
                    name=row["Field"],
                    native_type=native_type,
                    data_type=normalize_type(native_type, SourceType.MYSQL),
                    length=length,
                    scale=scale,
                    nullable=row.get("Null") == "YES",
                    is_primary_key=row.get("Key") == "PRI",
                    default_value=None if default is None else str(default),
                    extra=row.get("Extra") or None,
                )
            )

        index_rows = await self._fetch_rows(f"SHOW INDEX FROM {table_ref}")
        grouped: dict[str, dict[str, Any]] = {}
        for row in index_rows:
            entry = grouped.setdefault(
                row["Key_name"],
                {
                    "columns": [],
                    "unique": not int(row.get("Non_unique", 1)),
                    "index_type": row.get("Index_type"),
                },
            )
            entry["columns"].append(row["Column_name"])
        indexes = [IndexInfo(name=name, **entry) for name, entry in grouped.items()]

        fk_rows = await self._fetch_rows(
            """
            SELECT
                CONSTRAINT_NAME AS name,
                COLUMN_NAME AS column_name,
                REFERENCED_TABLE_SCHEMA AS referenced_schema,
                REFERENCED_TABLE_NAME AS referenced_table,
                REFERENCED_COLUMN_NAME AS referenced_column
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = COALESCE(%s, DATABASE())
              AND TABLE_NAME = %s
              AND REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY CONSTRAINT_NAME, ORDINAL_POSITION
            """,
            (schema or None, table),
        )
        foreign_keys = [
            ForeignKeyInfo(
                name=row["name"],
                column=row["column_name"],
                referenced_schema=row["referenced_schema"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
            )
            for row in fk_rows
        ]

        return Envelope.ok(
            TableStructure(columns=columns, indexes=indexes, foreign_keys=foreign_keys)
        )

    async def _explain_plan(self, sql: str) -> dict[str, Any]:
        plan = await self._fetch_rows(f"EXPLAIN {sql}")

        full_scans = 0
        estimated_rows = 0
        index_usage = []
        warnings = []
        for row in plan:
            table = row.get("table")
            estimated_rows += int(row.get("rows") or 0)
            if row.get("type") == "ALL":
                full_scans += 1
                warnings.append(f"Full table scan on {table}")
            if row.get("key"):
                index_usage.append({"table": table, "index": row["key"]})
            extra = row.get("Extra") or ""
            if "Using filesort" in extra:
                warnings.append(f"Filesort required on {table}")
            if "Using temporary" in extra:
                warnings.append(f"Temporary table required on {table}")

        return {
            "plan": plan,
            "analysis": {
                "fullTableScans": full_scans,
                "indexUsage": index_usage,
                "estimatedRows": estimated_rows,
                "warnings": warnings,
            },
        }

    async def _status(self) -> Envelope:
        status = await self._fetch_rows("SHOW STATUS")
        variables = await self._fetch_rows("SHOW VARIABLES")
        processes = await self._fetch_rows("SHOW PROCESSLIST")
        return Envelope.ok(
            {
                "status": {row["Variable_name"]: row["Value"] for row in status},
                "variables": {row["Variable_name"]: row["Value"] for row in variables},
                "processList": processes,
            }
        )
