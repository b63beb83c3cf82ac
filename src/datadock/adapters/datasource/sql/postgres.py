"""PostgreSQL adapter implementation.

This module provides a PostgreSQL adapter that implements the unified
data source interface on top of a single asyncpg connection. Schemas
are namespaces of the connected database; ``USE x`` is accepted and
rewritten to a ``search_path`` change.
"""

from __future__ import annotations

import re
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
from datadock.adapters.datasource.sql.base import USE_RE, SQLAdapter
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
    ResultMeta,
    SourceCategory,
    SourceType,
    TableStructure,
)

logger = structlog.get_logger()

SEARCH_PATH_RE = re.compile(r"^\s*SET\s+(search_path\b|SCHEMA\s)", re.IGNORECASE)
INDEX_COLUMNS_RE = re.compile(r"\(([^()]*)\)\s*(?:WHERE .*)?$", re.IGNORECASE)
INDEX_USING_RE = re.compile(r"USING\s+(\w+)", re.IGNORECASE)

POSTGRES_CONFIG_SCHEMA = ConfigSchema(
    fields=[
        ConfigField(
            name="host",
            label="Host",
            type="string",
            required=True,
            placeholder="localhost",
            description="PostgreSQL server hostname or IP address",
        ),
        ConfigField(name="port", label="Port", type="integer", required=False, default_value=5432),
        ConfigField(name="user", label="User", type="string", required=True),
        ConfigField(name="password", label="Password", type="secret", required=True),
        ConfigField(
            name="database",
            label="Database",
            type="string",
            required=False,
            default_value="postgres",
        ),
    ],
)

POSTGRES_CAPABILITIES = AdapterCapabilities(
    supports_sql=True,
    supports_explain=True,
    query_language=QueryLanguage.SQL,
)

SYSTEM_SCHEMAS_SQL = """
    SELECT nspname
    FROM pg_catalog.pg_namespace
    WHERE nspname NOT IN ('pg_catalog', 'information_schema')
      AND nspname NOT LIKE 'pg_toast%'
      AND nspname NOT LIKE 'pg_temp%'
    ORDER BY nspname
"""

COLUMNS_SQL = """
    SELECT
        column_name,
        data_type,
        character_maximum_length,
        numeric_precision,
        numeric_scale,
        is_nullable,
        column_default
    FROM information_schema.columns
    WHERE table_schema = $1 AND table_name = $2
    ORDER BY ordinal_position
"""

PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = $1
      AND tc.table_name = $2
"""

INDEXES_SQL = """
    SELECT indexname, indexdef
    FROM pg_indexes
    WHERE schemaname = $1 AND tablename = $2
    ORDER BY indexname
"""

FOREIGN_KEYS_SQL = """
    SELECT
        tc.constraint_name AS name,
        kcu.column_name AS column_name,
        ccu.table_schema AS referenced_schema,
        ccu.table_name AS referenced_table,
        ccu.column_name AS referenced_column
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON tc.constraint_name = ccu.constraint_name
     AND tc.table_schema = ccu.constraint_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = $1
      AND tc.table_name = $2
    ORDER BY tc.constraint_name
"""


DATABASE_STATS_SQL = """
    SELECT
        datname AS database,
        numbackends AS connections,
        xact_commit AS transactions,
        blks_read AS blocks_read,
        blks_hit AS blocks_hit
    FROM pg_stat_database
    WHERE datname IS NOT NULL
    ORDER BY datname
"""

ACTIVITY_SQL = """
    SELECT
        pid,
        usename AS username,
        application_name,
        client_addr::text AS client_addr,
        state,
        query
    FROM pg_stat_activity
    WHERE state IS DISTINCT FROM 'idle'
"""

SEQUENCES_SQL = """
    SELECT
        sequence_name,
        data_type,
        start_value,
        minimum_value,
        maximum_value,
        increment
    FROM information_schema.sequences
    WHERE sequence_schema = $1
    ORDER BY sequence_name
"""


@register_adapter(
    source_type=SourceType.POSTGRESQL,
    display_name="PostgreSQL",
    category=SourceCategory.RELATIONAL,
    icon="postgresql",
    description="Connect to PostgreSQL databases to browse schemas and run SQL scripts",
    capabilities=POSTGRES_CAPABILITIES,
    config_schema=POSTGRES_CONFIG_SCHEMA,
)
class PostgresAdapter(SQLAdapter):
    """PostgreSQL database adapter."""

    dialect = "postgres"
    auto_increment_clause = "GENERATED BY DEFAULT AS IDENTITY"

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize PostgreSQL adapter.

        Args:
            config: Configuration dictionary with:
                - host: Server hostname
                - port: Server port (optional, default 5432)
                - user: Username
                - password: Password (may be empty)
                - database: Database name (optional, default postgres)
                - connect_timeout: Timeout in seconds (optional)
        """
        super().__init__(config)
        self._conn: Any = None

    @property
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        return SourceType.POSTGRESQL

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        return POSTGRES_CAPABILITIES

    async def connect(self) -> None:
        """Establish connection to PostgreSQL."""
        try:
            import asyncpg
        except ImportError as e:
            raise ConnectionFailedError(
                message="asyncpg is not installed. Install with: pip install asyncpg",
                details={"error": str(e)},
            ) from e

        timeout = self._config.get("connect_timeout", 10)
        try:
            self._conn = await asyncpg.connect(
                host=self._config.get("host", "localhost"),
                port=int(self._config.get("port") or 5432),
                user=self._config.get("user", ""),
                password=self._config.get("password") or None,
                database=self._config.get("database") or "postgres",
                timeout=timeout,
            )
            self._connected = True
        except asyncpg.InvalidPasswordError as e:
            raise AuthenticationFailedError(
                message="Password authentication failed for PostgreSQL",
                details={"error": str(e)},
            ) from e
        except asyncpg.InvalidCatalogNameError as e:
            raise ConnectionFailedError(
                message=f"Database does not exist: {self._config.get('database')}",
                details={"error": str(e)},
            ) from e
        except TimeoutError as e:
            raise ConnectionTimeoutError(
                message="Connection to PostgreSQL timed out",
                timeout_seconds=timeout,
            ) from e
        except Exception as e:
            raise ConnectionFailedError(
                message=f"Failed to connect to PostgreSQL: {str(e)}",
                details={"error": str(e)},
            ) from e

    async def disconnect(self) -> None:
        """Close the PostgreSQL connection."""
        conn, self._conn = self._conn, None
        self._connected = False
        if conn is not None:
            try:
                await conn.close()
            except Exception as e:
                logger.warning("postgres_close_failed", error=str(e))
                conn.terminate()

    async def ping(self) -> ConnectionTestResult:
        """Test PostgreSQL liveness with ``SELECT 1``."""
        start_time = time.time()
        try:
            if not self._connected or self._conn is None:
                raise ConnectionLostError("Not connected to PostgreSQL")
            await self._conn.fetchval("SELECT 1")
            version = self._conn.get_server_version()
            latency_ms = int((time.time() - start_time) * 1000)
            return ConnectionTestResult(
                success=True,
                latency_ms=latency_ms,
                server_version=f"PostgreSQL {version.major}.{version.minor}",
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
        """Map asyncpg errors onto the error taxonomy by SQLSTATE."""
        sqlstate = getattr(error, "sqlstate", None) or ""
        message = str(error)

        if sqlstate == "3F000":
            return NoDatabaseSelectedError()
        if sqlstate.startswith("08"):
            return ConnectionLostError(details={"error": message})
        if isinstance(error, OSError) or (
            type(error).__name__ in ("InterfaceError", "ConnectionDoesNotExistError")
            and "closed" in message.lower()
        ):
            return ConnectionLostError(details={"error": message})
        if sqlstate in ("28P01", "28000"):
            return AuthenticationFailedError(message=message)
        if sqlstate == "42601":
            return QuerySyntaxError(message=message)
        if sqlstate == "42501":
            return AccessDeniedError(message=message)
        if sqlstate == "42P01":
            return TableNotFoundError(table_name="", message=message)
        return QueryFailedError(message=message or type(error).__name__)

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier with double quotes."""
        return '"' + name.replace('"', '""') + '"'

    def is_schema_selector(self, statement: str) -> bool:
        """Recognize ``USE x``, ``SET search_path ...`` and ``SET SCHEMA ...``."""
        body = self.statement_body(statement)
        return bool(USE_RE.match(body) or SEARCH_PATH_RE.match(body))

    def placeholder(self, index: int) -> str:
        """Bind placeholder for the 1-based parameter ``index``."""
        return f"${index}"

    async def _select_schema(self, statement: str) -> None:
        statement = self.statement_body(statement)
        match = USE_RE.match(statement)
        if match:
            statement = f"SET search_path TO {self.quote_identifier(match.group(1))}"
        await self._conn.execute(statement)

    async def _run_statement(
        self,
        sql: str,
        params: Any = None,
    ) -> tuple[list[dict[str, Any]], int]:
        if self._conn is None:
            raise ConnectionLostError("Not connected to PostgreSQL")

        args = list(params) if isinstance(params, list | tuple) else []
        stmt = await self._conn.prepare(sql)
        records = await stmt.fetch(*args)
        status = stmt.get_statusmsg() or ""
        last = status.rsplit(" ", 1)[-1]
        affected = int(last) if last.isdigit() else 0
        return [dict(record) for record in records], affected

    async def _run_insert(self, sql: str, values: list[Any]) -> tuple[int, Any]:
        rows, affected = await self._run_statement(f"{sql} RETURNING *", values)
        return affected, rows[0].get("id") if rows else None

    async def _fetch_rows(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        if self._conn is None:
            raise ConnectionLostError("Not connected to PostgreSQL")
        args = list(params) if isinstance(params, list | tuple) else []
        records = await self._conn.fetch(sql, *args)
        return [dict(record) for record in records]

    async def _list_schemas(self) -> Envelope:
        rows = await self._fetch_rows(SYSTEM_SCHEMAS_SQL)
        return Envelope.ok([row["nspname"] for row in rows])

    async def _list_tables(self, schema: str) -> Envelope:
        rows = await self._fetch_rows(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            ORDER BY table_name
            """,
            [schema or "public"],
        )
        return Envelope.ok([row["table_name"] for row in rows])

    async def _get_structure(self, schema: str, table: str) -> Envelope:
        schema = schema or "public"
        column_rows = await self._fetch_rows(COLUMNS_SQL, [schema, table])
        pk_rows = await self._fetch_rows(PRIMARY_KEY_SQL, [schema, table])
        primary_keys = {row["column_name"] for row in pk_rows}

        columns = []
        for row in column_rows:
            native_type = row["data_type"]
            if row["character_maximum_length"] is not None:
                length, scale = row["character_maximum_length"], None
                native_type = f"{native_type}({length})"
            elif native_type == "numeric" and row["numeric_precision"] is not None:
                native_type = f"numeric({row['numeric_precision']},{row['numeric_scale'] or 0})"
                length, scale = parse_type_length(native_type)
            else:
                length, scale = parse_type_length(native_type)
            columns.append(
                ColumnInfo(
                    name=row["column_name"],
                    native_type=native_type,
                    data_type=normalize_type(row["data_type"], SourceType.POSTGRESQL),
                    length=length,
                    scale=scale,
                    nullable=row["is_nullable"] == "YES",
                    is_primary_key=row["column_name"] in primary_keys,
                    default_value=row["column_default"],
                )
            )

        indexes = []
        for row in await self._fetch_rows(INDEXES_SQL, [schema, table]):
            indexdef = row["indexdef"]
            cols_match = INDEX_COLUMNS_RE.search(indexdef)
            using_match = INDEX_USING_RE.search(indexdef)
            indexes.append(
                IndexInfo(
                    name=row["indexname"],
                    columns=[
                        c.strip().strip('"') for c in cols_match.group(1).split(",")
                    ]
                    if cols_match
                    else [],
                    unique="UNIQUE INDEX" in indexdef.upper(),
                    index_type=using_match.group(1) if using_match else None,
                )
            )

        foreign_keys = [
            ForeignKeyInfo(
                name=row["name"],
                column=row["column_name"],
                referenced_schema=row["referenced_schema"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
            )
            for row in await self._fetch_rows(FOREIGN_KEYS_SQL, [schema, table])
        ]

        return Envelope.ok(
            TableStructure(columns=columns, indexes=indexes, foreign_keys=foreign_keys)
        )

    async def _explain_plan(self, sql: str) -> dict[str, Any]:
        rows = await self._fetch_rows(f"EXPLAIN {sql}")
        return {"plan": [next(iter(row.values())) for row in rows]}

    async def _status(self) -> Envelope:
        version = await self._fetch_rows("SELECT version() AS version")
        settings = await self._fetch_rows("SELECT name, setting FROM pg_settings ORDER BY name")
        return Envelope.ok(
            {
                "version": version[0]["version"] if version else None,
                "databases": await self._fetch_rows(DATABASE_STATS_SQL),
                "settings": {row["name"]: row["setting"] for row in settings},
                "activity": await self._fetch_rows(ACTIVITY_SQL),
            }
        )

    async def list_views(self, schema: str = "") -> Envelope:
        """List view names in a schema (``public`` when none is given)."""
        return await self._run("list_views", self._list_views, schema)

    async def list_sequences(self, schema: str = "") -> Envelope:
        """Describe the sequences of a schema (``public`` when none is given)."""
        return await self._run("list_sequences", self._list_sequences, schema)

    async def _list_views(self, schema: str) -> Envelope:
        rows = await self._fetch_rows(
            "SELECT viewname FROM pg_views WHERE schemaname = $1 ORDER BY viewname",
            [schema or "public"],
        )
        return Envelope.ok([row["viewname"] for row in rows])

    async def _list_sequences(self, schema: str) -> Envelope:
        rows = await self._fetch_rows(SEQUENCES_SQL, [schema or "public"])
        return Envelope.ok(rows, ResultMeta(row_count=len(rows)))
