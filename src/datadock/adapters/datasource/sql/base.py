"""Base class for SQL database adapters.

This module provides the abstract base class for the relational adapters.
It owns script handling shared by every SQL engine: splitting a script on
statement boundaries, running schema selectors for their side effect only,
surfacing the last statement's result, paging and the SELECT-only explain.
Row writes and table DDL are built here from quoted identifiers and bound
parameters; only the caller's WHERE text is passed through verbatim.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from typing import Any

import sqlglot
from pydantic import ValidationError
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError
from sqlglot.tokens import TokenType

from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import (
    AdapterError,
    InvalidArgumentError,
    QuerySyntaxError,
)
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ColumnDefinition,
    Envelope,
    Pagination,
    QueryLanguage,
    ResultMeta,
)

USE_RE = re.compile(r"^\s*USE\s+[`\"]?([^`\"\s;]+)[`\"]?\s*$", re.IGNORECASE)


class SQLAdapter(BaseAdapter):
    """Abstract base class for SQL database adapters.

    Subclasses provide the driver calls:
    - _run_statement: execute one statement, return rows and affected count
    - _fetch_rows: run a read query and return rows as dicts
    - _select_schema: apply a schema selector statement
    - _explain_plan: return the engine's plan for a SELECT
    """

    dialect: str = ""
    auto_increment_clause: str = "AUTO_INCREMENT"

    @property
    def capabilities(self) -> AdapterCapabilities:
        """SQL adapters support SQL queries by default."""
        return AdapterCapabilities(
            supports_sql=True,
            supports_explain=True,
            query_language=QueryLanguage.SQL,
        )

    @abstractmethod
    async def _run_statement(
        self,
        sql: str,
        params: Any = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Execute a single statement.

        Returns:
            Tuple of (rows, affected row count).
        """
        ...

    @abstractmethod
    async def _fetch_rows(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        """Run a read query and return its rows."""
        ...

    @abstractmethod
    async def _select_schema(self, statement: str) -> None:
        """Apply a schema selector statement to the session."""
        ...

    @abstractmethod
    async def _explain_plan(self, sql: str) -> dict[str, Any]:
        """Return the engine's plan for a SELECT statement."""
        ...

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote an identifier for this dialect."""
        ...

    def quote_table(self, schema: str | None, table: str) -> str:
        """Quote a possibly schema-qualified table reference."""
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    def split_statements(self, script: str) -> list[str]:
        """Split a script into statements on top-level semicolons.

        Semicolons inside string literals, quoted identifiers and comments
        do not split. Segments without any token are dropped.

        Raises:
            QuerySyntaxError: If the script cannot be tokenized.
        """
        try:
            tokens = sqlglot.tokenize(script, read=self.dialect)
        except TokenError as e:
            raise QuerySyntaxError(message=str(e), query=script) from e

        statements: list[str] = []
        segment_start = 0
        has_tokens = False
        for token in tokens:
            if token.token_type == TokenType.SEMICOLON:
                if has_tokens:
                    statements.append(script[segment_start : token.start].strip())
                segment_start = token.end + 1
                has_tokens = False
            else:
                has_tokens = True
        if has_tokens:
            statements.append(script[segment_start:].strip())
        return [statement for statement in statements if statement]

    def statement_body(self, statement: str) -> str:
        """Return the statement from its first token on, dropping leading comments."""
        try:
            tokens = sqlglot.tokenize(statement, read=self.dialect)
        except TokenError:
            return statement
        return statement[tokens[0].start :] if tokens else statement

    def is_schema_selector(self, statement: str) -> bool:
        """Check whether a statement only selects the active schema."""
        return bool(USE_RE.match(self.statement_body(statement)))

    async def _execute(self, statement: str, params: Any = None) -> Envelope:
        if not statement or not statement.strip():
            raise InvalidArgumentError("No statement to execute", "statement")

        statements = self.split_statements(statement)
        if not statements:
            raise InvalidArgumentError("No statement to execute", "statement")

        # Parameters bind to the last statement of the script
        last_index = len(statements) - 1
        rows: list[dict[str, Any]] = []
        affected = 0
        for index, sql in enumerate(statements):
            try:
                if self.is_schema_selector(sql):
                    await self._select_schema(sql)
                    rows, affected = [], 0
                    continue
                rows, affected = await self._run_statement(
                    sql, params if index == last_index else None
                )
            except AdapterError as e:
                e.sql = e.sql or sql
                raise
            except Exception as e:
                error = self._translate_error(e)
                error.sql = sql
                raise error from e

        return Envelope.ok(
            rows,
            ResultMeta(affected_rows=affected, row_count=len(rows)),
        )

    async def _paginate(
        self,
        schema: str,
        table: str,
        page: int,
        page_size: int,
        filter: Any,
        order_by: Any,
    ) -> Envelope:
        table_ref = self.quote_table(schema, table)
        where = f" WHERE {filter}" if filter else ""
        order = f" ORDER BY {order_by}" if order_by else ""
        offset = (page - 1) * page_size

        count_rows = await self._fetch_rows(f"SELECT COUNT(*) AS total FROM {table_ref}{where}")
        total = int(next(iter(count_rows[0].values()))) if count_rows else 0

        rows = await self._fetch_rows(
            f"SELECT * FROM {table_ref}{where}{order} LIMIT {page_size} OFFSET {offset}"
        )
        return Envelope.ok(
            {"rows": rows, "pagination": Pagination.build(page, page_size, total)},
            ResultMeta(row_count=len(rows)),
        )

    async def _fetch_all(self, schema: str, table: str) -> list[dict[str, Any]]:
        return await self._fetch_rows(f"SELECT * FROM {self.quote_table(schema, table)}")

    async def explain(self, statement: str) -> Envelope:
        """Return the execution plan of a SELECT statement."""
        return await self._run("explain", self._explain, statement)

    async def _explain(self, statement: str) -> Envelope:
        try:
            parsed = sqlglot.parse_one(statement, dialect=self.dialect)
        except (ParseError, TokenError) as e:
            raise QuerySyntaxError(message=str(e), query=statement) from e

        if not isinstance(parsed, exp.Select):
            raise InvalidArgumentError("Only SELECT statements can be explained", "statement")

        return Envelope.ok(await self._explain_plan(statement))

    def placeholder(self, index: int) -> str:
        """Bind placeholder for the 1-based parameter ``index``."""
        return "%s"

    def escape_where(self, where: str) -> str:
        """Prepare caller WHERE text for a statement that also binds parameters."""
        return where

    def column_ddl(self, column: ColumnDefinition) -> str:
        """Render one column of a CREATE TABLE statement."""
        ddl = f"{self.quote_identifier(column.name)} {column.type}"
        if column.length:
            ddl += f"({column.length})"
        if not column.nullable:
            ddl += " NOT NULL"
        if column.default_value is not None:
            ddl += f" DEFAULT {column.default_value}"
        if column.auto_increment:
            ddl += f" {self.auto_increment_clause}"
        if column.primary_key:
            ddl += " PRIMARY KEY"
        if column.unique:
            ddl += " UNIQUE"
        return ddl

    async def insert_row(self, schema: str, table: str, data: dict[str, Any]) -> Envelope:
        """Insert one row given as a column to value mapping."""
        return await self._run("insert_row", self._insert_row, schema, table, data)

    async def update_rows(
        self,
        schema: str,
        table: str,
        data: dict[str, Any],
        where: str | None = None,
    ) -> Envelope:
        """Set columns on the rows matching ``where``. Without ``where`` every row changes."""
        return await self._run("update_rows", self._update_rows, schema, table, data, where)

    async def delete_rows(self, schema: str, table: str, where: str | None = None) -> Envelope:
        """Delete the rows matching ``where``. Without ``where`` every row is deleted."""
        return await self._run("delete_rows", self._delete_rows, schema, table, where)

    async def create_table(
        self,
        schema: str,
        table: str,
        columns: list[ColumnDefinition | dict[str, Any]],
    ) -> Envelope:
        """Create a table from column definitions."""
        return await self._run("create_table", self._create_table, schema, table, columns)

    async def drop_table(self, schema: str, table: str) -> Envelope:
        """Drop a table if it exists."""
        return await self._run("drop_table", self._drop_table, schema, table)

    async def _run_insert(self, sql: str, values: list[Any]) -> tuple[int, Any]:
        """Run an INSERT and return (affected rows, generated id or None)."""
        _rows, affected = await self._run_statement(sql, values)
        return affected, None

    async def _write(
        self, sql: str, values: list[Any] | None = None, insert: bool = False
    ) -> tuple[int, Any]:
        """Run a write statement with the statement attached to any failure."""
        try:
            if insert:
                return await self._run_insert(sql, values or [])
            _rows, affected = await self._run_statement(sql, values)
        except AdapterError as e:
            e.sql = e.sql or sql
            raise
        except Exception as e:
            error = self._translate_error(e)
            error.sql = sql
            raise error from e
        return affected, None

    async def _insert_row(self, schema: str, table: str, data: dict[str, Any]) -> Envelope:
        _require_table(table)
        _require_values(data)
        columns = ", ".join(self.quote_identifier(column) for column in data)
        placeholders = ", ".join(self.placeholder(i) for i in range(1, len(data) + 1))
        sql = f"INSERT INTO {self.quote_table(schema, table)} ({columns}) VALUES ({placeholders})"

        affected, insert_id = await self._write(sql, list(data.values()), insert=True)
        return Envelope.ok(
            {"insertId": insert_id, "affectedRows": affected},
            ResultMeta(affected_rows=affected),
        )

    async def _update_rows(
        self,
        schema: str,
        table: str,
        data: dict[str, Any],
        where: str | None,
    ) -> Envelope:
        _require_table(table)
        _require_values(data)
        assignments = ", ".join(
            f"{self.quote_identifier(column)} = {self.placeholder(i)}"
            for i, column in enumerate(data, start=1)
        )
        sql = f"UPDATE {self.quote_table(schema, table)} SET {assignments}"
        if where:
            sql += f" WHERE {self.escape_where(where)}"

        affected, _ = await self._write(sql, list(data.values()))
        return Envelope.ok({"affectedRows": affected}, ResultMeta(affected_rows=affected))

    async def _delete_rows(self, schema: str, table: str, where: str | None) -> Envelope:
        _require_table(table)
        sql = f"DELETE FROM {self.quote_table(schema, table)}"
        if where:
            sql += f" WHERE {where}"

        affected, _ = await self._write(sql)
        return Envelope.ok({"affectedRows": affected}, ResultMeta(affected_rows=affected))

    async def _create_table(
        self,
        schema: str,
        table: str,
        columns: list[ColumnDefinition | dict[str, Any]],
    ) -> Envelope:
        _require_table(table)
        if not columns:
            raise InvalidArgumentError("At least one column is required", "columns")
        try:
            definitions = [ColumnDefinition.model_validate(column) for column in columns]
        except ValidationError as e:
            error = e.errors()[0]
            location = ".".join(str(part) for part in error["loc"])
            raise InvalidArgumentError(
                f"Invalid column definition at {location}: {error['msg']}", "columns"
            ) from e

        body = ", ".join(self.column_ddl(column) for column in definitions)
        await self._write(f"CREATE TABLE {self.quote_table(schema, table)} ({body})")
        return Envelope.ok({"table": table})

    async def _drop_table(self, schema: str, table: str) -> Envelope:
        _require_table(table)
        await self._write(f"DROP TABLE IF EXISTS {self.quote_table(schema, table)}")
        return Envelope.ok({"table": table})


def _require_table(table: str) -> None:
    if not table:
        raise InvalidArgumentError("table is required", "table")


def _require_values(data: Any) -> None:
    if not isinstance(data, dict) or not data:
        raise InvalidArgumentError("data must be a non-empty object", "data")
