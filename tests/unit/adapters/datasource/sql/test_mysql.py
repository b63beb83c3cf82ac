"""Tests for the MySQL adapter."""

import sys
from unittest.mock import AsyncMock, patch

import pytest

from datadock.adapters.datasource.errors import ConnectionFailedError, ErrorCode
from datadock.adapters.datasource.sql.mysql import MySQLAdapter


class OperationalError(Exception):
    """Stand-in for a pymysql error carrying (errno, message)."""


class InterfaceError(Exception):
    """Stand-in for pymysql's closed-socket error."""


@pytest.fixture
def adapter():
    """A MySQL adapter that believes it is connected."""
    adapter = MySQLAdapter({"host": "localhost", "user": "root", "password": ""})
    adapter._connected = True
    return adapter


class TestSplitStatements:
    """Tests for script splitting."""

    def test_splits_on_semicolons(self, adapter):
        """Verify top-level semicolons split statements."""
        assert adapter.split_statements("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_ignores_semicolons_in_strings(self, adapter):
        """Verify quoted semicolons do not split."""
        statements = adapter.split_statements("SELECT 'a;b'; SELECT `x;y` FROM t")
        assert statements == ["SELECT 'a;b'", "SELECT `x;y` FROM t"]

    def test_drops_empty_segments(self, adapter):
        """Verify empty statements are dropped."""
        assert adapter.split_statements(";;SELECT 1;;") == ["SELECT 1"]

    def test_schema_selector(self, adapter):
        """Verify USE statements are recognized."""
        assert adapter.is_schema_selector("USE shop")
        assert adapter.is_schema_selector("use `shop`")
        assert adapter.is_schema_selector("-- pick a schema\nUSE shop")
        assert adapter.is_schema_selector("/* setup */ USE shop")
        assert not adapter.is_schema_selector("SELECT * FROM users")


class TestExecute:
    """Tests for statement execution."""

    async def test_last_result_surfaces(self, adapter):
        """Verify only the last statement's rows are returned."""
        adapter._run_statement = AsyncMock(
            side_effect=[([{"a": 1}], 0), ([{"b": 2}, {"b": 3}], 0)]
        )
        envelope = await adapter.execute("SELECT 1 AS a; SELECT b FROM t")

        assert envelope.success
        assert envelope.data == [{"b": 2}, {"b": 3}]
        assert envelope.meta.row_count == 2
        assert envelope.meta.execution_time_ms is not None

    async def test_use_changes_schema(self, adapter):
        """Verify USE runs as a side effect before the query."""
        adapter._select_schema = AsyncMock()
        adapter._run_statement = AsyncMock(return_value=([{"id": 1}], 0))

        envelope = await adapter.execute("USE shop; SELECT * FROM users")

        adapter._select_schema.assert_awaited_once_with("USE shop")
        adapter._run_statement.assert_awaited_once_with("SELECT * FROM users", None)
        assert envelope.data == [{"id": 1}]

    async def test_params_bind_to_last_statement(self, adapter):
        """Verify parameters reach only the final statement."""
        adapter._run_statement = AsyncMock(return_value=([], 1))
        await adapter.execute("SET @x = 1; UPDATE t SET a = %s", [5])

        calls = adapter._run_statement.await_args_list
        assert calls[0].args == ("SET @x = 1", None)
        assert calls[1].args == ("UPDATE t SET a = %s", [5])

    async def test_affected_rows(self, adapter):
        """Verify write statements report affected rows."""
        adapter._run_statement = AsyncMock(return_value=([], 3))
        envelope = await adapter.execute("DELETE FROM t")
        assert envelope.meta.affected_rows == 3

    async def test_no_database_selected(self, adapter):
        """Verify 1046 becomes NO_DATABASE_SELECTED with the statement attached."""
        adapter._run_statement = AsyncMock(
            side_effect=OperationalError(1046, "No database selected")
        )
        envelope = await adapter.execute("SELECT * FROM users")

        assert envelope.success is False
        assert envelope.code == ErrorCode.NO_DATABASE_SELECTED.value
        assert envelope.sql == "SELECT * FROM users"
        assert envelope.error.startswith("Please select a database first")

    async def test_failure_stops_script(self, adapter):
        """Verify statements after a failure do not run."""
        adapter._run_statement = AsyncMock(
            side_effect=[([], 1), OperationalError(1064, "syntax"), ([], 1)]
        )
        envelope = await adapter.execute(
            "INSERT INTO t VALUES (1); SELEC 2; INSERT INTO t VALUES (3)"
        )

        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value
        assert envelope.sql == "SELEC 2"
        assert adapter._run_statement.await_count == 2

    async def test_lost_connection(self, adapter):
        """Verify 2013 becomes CONNECTION_LOST."""
        adapter._run_statement = AsyncMock(
            side_effect=OperationalError(2013, "Lost connection to MySQL server")
        )
        envelope = await adapter.execute("SELECT 1")
        assert envelope.code == ErrorCode.CONNECTION_LOST.value

    async def test_closed_socket(self, adapter):
        """Verify InterfaceError becomes CONNECTION_LOST."""
        adapter._run_statement = AsyncMock(side_effect=InterfaceError(0, ""))
        envelope = await adapter.execute("SELECT 1")
        assert envelope.code == ErrorCode.CONNECTION_LOST.value

    async def test_missing_table(self, adapter):
        """Verify 1146 becomes TABLE_NOT_FOUND."""
        adapter._run_statement = AsyncMock(
            side_effect=OperationalError(1146, "Table 'shop.nope' doesn't exist")
        )
        envelope = await adapter.execute("SELECT * FROM nope")
        assert envelope.code == ErrorCode.TABLE_NOT_FOUND.value

    async def test_empty_statement(self, adapter):
        """Verify an empty script is an invalid argument."""
        envelope = await adapter.execute("   ")
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value

    async def test_not_connected(self):
        """Verify operations on a closed adapter report a lost connection."""
        adapter = MySQLAdapter({"host": "localhost", "user": "root", "password": ""})
        envelope = await adapter.execute("SELECT 1")
        assert envelope.code == ErrorCode.CONNECTION_LOST.value


class TestBrowsing:
    """Tests for pagination, export and explain."""

    async def test_paginate(self, adapter):
        """Verify a page of rows with totals."""
        adapter._fetch_rows = AsyncMock(side_effect=[[{"total": 21}], [{"id": 11}]])

        envelope = await adapter.paginate("shop", "users", page=2, page_size=10)

        assert envelope.data["pagination"].total_pages == 3
        assert envelope.data["rows"] == [{"id": 11}]
        page_sql = adapter._fetch_rows.await_args_list[1].args[0]
        assert page_sql == "SELECT * FROM `shop`.`users` LIMIT 10 OFFSET 10"

    async def test_paginate_rejects_bad_page(self, adapter):
        """Verify page numbers start at 1."""
        envelope = await adapter.paginate("shop", "users", page=0)
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value

    async def test_export_csv(self, adapter):
        """Verify CSV export has a header and JSON-encoded nested values."""
        adapter._fetch_rows = AsyncMock(
            return_value=[{"id": 1, "tags": ["a"]}, {"id": 2, "note": None}]
        )
        envelope = await adapter.export_all("shop", "users", format="csv")
        lines = envelope.data.splitlines()
        assert lines[0] == "id,tags,note"
        assert lines[1] == '1,"[""a""]",'
        assert lines[2] == "2,,"

    async def test_export_unsupported_format(self, adapter):
        """Verify unknown formats are rejected."""
        envelope = await adapter.export_all("shop", "users", format="xml")
        assert envelope.code == ErrorCode.UNSUPPORTED_FORMAT.value

    async def test_explain_rejects_non_select(self, adapter):
        """Verify only SELECT can be explained."""
        envelope = await adapter.explain("DELETE FROM users")
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value


class TestConnect:
    """Tests for connection handling."""

    def test_quote_identifier(self, adapter):
        """Verify backticks are escaped."""
        assert adapter.quote_identifier("we`ird") == "`we``ird`"

    async def test_driver_missing(self):
        """Verify a missing driver is a connection failure."""
        adapter = MySQLAdapter({"host": "localhost", "user": "root", "password": ""})
        with patch.dict(sys.modules, {"aiomysql": None}):
            with pytest.raises(ConnectionFailedError, match="aiomysql is not installed"):
                await adapter.connect()
        assert adapter.is_connected is False


class TestWrites:
    """Tests for row writes, table DDL and server status."""

    async def test_insert_row(self, adapter):
        """Verify inserts bind values and report the generated id."""
        adapter._run_insert = AsyncMock(return_value=(1, 42))

        envelope = await adapter.insert_row("shop", "users", {"name": "a", "age": 3})

        adapter._run_insert.assert_awaited_once_with(
            "INSERT INTO `shop`.`users` (`name`, `age`) VALUES (%s, %s)", ["a", 3]
        )
        assert envelope.data == {"insertId": 42, "affectedRows": 1}
        assert envelope.meta.affected_rows == 1

    async def test_insert_requires_data(self, adapter):
        """Verify an empty row is rejected before reaching the server."""
        adapter._run_insert = AsyncMock()
        envelope = await adapter.insert_row("shop", "users", {})
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value
        adapter._run_insert.assert_not_awaited()

    async def test_update_escapes_where(self, adapter):
        """Verify percent signs in the WHERE text survive parameter binding."""
        adapter._run_statement = AsyncMock(return_value=([], 2))

        envelope = await adapter.update_rows(
            "shop", "users", {"name": "b"}, where="email LIKE '%@x.org'"
        )

        adapter._run_statement.assert_awaited_once_with(
            "UPDATE `shop`.`users` SET `name` = %s WHERE email LIKE '%%@x.org'", ["b"]
        )
        assert envelope.data == {"affectedRows": 2}

    async def test_delete_attaches_statement(self, adapter):
        """Verify failed writes carry the statement that failed."""
        adapter._run_statement = AsyncMock(
            side_effect=OperationalError(1146, "Table 'shop.nope' doesn't exist")
        )

        envelope = await adapter.delete_rows("shop", "nope", where="id = 1")

        assert envelope.code == ErrorCode.TABLE_NOT_FOUND.value
        assert envelope.sql == "DELETE FROM `shop`.`nope` WHERE id = 1"

    async def test_create_table(self, adapter):
        """Verify column definitions render to MySQL DDL."""
        adapter._run_statement = AsyncMock(return_value=([], 0))

        envelope = await adapter.create_table(
            "shop",
            "users",
            [
                {"name": "id", "type": "INT", "autoIncrement": True, "primaryKey": True},
                {
                    "name": "email",
                    "type": "VARCHAR",
                    "length": 255,
                    "nullable": False,
                    "unique": True,
                },
                {"name": "created", "type": "DATETIME", "defaultValue": "CURRENT_TIMESTAMP"},
            ],
        )

        assert envelope.success
        adapter._run_statement.assert_awaited_once_with(
            "CREATE TABLE `shop`.`users` (`id` INT AUTO_INCREMENT PRIMARY KEY, "
            "`email` VARCHAR(255) NOT NULL UNIQUE, "
            "`created` DATETIME DEFAULT CURRENT_TIMESTAMP)",
            None,
        )

    async def test_create_table_rejects_bad_type(self, adapter):
        """Verify column types must be plain type names."""
        adapter._run_statement = AsyncMock()
        envelope = await adapter.create_table(
            "shop", "users", [{"name": "id", "type": "INT); DROP TABLE x; --"}]
        )
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value
        adapter._run_statement.assert_not_awaited()

    async def test_drop_table(self, adapter):
        """Verify drop tolerates a missing table."""
        adapter._run_statement = AsyncMock(return_value=([], 0))
        await adapter.drop_table("shop", "users")
        adapter._run_statement.assert_awaited_once_with(
            "DROP TABLE IF EXISTS `shop`.`users`", None
        )

    async def test_status(self, adapter):
        """Verify status and variables become name to value maps."""
        adapter._fetch_rows = AsyncMock(
            side_effect=[
                [{"Variable_name": "Uptime", "Value": "120"}],
                [{"Variable_name": "version", "Value": "8.0.36"}],
                [{"Id": 5, "User": "root", "Command": "Query"}],
            ]
        )

        envelope = await adapter.status()

        assert envelope.data == {
            "status": {"Uptime": "120"},
            "variables": {"version": "8.0.36"},
            "processList": [{"Id": 5, "User": "root", "Command": "Query"}],
        }
