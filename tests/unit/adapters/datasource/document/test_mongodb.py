"""Tests for the MongoDB adapter."""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from datadock.adapters.datasource.document.mongodb import (
    MongoDBAdapter,
    as_update_document,
    bson_type_name,
    coerce_object_ids,
    is_id_field,
    serialize_value,
)
from datadock.adapters.datasource.errors import ErrorCode
from datadock.adapters.datasource.types import NormalizedType

OID = "507f1f77bcf86cd799439011"


def make_cursor(docs):
    """Build a motor-like cursor whose chainable methods return itself."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def collection():
    """A mocked collection."""
    return MagicMock()


@pytest.fixture
def adapter(collection):
    """A MongoDB adapter with a mocked client."""
    adapter = MongoDBAdapter({"url": "mongodb://localhost:27017", "database": "shop"})
    database = MagicMock()
    database.__getitem__.return_value = collection
    adapter._client = MagicMock()
    adapter._client.__getitem__.return_value = database
    adapter._connected = True
    return adapter


class TestObjectIdCoercion:
    """Tests for coerce_object_ids."""

    def test_id_field(self):
        """Verify a 24-hex string under _id becomes an ObjectId."""
        result = coerce_object_ids({"_id": OID})
        assert result == {"_id": ObjectId(OID)}

    def test_suffix_fields(self):
        """Verify *_id and *Id fields are coerced."""
        result = coerce_object_ids({"user_id": OID, "orderId": OID})
        assert isinstance(result["user_id"], ObjectId)
        assert isinstance(result["orderId"], ObjectId)

    def test_operator_keeps_field(self):
        """Verify operators such as $in inherit the enclosing field name."""
        result = coerce_object_ids({"_id": {"$in": [OID, OID]}})
        assert result["_id"]["$in"] == [ObjectId(OID), ObjectId(OID)]

    def test_non_id_field_untouched(self):
        """Verify other fields keep their strings."""
        assert coerce_object_ids({"name": OID}) == {"name": OID}

    def test_invalid_hex_stays_literal(self):
        """Verify invalid hex strings are not coerced."""
        bad = "zzzzzzzzzzzzzzzzzzzzzzzz"
        assert coerce_object_ids({"_id": bad}) == {"_id": bad}

    def test_dotted_field(self):
        """Verify the last path segment decides."""
        assert is_id_field("customer.account_id")
        assert not is_id_field("customer.name")
        assert not is_id_field(None)


class TestSerialization:
    """Tests for BSON value helpers."""

    def test_serialize_value(self):
        """Verify ObjectIds and datetimes become strings."""
        doc = {"_id": ObjectId(OID), "at": datetime(2024, 1, 2, 3, 4, 5), "n": [1]}
        assert serialize_value(doc) == {"_id": OID, "at": "2024-01-02T03:04:05", "n": [1]}

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            (True, "bool"),
            (5, "int"),
            (2**40, "long"),
            (1.5, "double"),
            ("x", "string"),
            ({"a": 1}, "object"),
            ([1], "array"),
        ],
    )
    def test_bson_type_name(self, value, expected):
        """Verify BSON type names."""
        assert bson_type_name(value) == expected


class TestExecute:
    """Tests for JSON query execution."""

    async def test_find_with_options(self, adapter, collection):
        """Verify find applies filter, sort and limit."""
        cursor = make_cursor([{"_id": ObjectId(OID), "name": "a"}])
        collection.find.return_value = cursor

        envelope = await adapter.execute(
            '{"collection": "users", "query": {"_id": "%s"}, '
            '"options": {"sort": {"name": 1}, "limit": 5}}' % OID
        )

        assert envelope.success
        assert envelope.data == [{"_id": OID, "name": "a"}]
        assert collection.find.call_args.args[0] == {"_id": ObjectId(OID)}
        cursor.sort.assert_called_once_with([("name", 1)])
        cursor.limit.assert_called_once_with(5)

    async def test_params_merge_into_filter(self, adapter, collection):
        """Verify dict params extend the filter."""
        collection.find.return_value = make_cursor([])
        await adapter.execute('{"collection": "users", "query": {"a": 1}}', {"b": 2})
        assert collection.find.call_args.args[0] == {"a": 1, "b": 2}

    async def test_aggregate(self, adapter, collection):
        """Verify pipelines run through aggregate."""
        collection.aggregate.return_value = make_cursor([{"_id": "x", "n": 2}])
        envelope = await adapter.execute(
            '{"collection": "orders", "pipeline": [{"$group": {"_id": "$status"}}]}'
        )
        assert envelope.data == [{"_id": "x", "n": 2}]

    async def test_count(self, adapter, collection):
        """Verify count queries return a single row."""
        collection.count_documents = AsyncMock(return_value=7)
        envelope = await adapter.execute('{"collection": "users", "count": {}}')
        assert envelope.data == [{"count": 7}]

    async def test_invalid_json(self, adapter):
        """Verify malformed JSON is a syntax error with a hint."""
        envelope = await adapter.execute("db.users.find({})")
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value
        assert envelope.suggestion

    async def test_missing_collection(self, adapter):
        """Verify the collection field is required."""
        envelope = await adapter.execute('{"query": {}}')
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value


class TestBrowsing:
    """Tests for structure, pagination and export."""

    async def test_get_structure(self, adapter, collection):
        """Verify fields are inferred from sampled documents."""
        collection.find.return_value = make_cursor(
            [{"_id": ObjectId(OID), "name": "a", "age": 3}, {"_id": ObjectId(OID), "name": None}]
        )
        collection.index_information = AsyncMock(
            return_value={"_id_": {"key": [("_id", 1)]}, "name_1": {"key": [("name", 1)]}}
        )
        collection.count_documents = AsyncMock(return_value=2)

        envelope = await adapter.get_structure("shop", "users")
        structure = envelope.data
        columns = {c.name: c for c in structure.columns}

        assert columns["_id"].is_primary_key is True
        assert columns["_id"].data_type == NormalizedType.STRING
        assert columns["name"].nullable is True
        assert columns["age"].nullable is True
        assert columns["age"].data_type == NormalizedType.INTEGER
        assert structure.indexes[0].unique is True
        assert structure.row_count == 2

    async def test_paginate_with_json_filter(self, adapter, collection):
        """Verify JSON filters and sorts are parsed."""
        cursor = make_cursor([{"name": "b"}])
        collection.find.return_value = cursor
        collection.count_documents = AsyncMock(return_value=11)

        envelope = await adapter.paginate(
            "shop", "users", page=2, page_size=10, filter='{"age": 3}', order_by='{"name": -1}'
        )

        assert envelope.data["pagination"].total_pages == 2
        collection.count_documents.assert_awaited_once_with({"age": 3})
        cursor.sort.assert_called_once_with([("name", -1)])
        cursor.skip.assert_called_once_with(10)

    async def test_paginate_bad_filter(self, adapter):
        """Verify invalid filter JSON is an invalid argument."""
        envelope = await adapter.paginate("shop", "users", filter="{nope")
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value

    async def test_export_csv_flattens(self, adapter, collection):
        """Verify nested documents become dotted columns."""
        collection.find.return_value = make_cursor(
            [{"_id": ObjectId(OID), "address": {"city": "Oslo"}, "tags": ["a", "b"]}]
        )
        envelope = await adapter.export_all("shop", "users", format="csv")
        lines = envelope.data.splitlines()
        assert lines[0] == "_id,address.city,tags"
        assert lines[1] == f'{OID},Oslo,"[""a"", ""b""]"'

    async def test_lost_connection(self, adapter, collection):
        """Verify driver connection failures become CONNECTION_LOST."""
        from pymongo.errors import AutoReconnect

        collection.find.side_effect = AutoReconnect("connection closed")
        envelope = await adapter.execute('{"collection": "users"}')
        assert envelope.code == ErrorCode.CONNECTION_LOST.value


class TestWriteCommands:
    """Tests for insert, update and delete commands in JSON queries."""

    async def test_insert_one(self, adapter, collection):
        """Verify insertOne inserts and reports the new id."""
        collection.insert_one = AsyncMock(return_value=SimpleNamespace(inserted_id=ObjectId(OID)))

        envelope = await adapter.execute('{"collection": "users", "insertOne": {"name": "a"}}')

        collection.insert_one.assert_awaited_once_with({"name": "a"})
        collection.find.assert_not_called()
        assert envelope.data == [{"insertedId": OID}]
        assert envelope.meta.affected_rows == 1

    async def test_insert_many(self, adapter, collection):
        """Verify insertMany reports every inserted id."""
        collection.insert_many = AsyncMock(
            return_value=SimpleNamespace(inserted_ids=[ObjectId(OID), 7])
        )

        envelope = await adapter.execute(
            '{"collection": "users", "insertMany": [{"name": "a"}, {"_id": 7}]}'
        )

        assert envelope.data == [{"insertedIds": [OID, 7]}]
        assert envelope.meta.affected_rows == 2

    async def test_insert_many_requires_documents(self, adapter, collection):
        """Verify insertMany rejects a non-array body."""
        collection.insert_many = AsyncMock()
        envelope = await adapter.execute('{"collection": "users", "insertMany": {"name": "a"}}')
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value
        collection.insert_many.assert_not_awaited()

    async def test_update_one_coerces_filter(self, adapter, collection):
        """Verify updateOne coerces ids in the filter and passes operators through."""
        collection.update_one = AsyncMock(
            return_value=SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        )

        envelope = await adapter.execute(
            '{"collection": "users", "updateOne": '
            '{"filter": {"_id": "%s"}, "update": {"$inc": {"visits": 1}}}}' % OID
        )

        collection.update_one.assert_awaited_once_with(
            {"_id": ObjectId(OID)}, {"$inc": {"visits": 1}}, upsert=False
        )
        assert envelope.data == [{"matchedCount": 1, "modifiedCount": 1}]
        assert envelope.meta.affected_rows == 1

    async def test_update_many_wraps_plain_fields(self, adapter, collection):
        """Verify a plain field mapping is applied with $set."""
        collection.update_many = AsyncMock(
            return_value=SimpleNamespace(matched_count=3, modified_count=2, upserted_id=None)
        )

        envelope = await adapter.execute(
            '{"collection": "users", "updateMany": '
            '{"filter": {"active": false}, "update": {"archived": true}, "upsert": true}}'
        )

        collection.update_many.assert_awaited_once_with(
            {"active": False}, {"$set": {"archived": True}}, upsert=True
        )
        assert envelope.meta.affected_rows == 2

    async def test_update_requires_update_document(self, adapter):
        """Verify an update without an update document is a syntax error."""
        envelope = await adapter.execute(
            '{"collection": "users", "updateMany": {"filter": {}}}'
        )
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value
        assert envelope.suggestion

    async def test_delete_one(self, adapter, collection):
        """Verify deleteOne uses the body as its filter."""
        collection.delete_one = AsyncMock(return_value=SimpleNamespace(deleted_count=1))

        envelope = await adapter.execute(
            '{"collection": "users", "deleteOne": {"_id": "%s"}}' % OID
        )

        collection.delete_one.assert_awaited_once_with({"_id": ObjectId(OID)})
        assert envelope.data == [{"deletedCount": 1}]
        assert envelope.meta.affected_rows == 1

    async def test_delete_many(self, adapter, collection):
        """Verify deleteMany reports the deleted count."""
        collection.delete_many = AsyncMock(return_value=SimpleNamespace(deleted_count=4))
        envelope = await adapter.execute('{"collection": "users", "deleteMany": {"age": 3}}')
        collection.delete_many.assert_awaited_once_with({"age": 3})
        assert envelope.meta.affected_rows == 4

    async def test_unknown_operation_rejected(self, adapter, collection):
        """Verify unknown top-level fields fail instead of running a find."""
        envelope = await adapter.execute('{"collection": "users", "replaceOne": {"a": 1}}')

        assert envelope.success is False
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value
        assert "replaceOne" in envelope.error
        assert envelope.suggestion
        collection.find.assert_not_called()

    async def test_two_operations_rejected(self, adapter, collection):
        """Verify a query may name only one operation."""
        envelope = await adapter.execute(
            '{"collection": "users", "count": {}, "deleteMany": {}}'
        )
        assert envelope.code == ErrorCode.QUERY_SYNTAX_ERROR.value

    def test_as_update_document(self):
        """Verify operator documents are left alone."""
        assert as_update_document({"$set": {"a": 1}}) == {"$set": {"a": 1}}
        assert as_update_document({"a": 1}) == {"$set": {"a": 1}}


class TestDocumentOperations:
    """Tests for document CRUD, index management and status."""

    async def test_insert_row(self, adapter, collection):
        """Verify a single document insert."""
        collection.insert_one = AsyncMock(return_value=SimpleNamespace(inserted_id=ObjectId(OID)))
        envelope = await adapter.insert_row("shop", "users", {"name": "a"})
        assert envelope.data == {"insertId": OID, "affectedRows": 1}

    async def test_update_rows_with_json_filter(self, adapter, collection):
        """Verify JSON text filters are parsed and ids coerced."""
        collection.update_many = AsyncMock(
            return_value=SimpleNamespace(matched_count=1, modified_count=1)
        )

        envelope = await adapter.update_rows(
            "shop", "users", {"name": "b"}, where='{"_id": "%s"}' % OID
        )

        collection.update_many.assert_awaited_once_with(
            {"_id": ObjectId(OID)}, {"$set": {"name": "b"}}
        )
        assert envelope.data == {"affectedRows": 1, "matchedCount": 1}

    async def test_update_rows_requires_data(self, adapter):
        """Verify an empty update is rejected."""
        envelope = await adapter.update_rows("shop", "users", {})
        assert envelope.code == ErrorCode.INVALID_ARGUMENT.value

    async def test_delete_rows(self, adapter, collection):
        """Verify matching documents are deleted."""
        collection.delete_many = AsyncMock(return_value=SimpleNamespace(deleted_count=2))
        envelope = await adapter.delete_rows("shop", "users", {"age": {"$lt": 18}})
        assert envelope.meta.affected_rows == 2

    async def test_create_index(self, adapter, collection):
        """Verify key documents become ordered key pairs."""
        collection.create_index = AsyncMock(return_value="email_1")

        envelope = await adapter.create_index(
            "shop", "users", '{"email": 1}', options={"unique": True}
        )

        collection.create_index.assert_awaited_once_with([("email", 1)], unique=True)
        assert envelope.data == {"indexName": "email_1"}

    async def test_drop_index(self, adapter, collection):
        """Verify indexes are dropped by name."""
        collection.drop_index = AsyncMock()
        envelope = await adapter.drop_index("shop", "users", "email_1")
        collection.drop_index.assert_awaited_once_with("email_1")
        assert envelope.success

    async def test_drop_collection(self, adapter):
        """Verify collections are dropped through the database."""
        database = adapter._client["shop"]
        database.drop_collection = AsyncMock()
        envelope = await adapter.drop_collection("shop", "users")
        database.drop_collection.assert_awaited_once_with("users")
        assert envelope.data == {"collection": "users"}

    async def test_status(self, adapter):
        """Verify server and database statistics are serialized."""
        adapter._client.admin.command = AsyncMock(
            return_value={"version": "7.0.1", "localTime": datetime(2024, 1, 2)}
        )
        database = adapter._client["shop"]
        database.command = AsyncMock(return_value={"db": "shop", "collections": 2})
        database.list_collection_names = AsyncMock(return_value=["users", "orders"])

        envelope = await adapter.status()

        adapter._client.admin.command.assert_awaited_once_with("serverStatus")
        database.command.assert_awaited_once_with("dbstats")
        assert envelope.data == {
            "serverStatus": {"version": "7.0.1", "localTime": "2024-01-02T00:00:00"},
            "dbStats": {"db": "shop", "collections": 2},
            "collections": ["orders", "users"],
        }
