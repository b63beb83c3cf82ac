"""MongoDB adapter implementation.

This module provides a MongoDB adapter built on motor. Queries are JSON
documents naming a collection plus one operation: a find filter, an
aggregation pipeline, a count filter or one of the insert, update and
delete commands. Identifier-shaped fields holding 24-character strings
are coerced to ObjectId before a filter reaches the server.
"""

from __future__ import annotations

import json
import time
from datetime import datetime
from typing import Any

import structlog

from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import (
    AccessDeniedError,
    AdapterError,
    AuthenticationFailedError,
    ConnectionFailedError,
    ConnectionLostError,
    ConnectionTimeoutError,
    InvalidArgumentError,
    QueryFailedError,
    QuerySyntaxError,
)
from datadock.adapters.datasource.registry import register_adapter
from datadock.adapters.datasource.type_mapping import normalize_type
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ColumnInfo,
    ConfigField,
    ConfigSchema,
    ConnectionTestResult,
    Envelope,
    IndexInfo,
    Pagination,
    QueryLanguage,
    ResultMeta,
    SourceCategory,
    SourceType,
    TableStructure,
)

logger = structlog.get_logger()

QUERY_HINT = (
    'Use {"collection": "users", "query": {"age": {"$gt": 18}}, "options": {"limit": 10}}, '
    '{"collection": "users", "pipeline": [...]}, '
    '{"collection": "users", "insertOne": {...}}, '
    '{"collection": "users", "updateMany": {"filter": {...}, "update": {"$set": {...}}}} '
    'or {"collection": "users", "deleteOne": {"_id": "..."}}'
)

READ_OPERATIONS = ("pipeline", "count")
WRITE_OPERATIONS = (
    "insertOne",
    "insertMany",
    "updateOne",
    "updateMany",
    "deleteOne",
    "deleteMany",
)
REQUEST_KEYS = frozenset(
    {"collection", "database", "query", "filter", "options", *READ_OPERATIONS, *WRITE_OPERATIONS}
)

MONGODB_CONFIG_SCHEMA = ConfigSchema(
    fields=[
        ConfigField(
            name="url",
            label="Connection URL",
            type="string",
            required=False,
            placeholder="mongodb://localhost:27017",
        ),
        ConfigField(name="host", label="Host", type="string", required=False),
        ConfigField(name="port", label="Port", type="integer", required=False, default_value=27017),
        ConfigField(name="database", label="Database", type="string", required=False),
    ],
    required_one_of=[["url", "host"]],
)

MONGODB_CAPABILITIES = AdapterCapabilities(
    supports_sql=False,
    query_language=QueryLanguage.MQL,
)


def is_id_field(field: str | None) -> bool:
    """Check whether a field name looks like an object identifier."""
    if not field:
        return False
    name = field.rsplit(".", 1)[-1]
    return name == "_id" or name.endswith("_id") or name.endswith("Id")


def coerce_object_ids(value: Any, field: str | None = None) -> Any:
    """Recursively convert 24-char strings under identifier fields to ObjectId.

    Operator keys (``$in``, ``$eq``, ...) keep the enclosing field name so
    ``{"_id": {"$in": [...]}}`` is coerced too. Strings that are not valid
    hex stay literal.
    """
    from bson import ObjectId
    from bson.errors import InvalidId

    if isinstance(value, dict):
        return {
            key: coerce_object_ids(item, field if key.startswith("$") else key)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [coerce_object_ids(item, field) for item in value]
    if isinstance(value, str) and len(value) == 24 and is_id_field(field):
        try:
            return ObjectId(value)
        except InvalidId:
            return value
    return value


def as_update_document(update: dict[str, Any]) -> dict[str, Any]:
    """Wrap a plain field mapping in ``$set``. Operator documents pass through."""
    if any(key.startswith("$") for key in update):
        return update
    return {"$set": update}


def serialize_value(value: Any) -> Any:
    """Convert MongoDB values to JSON-serializable format."""
    from bson import Decimal128, ObjectId, Timestamp

    if isinstance(value, ObjectId | Decimal128 | Timestamp):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [serialize_value(v) for v in value]
    else:
        return value


def bson_type_name(value: Any) -> str:
    """Name the BSON type of a decoded value."""
    from bson import Decimal128, ObjectId

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int" if -(2**31) <= value < 2**31 else "long"
    if isinstance(value, float):
        return "double"
    if isinstance(value, Decimal128):
        return "decimal128"
    if isinstance(value, ObjectId):
        return "objectId"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, bytes):
        return "binData"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "string"


def _load_json(value: Any, argument: str) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise InvalidArgumentError(f"{argument} must be valid JSON: {e.msg}", argument) from e
    return value


@register_adapter(
    source_type=SourceType.MONGODB,
    display_name="MongoDB",
    category=SourceCategory.DOCUMENT,
    icon="mongodb",
    description="Connect to MongoDB to browse collections and run JSON queries",
    capabilities=MONGODB_CAPABILITIES,
    config_schema=MONGODB_CONFIG_SCHEMA,
)
class MongoDBAdapter(BaseAdapter):
    """MongoDB database adapter."""

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize MongoDB adapter.

        Args:
            config: Configuration dictionary with:
                - url: Connection URL (or host/port)
                - database: Database used when no schema is given
                - connect_timeout: Server selection timeout in seconds (optional)
                - sample_size: Documents sampled to infer structure (optional)
        """
        super().__init__(config)
        self._client: Any = None
        self._database: str = config.get("database") or "test"

    @property
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        return SourceType.MONGODB

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        return MONGODB_CAPABILITIES

    def _build_url(self) -> str:
        if self._config.get("url"):
            return str(self._config["url"])
        host = self._config.get("host", "localhost")
        port = self._config.get("port") or 27017
        return f"mongodb://{host}:{port}"

    async def connect(self) -> None:
        """Establish connection to MongoDB and verify it with a ping."""
        try:
            from motor.motor_asyncio import AsyncIOMotorClient
        except ImportError as e:
            raise ConnectionFailedError(
                message="motor is not installed. Install with: pip install motor",
                details={"error": str(e)},
            ) from e

        timeout = self._config.get("connect_timeout", 10)
        try:
            self._client = AsyncIOMotorClient(
                self._build_url(),
                serverSelectionTimeoutMS=int(timeout * 1000),
            )
            await self._client.admin.command("ping")
            self._connected = True
        except Exception as e:
            # The client owns background monitors; close it so nothing leaks
            await self.disconnect()
            error_str = str(e).lower()
            if "authentication failed" in error_str or "auth failed" in error_str:
                raise AuthenticationFailedError(
                    message="MongoDB authentication failed",
                    details={"error": str(e)},
                ) from e
            elif "timeout" in error_str or "timed out" in error_str:
                raise ConnectionTimeoutError(
                    message="Connection to MongoDB timed out",
                    timeout_seconds=timeout,
                ) from e
            else:
                raise ConnectionFailedError(
                    message=f"Failed to connect to MongoDB: {str(e)}",
                    details={"error": str(e)},
                ) from e

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
        self._connected = False

    async def ping(self) -> ConnectionTestResult:
        """Test MongoDB liveness with the admin ping command."""
        start_time = time.time()
        try:
            if not self._connected or self._client is None:
                raise ConnectionLostError("Not connected to MongoDB")
            await self._client.admin.command("ping")
            info = await self._client.server_info()
            latency_ms = int((time.time() - start_time) * 1000)
            return ConnectionTestResult(
                success=True,
                latency_ms=latency_ms,
                server_version=f"MongoDB {info.get('version', 'Unknown')}",
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
        """Map pymongo errors onto the error taxonomy."""
        from pymongo.errors import ConnectionFailure, OperationFailure

        if isinstance(error, ConnectionFailure | OSError):
            return ConnectionLostError(details={"error": str(error)})
        if isinstance(error, OperationFailure):
            message = (error.details or {}).get("errmsg") or str(error)
            if error.code == 13:
                return AccessDeniedError(message=message)
            if error.code == 18:
                return AuthenticationFailedError(message=message)
            return QueryFailedError(message=message, details={"code": error.code})
        return QueryFailedError(message=str(error) or type(error).__name__)

    def _db(self, schema: str | None = None) -> Any:
        if self._client is None:
            raise ConnectionLostError("Not connected to MongoDB")
        return self._client[schema or self._database]

    async def _list_schemas(self) -> Envelope:
        names = await self._client.list_database_names()
        return Envelope.ok(sorted(names))

    async def _list_tables(self, schema: str) -> Envelope:
        names = await self._db(schema).list_collection_names()
        return Envelope.ok(sorted(names))

    async def _get_structure(self, schema: str, table: str) -> Envelope:
        coll = self._db(schema)[table]
        sample_size = int(self._config.get("sample_size", 50))
        docs = await coll.find({}).limit(sample_size).to_list(length=sample_size)

        field_types: dict[str, set[str]] = {}
        present: dict[str, int] = {}
        for doc in docs:
            for key, value in doc.items():
                field_types.setdefault(key, set()).add(bson_type_name(value))
                present[key] = present.get(key, 0) + 1

        columns = []
        for key, types in field_types.items():
            non_null = sorted(t for t in types if t != "null") or ["null"]
            native_type = non_null[0] if len(non_null) == 1 else "|".join(non_null)
            columns.append(
                ColumnInfo(
                    name=key,
                    native_type=native_type,
                    data_type=normalize_type(non_null[0], SourceType.MONGODB),
                    nullable="null" in types or present[key] < len(docs),
                    is_primary_key=key == "_id",
                )
            )

        indexes = [
            IndexInfo(
                name=name,
                columns=[field for field, _direction in info.get("key", [])],
                unique=bool(info.get("unique", False)) or name == "_id_",
            )
            for name, info in (await coll.index_information()).items()
        ]

        return Envelope.ok(
            TableStructure(
                columns=columns,
                indexes=indexes,
                row_count=await coll.count_documents({}),
            )
        )

    async def _execute(self, statement: str, params: Any = None) -> Envelope:
        try:
            request = json.loads(statement)
        except json.JSONDecodeError as e:
            raise QuerySyntaxError(
                message=f"Query must be valid JSON: {e.msg}",
                query=statement,
                suggestion=QUERY_HINT,
            ) from e
        if not isinstance(request, dict) or not request.get("collection"):
            raise QuerySyntaxError(
                message="Query must be a JSON object with a 'collection' field",
                query=statement,
                suggestion=QUERY_HINT,
            )

        unknown = sorted(set(request) - REQUEST_KEYS)
        if unknown:
            raise QuerySyntaxError(
                message=f"Unknown query field: {', '.join(unknown)}",
                query=statement,
                suggestion=QUERY_HINT,
            )
        operations = [key for key in (*READ_OPERATIONS, *WRITE_OPERATIONS) if key in request]
        if len(operations) > 1:
            raise QuerySyntaxError(
                message=f"Query names more than one operation: {', '.join(operations)}",
                query=statement,
                suggestion=QUERY_HINT,
            )

        coll = self._db(request.get("database"))[request["collection"]]

        if operations and operations[0] in WRITE_OPERATIONS:
            return await self._run_write(coll, operations[0], request[operations[0]], statement)
        if "pipeline" in request:
            pipeline = coerce_object_ids(request["pipeline"] or [])
            docs = await coll.aggregate(pipeline).to_list(length=None)
        elif "count" in request:
            count = await coll.count_documents(coerce_object_ids(request["count"] or {}))
            return Envelope.ok([{"count": count}], ResultMeta(row_count=1))
        else:
            query_filter = request.get("query", request.get("filter")) or {}
            if isinstance(params, dict):
                query_filter = {**query_filter, **params}
            options = request.get("options") or {}

            cursor = coll.find(coerce_object_ids(query_filter), options.get("projection"))
            if options.get("sort"):
                cursor = cursor.sort(list(options["sort"].items()))
            if options.get("skip"):
                cursor = cursor.skip(int(options["skip"]))
            if options.get("limit"):
                cursor = cursor.limit(int(options["limit"]))
            docs = await cursor.to_list(length=None)

        rows = [serialize_value(doc) for doc in docs]
        return Envelope.ok(rows, ResultMeta(row_count=len(rows)))

    async def _run_write(self, coll: Any, operation: str, body: Any, statement: str) -> Envelope:
        """Run one insert, update or delete command from a JSON query."""

        def malformed(expected: str) -> QuerySyntaxError:
            return QuerySyntaxError(
                message=f"{operation} expects {expected}",
                query=statement,
                suggestion=QUERY_HINT,
            )

        if operation == "insertOne":
            if not isinstance(body, dict):
                raise malformed("a document")
            result = await coll.insert_one(body)
            summary = {"insertedId": serialize_value(result.inserted_id)}
            affected = 1
        elif operation == "insertMany":
            if not isinstance(body, list) or not body or not all(isinstance(d, dict) for d in body):
                raise malformed("a non-empty array of documents")
            result = await coll.insert_many(body)
            summary = {"insertedIds": serialize_value(list(result.inserted_ids))}
            affected = len(result.inserted_ids)
        elif operation in ("updateOne", "updateMany"):
            if not isinstance(body, dict) or not isinstance(body.get("update"), dict):
                raise malformed('{"filter": {...}, "update": {...}}')
            if not body["update"]:
                raise malformed("a non-empty update document")
            query_filter = coerce_object_ids(body.get("filter", body.get("query")) or {})
            update = getattr(coll, "update_one" if operation == "updateOne" else "update_many")
            result = await update(
                query_filter,
                as_update_document(body["update"]),
                upsert=bool(body.get("upsert", False)),
            )
            summary = {
                "matchedCount": result.matched_count,
                "modifiedCount": result.modified_count,
            }
            if result.upserted_id is not None:
                summary["upsertedId"] = serialize_value(result.upserted_id)
            affected = result.modified_count
        else:
            if not isinstance(body, dict):
                raise malformed("a filter document")
            delete = getattr(coll, "delete_one" if operation == "deleteOne" else "delete_many")
            result = await delete(coerce_object_ids(body))
            summary = {"deletedCount": result.deleted_count}
            affected = result.deleted_count

        return Envelope.ok([summary], ResultMeta(affected_rows=affected, row_count=1))

    async def _paginate(
        self,
        schema: str,
        table: str,
        page: int,
        page_size: int,
        filter: Any,
        order_by: Any,
    ) -> Envelope:
        coll = self._db(schema)[table]
        query_filter = coerce_object_ids(_load_json(filter, "filter") or {})
        sort = _load_json(order_by, "order_by")

        total = await coll.count_documents(query_filter)
        cursor = coll.find(query_filter)
        if sort:
            cursor = cursor.sort(list(sort.items()))
        cursor = cursor.skip((page - 1) * page_size).limit(page_size)
        rows = [serialize_value(doc) for doc in await cursor.to_list(length=page_size)]

        return Envelope.ok(
            {"rows": rows, "pagination": Pagination.build(page, page_size, total)},
            ResultMeta(row_count=len(rows)),
        )

    async def _fetch_all(self, schema: str, table: str) -> list[dict[str, Any]]:
        docs = await self._db(schema)[table].find({}).to_list(length=None)
        return [serialize_value(doc) for doc in docs]

    def _flatten_row(self, row: dict[str, Any], prefix: str = "") -> dict[str, Any]:
        """Flatten nested documents into dotted keys; arrays are JSON-encoded."""
        flat: dict[str, Any] = {}
        for key, value in row.items():
            name = f"{prefix}{key}"
            if isinstance(value, dict):
                flat.update(self._flatten_row(value, f"{name}."))
            elif isinstance(value, list):
                flat[name] = json.dumps(value, default=str)
            else:
                flat[name] = value
        return flat

    async def _status(self) -> Envelope:
        db = self._db()
        server_status = await self._client.admin.command("serverStatus")
        db_stats = await db.command("dbstats")
        return Envelope.ok(
            {
                "serverStatus": serialize_value(server_status),
                "dbStats": serialize_value(db_stats),
                "collections": sorted(await db.list_collection_names()),
            }
        )

    async def insert_row(self, schema: str, table: str, data: dict[str, Any]) -> Envelope:
        """Insert one document."""
        return await self._run("insert_row", self._insert_row, schema, table, data)

    async def update_rows(
        self,
        schema: str,
        table: str,
        data: dict[str, Any] | str,
        where: dict[str, Any] | str | None = None,
    ) -> Envelope:
        """Update every document matching ``where``.

        ``data`` is an update document; a plain field mapping is applied
        with ``$set``.
        """
        return await self._run("update_rows", self._update_rows, schema, table, data, where)

    async def delete_rows(
        self, schema: str, table: str, where: dict[str, Any] | str | None = None
    ) -> Envelope:
        """Delete every document matching ``where``."""
        return await self._run("delete_rows", self._delete_rows, schema, table, where)

    async def create_index(
        self,
        schema: str,
        table: str,
        keys: dict[str, Any] | str,
        options: dict[str, Any] | None = None,
    ) -> Envelope:
        """Create an index from a ``{"field": 1}`` key document."""
        return await self._run("create_index", self._create_index, schema, table, keys, options)

    async def drop_index(self, schema: str, table: str, name: str) -> Envelope:
        """Drop an index by name."""
        return await self._run("drop_index", self._drop_index, schema, table, name)

    async def drop_collection(self, schema: str, table: str) -> Envelope:
        """Drop a collection."""
        return await self._run("drop_collection", self._drop_collection, schema, table)

    def _collection(self, schema: str, table: str) -> Any:
        if not table:
            raise InvalidArgumentError("collection is required", "table")
        return self._db(schema)[table]

    async def _insert_row(self, schema: str, table: str, data: dict[str, Any]) -> Envelope:
        coll = self._collection(schema, table)
        document = _load_json(data, "data")
        if not isinstance(document, dict) or not document:
            raise InvalidArgumentError("data must be a non-empty document", "data")
        result = await coll.insert_one(document)
        return Envelope.ok(
            {"insertId": serialize_value(result.inserted_id), "affectedRows": 1},
            ResultMeta(affected_rows=1),
        )

    async def _update_rows(
        self,
        schema: str,
        table: str,
        data: dict[str, Any] | str,
        where: dict[str, Any] | str | None,
    ) -> Envelope:
        coll = self._collection(schema, table)
        update = _load_json(data, "data")
        if not isinstance(update, dict) or not update:
            raise InvalidArgumentError("data must be a non-empty update document", "data")
        query_filter = coerce_object_ids(_load_json(where, "where") or {})
        result = await coll.update_many(query_filter, as_update_document(update))
        return Envelope.ok(
            {"affectedRows": result.modified_count, "matchedCount": result.matched_count},
            ResultMeta(affected_rows=result.modified_count),
        )

    async def _delete_rows(
        self, schema: str, table: str, where: dict[str, Any] | str | None
    ) -> Envelope:
        coll = self._collection(schema, table)
        query_filter = coerce_object_ids(_load_json(where, "where") or {})
        result = await coll.delete_many(query_filter)
        return Envelope.ok(
            {"affectedRows": result.deleted_count},
            ResultMeta(affected_rows=result.deleted_count),
        )

    async def _create_index(
        self,
        schema: str,
        table: str,
        keys: dict[str, Any] | str,
        options: dict[str, Any] | None,
    ) -> Envelope:
        coll = self._collection(schema, table)
        key_document = _load_json(keys, "keys")
        if not isinstance(key_document, dict) or not key_document:
            raise InvalidArgumentError('keys must be a document such as {"email": 1}', "keys")
        name = await coll.create_index(list(key_document.items()), **(options or {}))
        return Envelope.ok({"indexName": name})

    async def _drop_index(self, schema: str, table: str, name: str) -> Envelope:
        if not name:
            raise InvalidArgumentError("index name is required", "name")
        await self._collection(schema, table).drop_index(name)
        return Envelope.ok({"indexName": name})

    async def _drop_collection(self, schema: str, table: str) -> Envelope:
        self._collection(schema, table)
        await self._db(schema).drop_collection(table)
        return Envelope.ok({"collection": table})
