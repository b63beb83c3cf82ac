"""Redis adapter implementation.

Redis has no query language: a submitted script is a list of commands,
one per line. Every command produces its own result entry tagged with the
command text, so a batch can partially succeed. Only a dropped connection
aborts the batch.
"""

from __future__ import annotations

import shlex
import time
from typing import Any

import structlog

from datadock.adapters.datasource.base import BaseAdapter
from datadock.adapters.datasource.errors import (
    AdapterError,
    AuthenticationFailedError,
    ConnectionFailedError,
    ConnectionLostError,
    ConnectionTimeoutError,
    InvalidArgumentError,
    QueryFailedError,
    QuerySyntaxError,
    UnsupportedCommandError,
)
from datadock.adapters.datasource.registry import register_adapter
from datadock.adapters.datasource.types import (
    AdapterCapabilities,
    ConfigField,
    ConfigSchema,
    ConnectionTestResult,
    Envelope,
    Pagination,
    QueryLanguage,
    ResultMeta,
    SourceCategory,
    SourceType,
    TableStructure,
)

logger = structlog.get_logger()

SUPPORTED_COMMANDS = frozenset(
    {
        # keys and strings
        "get", "set", "del", "exists", "keys", "type", "expire", "ttl",
        "incr", "decr", "incrby", "decrby", "append", "strlen",
        # hashes
        "hget", "hset", "hdel", "hgetall", "hlen", "hexists", "hkeys", "hvals",
        # lists
        "lpush", "rpush", "lpop", "rpop", "llen", "lrange", "lindex",
        # sets
        "sadd", "srem", "smembers", "scard", "sismember",
        # sorted sets
        "zadd", "zrem", "zrange", "zcard", "zscore",
    }
)  # fmt: skip

REDIS_CONFIG_SCHEMA = ConfigSchema(
    fields=[
        ConfigField(
            name="host",
            label="Host",
            type="string",
            required=True,
            placeholder="localhost",
        ),
        ConfigField(name="port", label="Port", type="integer", required=False, default_value=6379),
        ConfigField(name="password", label="Password", type="secret", required=False),
        ConfigField(name="db", label="Database index", type="integer", required=False, default_value=0),
    ],
)

REDIS_CAPABILITIES = AdapterCapabilities(
    supports_sql=False,
    supports_structure=False,
    query_language=QueryLanguage.COMMAND,
)


def to_jsonable(value: Any) -> Any:
    """Convert redis replies into JSON-friendly values."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, set):
        return sorted(to_jsonable(v) for v in value)
    if isinstance(value, list | tuple):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {to_jsonable(k): to_jsonable(v) for k, v in value.items()}
    return value


@register_adapter(
    source_type=SourceType.REDIS,
    display_name="Redis",
    category=SourceCategory.KEY_VALUE,
    icon="redis",
    description="Connect to Redis to browse keys and run command batches",
    capabilities=REDIS_CAPABILITIES,
    config_schema=REDIS_CONFIG_SCHEMA,
)
class RedisAdapter(BaseAdapter):
    """Redis key-value adapter."""

    def __init__(self, config: dict[str, Any]) -> None:
        """Initialize Redis adapter.

        Args:
            config: Configuration dictionary with:
                - host: Server hostname
                - port: Server port (optional, default 6379)
                - password: Password (optional)
                - db: Logical database index (``database`` is accepted too)
                - scan_count: SCAN batch hint used when listing keys (optional)
        """
        super().__init__(config)
        self._client: Any = None
        db = config.get("db", config.get("database"))
        self._db = int(db) if db not in (None, "") else 0

    @property
    def source_type(self) -> SourceType:
        """Get the source type for this adapter."""
        return SourceType.REDIS

    @property
    def capabilities(self) -> AdapterCapabilities:
        """Get the capabilities of this adapter."""
        return REDIS_CAPABILITIES

    async def connect(self) -> None:
        """Open a Redis client and verify it with PING."""
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ConnectionFailedError(
                message="redis is not installed. Install with: pip install redis",
                details={"error": str(e)},
            ) from e

        timeout = self._config.get("connect_timeout", 10)
        try:
            self._client = aioredis.Redis(
                host=self._config.get("host", "localhost"),
                port=int(self._config.get("port") or 6379),
                password=self._config.get("password") or None,
                db=self._db,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )
            await self._client.ping()
            self._connected = True
        except Exception as e:
            await self.disconnect()
            error_str = str(e).lower()
            if "auth" in error_str or "password" in error_str:
                raise AuthenticationFailedError(
                    message="Redis authentication failed",
                    details={"error": str(e)},
                ) from e
            elif "timeout" in error_str or "timed out" in error_str:
                raise ConnectionTimeoutError(
                    message="Connection to Redis timed out",
                    timeout_seconds=timeout,
                ) from e
            else:
                raise ConnectionFailedError(
                    message=f"Failed to connect to Redis: {str(e)}",
                    details={"error": str(e)},
                ) from e

    async def disconnect(self) -> None:
        """Close the Redis client."""
        client, self._client = self._client, None
        self._connected = False
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.warning("redis_close_failed", error=str(e))

    async def ping(self) -> ConnectionTestResult:
        """Test Redis liveness with PING."""
        start_time = time.time()
        try:
            if not self._connected or self._client is None:
                raise ConnectionLostError("Not connected to Redis")
            await self._client.ping()
            info = await self._client.info("server")
            latency_ms = int((time.time() - start_time) * 1000)
            return ConnectionTestResult(
                success=True,
                latency_ms=latency_ms,
                server_version=f"Redis {info.get('redis_version', 'Unknown')}",
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
        """Map redis-py errors onto the error taxonomy."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import TimeoutError as RedisTimeoutError

        if isinstance(error, RedisConnectionError | RedisTimeoutError | OSError):
            return ConnectionLostError(details={"error": str(error)})
        return QueryFailedError(message=str(error) or type(error).__name__)

    async def _execute(self, statement: str, params: Any = None) -> Envelope:
        from redis.exceptions import ResponseError

        lines = [line.strip() for line in (statement or "").splitlines()]
        lines = [line for line in lines if line]
        if not lines:
            raise InvalidArgumentError("No command to execute", "statement")

        results: list[dict[str, Any]] = []
        for line in lines:
            try:
                tokens = shlex.split(line)
            except ValueError as e:
                results.append(
                    self._command_failure(line, line.split()[0], QuerySyntaxError(str(e), line))
                )
                continue

            command = tokens[0].lower()
            if command not in SUPPORTED_COMMANDS:
                results.append(
                    self._command_failure(line, command, UnsupportedCommandError(tokens[0]))
                )
                continue

            try:
                reply = await self._client.execute_command(*tokens)
            except ResponseError as e:
                results.append(self._command_failure(line, command, QueryFailedError(str(e), line)))
                continue
            except Exception as e:
                error = self._translate_error(e)
                if isinstance(error, ConnectionLostError):
                    raise error from e
                results.append(self._command_failure(line, command, error))
                continue

            results.append(
                {
                    "success": True,
                    "data": to_jsonable(reply),
                    "command": command,
                    "originalCommand": line,
                }
            )

        return Envelope.ok(results, ResultMeta(row_count=len(results)))

    @staticmethod
    def _command_failure(line: str, command: str, error: AdapterError) -> dict[str, Any]:
        return {
            "success": False,
            "error": error.message,
            "code": error.code.value,
            "command": command.lower(),
            "originalCommand": line,
        }

    async def _list_schemas(self) -> Envelope:
        info = await self._client.info("keyspace")
        indexes = {self._db}
        for name in info:
            if name.startswith("db") and name[2:].isdigit():
                indexes.add(int(name[2:]))
        return Envelope.ok([f"db{index}" for index in sorted(indexes)])

    async def _list_tables(self, schema: str) -> Envelope:
        return Envelope.ok([])

    async def _get_structure(self, schema: str, table: str) -> Envelope:
        return Envelope.ok(TableStructure())

    async def _scan_keys(self, pattern: str) -> list[str]:
        count = int(self._config.get("scan_count", 100))
        keys = [key async for key in self._client.scan_iter(match=pattern, count=count)]
        return sorted(set(keys))

    async def _describe_key(self, key: str) -> dict[str, Any]:
        key_type = await self._client.type(key)
        ttl = await self._client.ttl(key)
        if key_type == "string":
            value: Any = await self._client.get(key)
        elif key_type == "hash":
            value = await self._client.hgetall(key)
        elif key_type == "list":
            value = await self._client.lrange(key, 0, -1)
        elif key_type == "set":
            value = await self._client.smembers(key)
        elif key_type == "zset":
            value = await self._client.zrange(key, 0, -1, withscores=True)
        else:
            value = None
        return {"key": key, "type": key_type, "ttl": ttl, "value": to_jsonable(value)}

    async def _paginate(
        self,
        schema: str,
        table: str,
        page: int,
        page_size: int,
        filter: Any,
        order_by: Any,
    ) -> Envelope:
        keys = await self._scan_keys(filter or "*")
        start = (page - 1) * page_size
        rows = [await self._describe_key(key) for key in keys[start : start + page_size]]
        return Envelope.ok(
            {"rows": rows, "pagination": Pagination.build(page, page_size, len(keys))},
            ResultMeta(row_count=len(rows)),
        )

    async def _fetch_all(self, schema: str, table: str) -> list[dict[str, Any]]:
        return [await self._describe_key(key) for key in await self._scan_keys(table or "*")]

    async def _status(self) -> Envelope:
        info = await self._client.info()
        return Envelope.ok(
            {
                "info": to_jsonable(info),
                "dbsize": await self._client.dbsize(),
                "slowlog": to_jsonable(await self._client.slowlog_get(10)),
            }
        )
