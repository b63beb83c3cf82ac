"""Data source definition and live connection models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from datadock.adapters.datasource.types import SourceType

if TYPE_CHECKING:
    from datadock.adapters.datasource.base import BaseAdapter

MASK = "******"
SECRET_KEYS = frozenset({"password"})


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def mask_config(config: dict[str, Any]) -> dict[str, Any]:
    """Copy a config with secret values replaced by a mask."""
    return {
        key: MASK if key in SECRET_KEYS and value not in (None, "") else value
        for key, value in config.items()
    }


class CamelModel(BaseModel):
    """Mutable model persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConnectionStats(CamelModel):
    """Rolling connection statistics of a data source."""

    total_connections: int = 0
    failed_connections: int = 0
    avg_response_time_ms: float = 0.0

    def record_success(self, response_time_ms: float) -> None:
        """Count a successful connect and fold its time into the running average."""
        self.total_connections += 1
        n = self.total_connections
        self.avg_response_time_ms = (
            self.avg_response_time_ms * (n - 1) + response_time_ms
        ) / n

    def record_failure(self) -> None:
        """Count a failed connect."""
        self.failed_connections += 1


class DataSourceDefinition(CamelModel):
    """Named, persisted configuration for reaching one backend instance.

    ``connection_id`` is a weak reference into the connection registry; the
    registry alone owns the live session.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    type: SourceType
    config: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    is_default: bool = False
    status: Literal["connected", "disconnected"] = "disconnected"
    connection_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_connected: datetime | None = None
    connection_stats: ConnectionStats = Field(default_factory=ConnectionStats)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @model_validator(mode="after")
    def _check_connection_ref(self) -> DataSourceDefinition:
        if (self.status == "connected") != (self.connection_id is not None):
            raise ValueError("connectionId must be set exactly when status is connected")
        return self

    @property
    def is_connected(self) -> bool:
        """Whether the definition records a live connection."""
        return self.status == "connected" and self.connection_id is not None

    def mark_connected(self, connection_id: str) -> None:
        """Record a live connection."""
        now = utc_now()
        self.status = "connected"
        self.connection_id = connection_id
        self.last_connected = now
        self.updated_at = now

    def mark_disconnected(self) -> None:
        """Drop the live connection reference."""
        self.status = "disconnected"
        self.connection_id = None
        self.updated_at = utc_now()

    def to_record(self) -> dict[str, Any]:
        """Serialize for the catalog file."""
        return self.model_dump(by_alias=True, mode="json")

    def to_public(self) -> dict[str, Any]:
        """Serialize for callers, with secrets masked."""
        record = self.to_record()
        record["config"] = mask_config(self.config)
        return record


@dataclass
class ConnectionEntry:
    """A live session owned by the connection registry. Never persisted."""

    connection_id: str
    source_type: SourceType
    adapter: BaseAdapter
    config: dict[str, Any]
    created_at: datetime = field(default_factory=utc_now)

    def describe(self) -> dict[str, Any]:
        """Public view of the entry with secrets masked."""
        return {
            "connectionId": self.connection_id,
            "type": self.source_type.value,
            "config": mask_config(self.config),
            "createdAt": self.created_at.isoformat(),
        }
