"""Pydantic models for the MCP registry API, the local cache file and sync progress."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

# Key under ``_meta`` holding registry lifecycle metadata
OFFICIAL_META_KEY = "io.modelcontextprotocol.registry/official"

# How a never-synced timestamp is written to disk
ZERO_TIMESTAMP = "0001-01-01T00:00:00Z"


def format_rfc3339(value: datetime) -> str:
    """Format a timestamp as RFC3339 in UTC with whole seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class SyncMode(str, Enum):
    """How a sync walks the remote catalog."""

    COLD = "cold"
    INCREMENTAL = "incremental"


class SyncState(str, Enum):
    """Lifecycle of the background sync coordinator."""

    NOT_STARTED = "not-started"
    SYNCING = "syncing"
    IDLE = "idle"


class Repository(BaseModel):
    """Source code repository metadata."""

    url: str = Field("", description="Repository URL")
    source: str = Field("", description="Hosting service (e.g., github)")
    id: str = Field("", description="Hosting service repository ID")
    subfolder: str = Field("", description="Path of the server inside the repository")

    model_config = {"extra": "allow"}


class ServerJSON(BaseModel):
    """Server definition as published to the registry.

    ``packages`` and ``remotes`` are opaque to the cache and kept as raw
    JSON objects.
    """

    schema_url: str = Field("", alias="$schema", description="JSON schema URL")
    name: str = Field("", description="Reverse-DNS server name (e.g., io.github.user/server)")
    description: str = Field("", description="Human-readable description")
    version: str = Field("", description="Published version")
    title: str = Field("", description="Optional display title")
    website_url: str = Field("", alias="websiteUrl", description="Project website")
    icons: list[dict[str, Any]] = Field(default_factory=list)
    repository: Repository | None = Field(None, description="Source repository")
    packages: list[dict[str, Any]] = Field(
        default_factory=list, description="Package-backed install methods (npm, pypi, oci)"
    )
    remotes: list[dict[str, Any]] = Field(
        default_factory=list, description="Remote transports (streamable-http, sse)"
    )

    @field_validator("icons", "packages", "remotes", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    model_config = {"populate_by_name": True, "extra": "allow"}


class RegistryExtensions(BaseModel):
    """Registry-managed lifecycle metadata."""

    status: str = Field("", description="Publication status (active, deprecated, deleted)")
    published_at: datetime | None = Field(None, alias="publishedAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")
    is_latest: bool = Field(False, alias="isLatest")

    model_config = {"populate_by_name": True, "extra": "allow"}


class ResponseMeta(BaseModel):
    """The ``_meta`` block of a registry server response."""

    official: RegistryExtensions | None = Field(None, alias=OFFICIAL_META_KEY)

    model_config = {"populate_by_name": True, "extra": "allow"}


class ServerRecord(BaseModel):
    """One catalog entry: a server definition plus registry metadata.

    ``name`` is the primary key; the cache holds at most one record per name.
    """

    server: ServerJSON
    meta: ResponseMeta = Field(default_factory=ResponseMeta, alias="_meta")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def name(self) -> str:
        return self.server.name

    def matches(self, needle: str) -> bool:
        """Check a lower-cased needle against name, title and description."""
        return (
            needle in self.server.name.lower()
            or needle in self.server.title.lower()
            or needle in self.server.description.lower()
        )


class Metadata(BaseModel):
    """Pagination information of a list response."""

    count: int = 0
    next_cursor: str = Field("", alias="nextCursor")

    @field_validator("next_cursor", mode="before")
    @classmethod
    def none_as_last_page(cls, v: Any) -> Any:
        return "" if v is None else v

    model_config = {"populate_by_name": True}


class ServerListResponse(BaseModel):
    """One page of ``GET /v0.1/servers``."""

    servers: list[ServerRecord] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=Metadata)

    @field_validator("servers", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class ErrorDetail(BaseModel):
    """A field-level problem reported by the registry."""

    location: str = ""
    message: str = ""
    value: Any = None

    @field_validator("location", "message", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ProblemDetails(BaseModel):
    """An ``application/problem+json`` error body."""

    type: str = ""
    title: str = ""
    status: int = 0
    detail: str = ""
    instance: str = ""
    errors: list[ErrorDetail] | None = None

    @field_validator("type", "title", "detail", "instance", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def none_as_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class CacheStore(BaseModel):
    """On-disk cache format.

    ``last_synced`` is ``None`` until the first successful sync. The zero
    timestamp written by older files is read back as ``None``.
    """

    last_synced: datetime | None = None
    servers: list[ServerRecord] = Field(default_factory=list)

    @field_validator("last_synced")
    @classmethod
    def zero_as_never(cls, v: datetime | None) -> datetime | None:
        if v is None or v.year <= 1:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("servers", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_serializer("last_synced")
    def serialize_last_synced(self, v: datetime | None) -> str:
        return ZERO_TIMESTAMP if v is None else format_rfc3339(v)


class SyncProgress(BaseModel):
    """Counters reported by the cache after every page and at the end of a sync."""

    mode: SyncMode = Field(..., description="Cold or incremental")
    pages: int = Field(0, description="Pages processed so far")
    fetched: int = Field(0, description="Records received so far")
    updated: int = Field(0, description="Records merged into an existing cache")
    cached: int = Field(0, description="Records currently held by the cache")

    model_config = {"frozen": True}


class SyncStatus(BaseModel):
    """Point-in-time copy of the coordinator's state."""

    state: SyncState = Field(SyncState.NOT_STARTED, description="Coordinator lifecycle state")
    mode: SyncMode | None = Field(None, description="Mode of the running or last sync")
    pages: int = 0
    fetched: int = 0
    updated: int = 0
    cached: int = 0
    last_error: str | None = Field(None, description="Error of the last sync, if it failed")

