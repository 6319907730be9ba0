"""mcp-wire - local mirror of the Official MCP Registry with background sync."""

from .cache import Cache, clear_cache, default_cache_path
from .client import RegistryClient
from .config import APP_VERSION, WireConfig
from .errors import (
    CacheError,
    ConfigError,
    RegistryAPIError,
    RegistryDecodeError,
    RegistryError,
    RegistryHTTPError,
    RegistryRequestError,
    SyncError,
    WireError,
)
from .models import (
    CacheStore,
    ServerListResponse,
    ServerRecord,
    SyncMode,
    SyncProgress,
    SyncState,
    SyncStatus,
)
from .tasks import StartGate, SyncCoordinator

__version__ = APP_VERSION

__all__ = [
    "Cache",
    "CacheError",
    "CacheStore",
    "ConfigError",
    "RegistryAPIError",
    "RegistryClient",
    "RegistryDecodeError",
    "RegistryError",
    "RegistryHTTPError",
    "RegistryRequestError",
    "ServerListResponse",
    "ServerRecord",
    "StartGate",
    "SyncCoordinator",
    "SyncError",
    "SyncMode",
    "SyncProgress",
    "SyncState",
    "SyncStatus",
    "WireConfig",
    "WireError",
    "clear_cache",
    "default_cache_path",
]
