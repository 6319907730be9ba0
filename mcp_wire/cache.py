"""Local on-disk mirror of the registry catalog with cold and incremental sync."""

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .config import APP_NAME, home_dir
from .errors import CacheError, SyncError
from .models import (
    CacheStore,
    ServerListResponse,
    ServerRecord,
    SyncMode,
    SyncProgress,
    format_rfc3339,
)

logger = logging.getLogger(__name__)

CACHE_FILE_NAME = "servers.json"

# Page size requested during sync (the API maximum)
SYNC_PAGE_LIMIT = 100


class ServerLister(Protocol):
    """The part of the registry client the cache needs."""

    async def list_servers(
        self,
        limit: int = ...,
        cursor: str = "",
        search: str = "",
        updated_since: str = "",
    ) -> ServerListResponse: ...


class SyncObserver(Protocol):
    """Receives progress while a cache syncs.

    ``on_sync_progress`` is called synchronously on the thread running
    :meth:`Cache.sync`, after every page and once when the sync completes.
    The record list is a fresh copy owned by the observer.
    """

    def on_sync_progress(self, progress: SyncProgress, servers: list[ServerRecord]) -> None: ...


def user_cache_dir() -> Path | None:
    """Get the platform cache directory, or None if it cannot be resolved."""
    if sys.platform == "win32":
        local_app_data = os.environ.get("LOCALAPPDATA")
        return Path(local_app_data) if local_app_data else None

    home = home_dir()
    if sys.platform == "darwin":
        return home / "Library" / "Caches" if home else None

    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache and Path(xdg_cache).is_absolute():
        return Path(xdg_cache)
    return home / ".cache" if home else None


def default_cache_path() -> Path:
    """Get the cache file path.

    Returns:
        <user cache dir>/mcp-wire/servers.json, or ./.cache/mcp-wire/servers.json
        when the platform cache directory is unknown
    """
    base = user_cache_dir()
    if base is None:
        return Path(".cache") / APP_NAME / CACHE_FILE_NAME
    return base / APP_NAME / CACHE_FILE_NAME


def clear_cache(path: Path | None = None) -> tuple[Path, bool]:
    """Delete the cache file.

    Returns:
        The path and whether a file was removed

    Raises:
        CacheError: If the file exists but cannot be removed
    """
    target = path or default_cache_path()
    try:
        target.unlink()
    except FileNotFoundError:
        return target, False
    except OSError as e:
        raise CacheError(f"remove cache file {target}: {e}") from e

    logger.info(f"Removed registry cache {target}")
    return target, True


def copy_records(records: list[ServerRecord]) -> list[ServerRecord]:
    """Deep-copy records so callers never share the cache's objects."""
    return [record.model_copy(deep=True) for record in records]


def search_records(records: list[ServerRecord], query: str) -> list[ServerRecord]:
    """Case-insensitive substring match on name, title and description.

    An empty or whitespace query matches everything. Returns copies.
    """
    needle = query.strip().lower()
    if not needle:
        return copy_records(records)
    return copy_records([record for record in records if record.matches(needle)])


class Cache:
    """In-memory copy of the registry catalog plus its persisted JSON file.

    ``last_synced`` being unset is what selects a cold sync over an
    incremental one. A failed sync keeps whatever earlier pages of the same
    call merged and never advances ``last_synced``.
    """

    def __init__(
        self,
        client: ServerLister | None = None,
        path: Path | None = None,
        observer: SyncObserver | None = None,
    ):
        """Initialize the cache.

        Args:
            client: Registry client used by sync; may be None for read-only use
            path: Cache file path (defaults to the user cache directory)
            observer: Optional progress observer
        """
        self.path = path or default_cache_path()
        self.client = client
        self._observer = observer
        self._store = CacheStore()

    def set_progress_observer(self, observer: SyncObserver | None) -> None:
        self._observer = observer

    def load(self) -> None:
        """Read the cache file into memory.

        A missing file or one that cannot be parsed leaves the cache empty.

        Raises:
            CacheError: If the file exists but cannot be read
        """
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            self._store = CacheStore()
            return
        except OSError as e:
            raise CacheError(f"read cache file {self.path}: {e}") from e

        try:
            store = CacheStore.model_validate_json(data)
        except ValidationError as e:
            logger.warning(
                f"Ignoring unreadable registry cache {self.path} "
                f"({e.error_count()} errors); next sync will be a full sync"
            )
            self._store = CacheStore()
            return

        self._store = store
        logger.debug(f"Loaded {len(store.servers)} servers from {self.path}")

    async def sync(self) -> None:
        """Fetch servers from the registry and update the cache.

        Raises:
            SyncError: If a page request fails
            CacheError: If the cache file cannot be written
        """
        if self._store.last_synced is None:
            await self._cold_sync()
        else:
            await self._incremental_sync()

    def all(self) -> list[ServerRecord]:
        """Return a copy of every cached server."""
        return copy_records(self._store.servers)

    def search(self, query: str) -> list[ServerRecord]:
        """Filter cached servers by case-insensitive substring match.

        Matches against name, title and description. An empty query returns
        every server.
        """
        return search_records(self._store.servers, query)

    def last_synced(self) -> datetime | None:
        """Timestamp of the last successful sync, None if never synced."""
        return self._store.last_synced

    def count(self) -> int:
        return len(self._store.servers)

    def _require_client(self) -> ServerLister:
        if self.client is None:
            raise RuntimeError("cache has no registry client to sync from")
        return self.client

    async def _cold_sync(self) -> None:
        client = self._require_client()
        started = _sync_start_time()
        logger.info("Starting full registry sync")

        accumulated: list[ServerRecord] = []
        index: dict[str, int] = {}
        cursor = ""
        pages = 0
        fetched = 0

        while True:
            try:
                page = await client.list_servers(limit=SYNC_PAGE_LIMIT, cursor=cursor)
            except Exception as e:
                raise SyncError(SyncMode.COLD, e) from e

            pages += 1
            for record in page.servers:
                _merge(accumulated, index, record)
            fetched += len(page.servers)

            self._store.servers = list(accumulated)
            self._save()
            self._notify(
                SyncProgress(
                    mode=SyncMode.COLD,
                    pages=pages,
                    fetched=fetched,
                    cached=len(accumulated),
                )
            )
            logger.debug(f"Full sync page {pages}: {fetched} fetched, {len(accumulated)} unique")

            if not page.metadata.next_cursor:
                break
            cursor = page.metadata.next_cursor

        self._store.last_synced = started
        self._save()
        self._notify(
            SyncProgress(
                mode=SyncMode.COLD,
                pages=pages,
                fetched=fetched,
                cached=len(accumulated),
            )
        )
        logger.info(f"Full registry sync finished: {len(accumulated)} servers in {pages} pages")

    async def _incremental_sync(self) -> None:
        client = self._require_client()
        started = _sync_start_time()
        since = format_rfc3339(self._store.last_synced)
        logger.info(f"Starting incremental registry sync (updated since {since})")

        index = self._build_index()
        cursor = ""
        pages = 0
        fetched = 0

        while True:
            try:
                page = await client.list_servers(
                    limit=SYNC_PAGE_LIMIT,
                    cursor=cursor,
                    updated_since=since,
                )
            except Exception as e:
                raise SyncError(SyncMode.INCREMENTAL, e) from e

            pages += 1
            for record in page.servers:
                _merge(self._store.servers, index, record)
            fetched += len(page.servers)

            self._notify(self._incremental_progress(pages, fetched))
            logger.debug(f"Incremental sync page {pages}: {fetched} updates so far")

            if not page.metadata.next_cursor:
                break
            cursor = page.metadata.next_cursor

        self._store.last_synced = started
        self._save()
        self._notify(self._incremental_progress(pages, fetched))
        logger.info(
            f"Incremental registry sync finished: {fetched} updates, {self.count()} servers cached"
        )

    def _incremental_progress(self, pages: int, fetched: int) -> SyncProgress:
        return SyncProgress(
            mode=SyncMode.INCREMENTAL,
            pages=pages,
            fetched=fetched,
            updated=fetched,
            cached=self.count(),
        )

    def _build_index(self) -> dict[str, int]:
        return {record.name: i for i, record in enumerate(self._store.servers)}

    def _notify(self, progress: SyncProgress) -> None:
        if self._observer is not None:
            self._observer.on_sync_progress(progress, self.all())

    def _save(self) -> None:
        cache_dir = self.path.parent
        try:
            cache_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"create cache directory {cache_dir}: {e}") from e

        data = self._store.model_dump_json(by_alias=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(data)
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise CacheError(f"write cache file {self.path}: {e}") from e


def _merge(servers: list[ServerRecord], index: dict[str, int], record: ServerRecord) -> None:
    """Overwrite the record with the same name in place, or append it."""
    position = index.get(record.name)
    if position is None:
        servers.append(record)
        index[record.name] = len(servers) - 1
    else:
        servers[position] = record


def _sync_start_time() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)
