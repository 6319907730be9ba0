"""Background task coordinator for registry synchronization."""

import asyncio
import logging
import threading
from collections.abc import Callable
from pathlib import Path

from .cache import Cache, ServerLister, copy_records, default_cache_path
from .client import RegistryClient
from .errors import WireError
from .models import ServerRecord, SyncMode, SyncProgress, SyncState, SyncStatus

logger = logging.getLogger(__name__)


class StartGate:
    """One-shot gate deciding which caller starts the background sync.

    The first caller of :meth:`run_once` runs the action. Concurrent callers
    wait until that action has finished and then return without running it.
    The gate stays open even if the action raised.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._opened = False

    def run_once(self, action: Callable[[], None]) -> bool:
        """Run ``action`` if the gate has never been opened.

        Returns:
            True for the caller that ran the action
        """
        with self._lock:
            if self._opened:
                return False
            self._opened = True
            action()
            return True


class SyncCoordinator:
    """Runs at most one background registry sync and serves its results.

    State moves NOT_STARTED -> SYNCING -> IDLE and never goes back. All
    fields below ``_lock`` are guarded by it; record lists are copied on
    both sides of the lock so readers never share them with the sync thread.
    Readers never wait on network I/O.
    """

    def __init__(
        self,
        cache_path: Path | None = None,
        client_factory: Callable[[], ServerLister] = RegistryClient,
    ):
        """Initialize the coordinator.

        Args:
            cache_path: Cache file path (defaults to the user cache directory)
            client_factory: Builds the network client used by the background sync
        """
        self.cache_path = cache_path or default_cache_path()
        self._client_factory = client_factory
        self._gate = StartGate()
        self._thread: threading.Thread | None = None

        self._lock = threading.Lock()
        self._state = SyncState.NOT_STARTED
        self._mode: SyncMode | None = None
        self._pages = 0
        self._fetched = 0
        self._updated = 0
        self._cached = 0
        self._error: Exception | None = None
        self._servers: list[ServerRecord] = []

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    def ensure_started(self, enabled: bool) -> bool:
        """Start the background sync unless it already started.

        Args:
            enabled: Whether the registry feature is on; a no-op when False

        Returns:
            True if this call launched the sync
        """
        if not enabled:
            return False
        return self._gate.run_once(self._start)

    def _start(self) -> None:
        seed = Cache(path=self.cache_path)
        try:
            seed.load()
        except WireError as e:
            logger.warning(f"Could not seed registry snapshot from {self.cache_path}: {e}")
        else:
            servers = seed.all()
            with self._lock:
                self._servers = servers
                self._cached = len(servers)

        with self._lock:
            self._state = SyncState.SYNCING

        self._thread = threading.Thread(
            target=self._run,
            name="mcp-wire-registry-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info("Started background registry sync")

    def _run(self) -> None:
        """Thread body; owns its own event loop."""
        try:
            asyncio.run(self._sync())
        except Exception as e:
            logger.error(f"Background registry sync crashed: {e}", exc_info=True)
            with self._lock:
                self._state = SyncState.IDLE
                self._error = e

    async def _sync(self) -> None:
        client = self._client_factory()
        cache = Cache(client, path=self.cache_path, observer=self)
        sync_error: Exception | None = None

        try:
            try:
                cache.load()
            except WireError as e:
                logger.warning(f"Could not load registry cache before sync: {e}")
            else:
                baseline = cache.all()
                with self._lock:
                    self._servers = baseline
                    self._cached = len(baseline)

            try:
                await cache.sync()
            except Exception as e:
                sync_error = e
                logger.warning(
                    f"Registry sync failed, keeping {cache.count()} cached servers: {e}",
                    exc_info=True,
                )
        finally:
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()

        final = cache.all()
        with self._lock:
            if sync_error is None or final:
                self._servers = final
                self._cached = len(final)
            self._state = SyncState.IDLE
            self._error = sync_error

    def on_sync_progress(self, progress: SyncProgress, servers: list[ServerRecord]) -> None:
        """Mirror cache progress; called on the sync thread."""
        with self._lock:
            self._state = SyncState.SYNCING
            self._mode = progress.mode
            self._pages = progress.pages
            self._fetched = progress.fetched
            self._updated = progress.updated
            self._cached = progress.cached
            self._servers = servers
            self._error = None

    def snapshot(self) -> list[ServerRecord]:
        """Latest known servers.

        Once a sync has started this only copies the held snapshot. Before
        that it reads the local cache file; it never touches the network.
        """
        with self._lock:
            started = self._state is not SyncState.NOT_STARTED
            held = list(self._servers)

        if started:
            return copy_records(held)

        cache = Cache(path=self.cache_path)
        try:
            cache.load()
        except WireError as e:
            logger.warning(f"Could not read registry cache: {e}")
            return []
        return cache.all()

    def status(self) -> SyncStatus:
        with self._lock:
            return SyncStatus(
                state=self._state,
                mode=self._mode,
                pages=self._pages,
                fetched=self._fetched,
                updated=self._updated,
                cached=self._cached,
                last_error=str(self._error) if self._error is not None else None,
            )

    def status_line(self, enabled: bool) -> str:
        """One-line human summary of the sync; empty when there is nothing to say."""
        if not enabled:
            return ""

        with self._lock:
            state = self._state
            mode = self._mode
            fetched = self._fetched
            updated = self._updated
            cached = self._cached
            error = self._error

        if state is SyncState.NOT_STARTED:
            return ""

        if state is SyncState.SYNCING:
            if mode is SyncMode.INCREMENTAL:
                if updated > 0:
                    return f"Registry sync in background ({updated} updates, {cached} cached)"
                return f"Registry sync in background ({cached} cached)"
            if fetched > 0:
                return f"Registry sync in background ({fetched}+ servers fetched so far)"
            return "Registry sync in background"

        if error is not None:
            return f"Registry sync failed; using cached results ({cached} servers)"
        return ""

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the background sync finishes.

        Returns:
            True if the coordinator is idle afterwards
        """
        if self._thread is not None:
            self._thread.join(timeout)
        return self.state is SyncState.IDLE
