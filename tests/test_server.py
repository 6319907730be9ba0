"""Tests for the MCP tool handlers."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastmcp import FastMCP
from mcp_wire.client import RegistryClient
from mcp_wire.config import WireConfig
from mcp_wire.errors import ConfigError
from mcp_wire.models import (
    CacheStore,
    Repository,
    ServerJSON,
    ServerListResponse,
    ServerRecord,
    SyncState,
)
from mcp_wire.server import (
    REGISTRY_DISABLED_MESSAGE,
    RegistryTools,
    close_client_on_exit,
    create_server,
    main,
    suggest_names,
)
from mcp_wire.tasks import SyncCoordinator

WEATHER = {
    "server": {
        "name": "io.github.example/weather",
        "description": "Weather forecasts",
        "version": "1.2.0",
        "title": "Weather",
        "repository": {"url": "https://github.com/example/weather", "source": "github"},
        "packages": [{"registryType": "npm", "identifier": "@example/weather-mcp", "version": "1.2.0"}],
        "remotes": [{"type": "streamable-http", "url": "https://weather.example.com/mcp"}],
    },
    "_meta": {
        "io.modelcontextprotocol.registry/official": {
            "status": "active",
            "publishedAt": "2025-09-10T12:00:00Z",
            "isLatest": True,
        }
    },
}


def make_record(name: str, title: str = "", description: str = "") -> ServerRecord:
    return ServerRecord(
        server=ServerJSON(
            name=name,
            title=title,
            description=description,
            version="1.0.0",
            repository=Repository(url=f"https://github.com/{name}"),
        )
    )


CACHED = [
    make_record("io.github.example/weather", "Weather", "Weather forecasts"),
    make_record("io.github.example/files", "Files", "Filesystem access"),
    make_record("io.github.other/postgres", "", "PostgreSQL database tools"),
]


class EmptyLister:
    """Reports no updates since the last sync."""

    async def list_servers(self, limit=30, cursor="", search="", updated_since=""):
        return ServerListResponse()


def registry_handler(request: httpx.Request) -> httpx.Response:
    if request.url.raw_path.endswith(b"io.github.example%2Fweather/versions/latest"):
        return httpx.Response(200, json=WEATHER)
    return httpx.Response(
        404,
        json={"title": "Not Found", "status": 404, "detail": "Server not found"},
    )


@pytest.fixture
def cache_path(tmp_path):
    path = tmp_path / "cache" / "servers.json"
    path.parent.mkdir(parents=True)
    store = CacheStore(last_synced=datetime(2025, 9, 1, tzinfo=timezone.utc), servers=CACHED)
    path.write_text(store.model_dump_json(by_alias=True), encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path):
    return WireConfig(tmp_path / "config" / "config.json", features={"registry": True})


@pytest.fixture
def coordinator(cache_path):
    return SyncCoordinator(cache_path=cache_path, client_factory=EmptyLister)


@pytest.fixture
def tools(config, coordinator):
    client = RegistryClient(
        base_url="https://registry.test",
        transport=httpx.MockTransport(registry_handler),
    )
    return RegistryTools(config, coordinator, client)


@pytest.fixture
def synced_tools(tools):
    """Tools whose background sync has already finished."""
    assert tools.ensure_sync() is True
    assert tools.coordinator.wait(timeout=5)
    return tools


class TestDisabled:
    """Tests for tools while the registry feature is off."""

    @pytest.fixture
    def disabled_tools(self, tools):
        tools.config = WireConfig(tools.config.path)
        return tools

    @pytest.mark.asyncio
    async def test_search_disabled(self, disabled_tools):
        result = await disabled_tools.registry_search(query="weather", limit=10)

        assert result == REGISTRY_DISABLED_MESSAGE
        assert disabled_tools.coordinator.state is SyncState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_list_and_get_disabled(self, disabled_tools):
        assert await disabled_tools.registry_list(limit=10) == REGISTRY_DISABLED_MESSAGE
        assert await disabled_tools.registry_get(name="x/y") == REGISTRY_DISABLED_MESSAGE
        assert disabled_tools.coordinator.state is SyncState.NOT_STARTED

    @pytest.mark.asyncio
    async def test_status_disabled(self, disabled_tools):
        result = await disabled_tools.registry_status()

        assert "**Feature enabled:** no" in result
        assert "**Sync state:** not-started" in result


class TestRegistrySearch:
    """Tests for the search tool."""

    @pytest.mark.asyncio
    async def test_first_call_starts_sync(self, tools):
        """Test that the first registry tool call launches the sync."""
        result = await tools.registry_search(query="weather", limit=10)

        assert "io.github.example/weather" in result
        assert tools.coordinator.state is not SyncState.NOT_STARTED
        assert tools.coordinator.wait(timeout=5)

    @pytest.mark.asyncio
    async def test_finds_matches(self, synced_tools):
        result = await synced_tools.registry_search(query="IO.GITHUB.EXAMPLE", limit=10)

        assert "# Found 2 matching servers" in result
        assert "- **io.github.example/weather** (Weather) v1.0.0 - Weather forecasts" in result
        assert "io.github.example/files" in result
        assert "postgres" not in result

    @pytest.mark.asyncio
    async def test_respects_limit(self, synced_tools):
        result = await synced_tools.registry_search(query="", limit=1)

        assert "# Found 3 matching servers" in result
        assert "*(2 more matches)*" in result

    @pytest.mark.asyncio
    async def test_suggests_similar_names(self, synced_tools):
        """Test that a miss offers fuzzy name suggestions."""
        result = await synced_tools.registry_search(query="weathr", limit=10)

        assert "No servers found matching query: weathr" in result
        assert "Did you mean:" in result
        assert "- io.github.example/weather" in result

    @pytest.mark.asyncio
    async def test_failed_sync_note(self, config, cache_path):
        """Test that results carry a note when the background sync failed."""

        class FailingLister:
            async def list_servers(self, **kwargs):
                raise httpx.ConnectError("offline")

        coordinator = SyncCoordinator(cache_path=cache_path, client_factory=FailingLister)
        tools = RegistryTools(config, coordinator, RegistryClient())
        tools.ensure_sync()
        assert coordinator.wait(timeout=5)

        result = await tools.registry_search(query="files", limit=10)

        assert "io.github.example/files" in result
        assert result.endswith("*Registry sync failed; using cached results (3 servers)*")


class TestSuggestNames:
    def test_empty_query(self):
        assert suggest_names("  ", CACHED) == []

    def test_no_servers(self):
        assert suggest_names("weather", []) == []

    def test_unrelated_query(self):
        assert suggest_names("zzzzqqqq", CACHED) == []


class TestRegistryList:
    @pytest.mark.asyncio
    async def test_lists_cached_servers(self, synced_tools):
        result = await synced_tools.registry_list(limit=50)

        assert "# Registry listing (3 servers)" in result
        assert "io.github.other/postgres" in result
        assert "Registry sync" not in result

    @pytest.mark.asyncio
    async def test_respects_limit(self, synced_tools):
        result = await synced_tools.registry_list(limit=2)

        assert "io.github.other/postgres" not in result
        assert "*(1 more servers available)*" in result


class TestRegistryGet:
    """Tests for live lookups of one server."""

    @pytest.mark.asyncio
    async def test_returns_details(self, tools):
        result = await tools.registry_get(name="io.github.example/weather")

        assert "# Weather" in result
        assert "**Name:** `io.github.example/weather`" in result
        assert "**Repository:** https://github.com/example/weather" in result
        assert "**Status:** active" in result
        assert "**Published:** 2025-09-10T12:00:00Z" in result
        assert "- npm: `@example/weather-mcp@1.2.0`" in result
        assert "- streamable-http: https://weather.example.com/mcp" in result
        assert tools.coordinator.wait(timeout=5)

    @pytest.mark.asyncio
    async def test_not_found(self, tools):
        result = await tools.registry_get(name="io.github.example/missing")

        assert result == "Registry error (HTTP 404): Server not found"
        assert tools.coordinator.wait(timeout=5)

    @pytest.mark.asyncio
    async def test_blank_name(self, tools):
        result = await tools.registry_get(name="   ")

        assert result == "Invalid server name: server name is required"
        assert tools.coordinator.wait(timeout=5)

    @pytest.mark.asyncio
    async def test_network_failure(self, config, coordinator):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = RegistryClient(base_url="https://registry.test", transport=httpx.MockTransport(refuse))
        tools = RegistryTools(config, coordinator, client)

        result = await tools.registry_get(name="io.github.example/weather")

        assert result.startswith("Registry request failed:")
        assert coordinator.wait(timeout=5)


class TestStatusAndCache:
    @pytest.mark.asyncio
    async def test_status_after_sync(self, synced_tools, cache_path):
        result = await synced_tools.registry_status()

        assert "**Feature enabled:** yes" in result
        assert "**Sync state:** idle" in result
        assert "**Sync mode:** incremental" in result
        assert "**Cached servers:** 3" in result
        assert f"**Cache file:** {cache_path}" in result
        assert "Last error" not in result

    @pytest.mark.asyncio
    async def test_cache_clear(self, tools, cache_path):
        first = await tools.cache_clear()
        second = await tools.cache_clear()

        assert first == f"Registry cache cleared: {cache_path}"
        assert second == f"Registry cache already empty: {cache_path}"
        assert not cache_path.exists()


class TestFeatureTools:
    """Tests for the feature flag tools."""

    @pytest.mark.asyncio
    async def test_feature_list(self, tools):
        result = await tools.feature_list()

        assert result.startswith("Feature flags:")
        assert "registry" in result
        assert "enabled" in result

    @pytest.mark.asyncio
    async def test_enable_and_disable(self, tools):
        assert await tools.feature_disable(name="registry") == "Feature 'registry' disabled."
        assert tools.registry_enabled() is False
        assert tools.config.path.exists()

        assert await tools.feature_enable(name=" registry ") == "Feature 'registry' enabled."
        assert WireConfig.load(tools.config.path).is_feature_enabled("registry") is True

    @pytest.mark.asyncio
    async def test_enable_unknown(self, tools):
        result = await tools.feature_enable(name="teleport")

        assert result == "Error: unknown feature 'teleport'"


def test_create_server(tools):
    mcp = create_server(tools)

    assert isinstance(mcp, FastMCP)
    assert mcp.name == "mcp-wire"


@pytest.mark.asyncio
async def test_lifespan_closes_client(tools):
    """Test that the registry client is closed when the server shuts down."""
    await tools.client.get_server_latest("io.github.example/weather")
    assert tools.client._client is not None

    async with close_client_on_exit(tools.client)(create_server(tools)) as state:
        assert state == {}

    assert tools.client._client is None


class TestMain:
    """Tests for the server entry point."""

    def test_config_error_exits(self):
        with patch("mcp_wire.server.WireConfig.load", side_effect=ConfigError("bad config")):
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1

    def test_starts_sync_and_runs(self, config, coordinator):
        mock_server = MagicMock()

        with (
            patch("mcp_wire.server.WireConfig.load", return_value=config),
            patch("mcp_wire.server.SyncCoordinator", return_value=coordinator),
            patch("mcp_wire.server.create_server", return_value=mock_server) as mock_create,
        ):
            main()

        mock_server.run.assert_called_once_with()
        tools = mock_create.call_args.args[0]
        assert tools.coordinator is coordinator
        assert coordinator.state is not SyncState.NOT_STARTED
        assert coordinator.wait(timeout=5)
