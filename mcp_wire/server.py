"""FastMCP server exposing the locally mirrored MCP registry."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from pydantic import Field
from rapidfuzz import fuzz, process

from .cache import clear_cache, search_records
from .client import RegistryClient
from .config import APP_NAME, WireConfig
from .errors import CacheError, ConfigError, RegistryAPIError, RegistryError
from .models import ServerRecord, format_rfc3339
from .tasks import SyncCoordinator

# Configure logging (stdout is the MCP stdio channel)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

REGISTRY_FEATURE = "registry"

REGISTRY_DISABLED_MESSAGE = (
    "The registry feature is disabled. "
    "Enable it with mcp_wire_feature_enable(name='registry')."
)

# Minimum rapidfuzz score for a "did you mean" suggestion
SUGGESTION_THRESHOLD = 60
MAX_SUGGESTIONS = 5


def suggest_names(query: str, servers: list[ServerRecord], limit: int = MAX_SUGGESTIONS) -> list[str]:
    """Rank server names by fuzzy similarity to a query that matched nothing."""
    names = [s.name for s in servers if s.name]
    if not query.strip() or not names:
        return []

    matches = process.extract(query, names, scorer=fuzz.WRatio, limit=limit)
    return [name for name, score, _ in matches if score >= SUGGESTION_THRESHOLD]


def format_server_line(record: ServerRecord) -> str:
    server = record.server
    title = f" ({server.title})" if server.title else ""
    version = f" v{server.version}" if server.version else ""
    return f"- **{server.name}**{title}{version} - {server.description[:100]}"


def format_server_details(record: ServerRecord) -> str:
    """Render one registry record as markdown."""
    server = record.server
    output = [f"# {server.title or server.name}\n"]
    output.append(f"**Name:** `{server.name}`")
    if server.version:
        output.append(f"**Version:** {server.version}")
    output.append(f"**Description:** {server.description}")

    if server.website_url:
        output.append(f"**Website:** {server.website_url}")
    if server.repository and server.repository.url:
        output.append(f"**Repository:** {server.repository.url}")

    official = record.meta.official
    if official:
        if official.status:
            output.append(f"**Status:** {official.status}")
        if official.published_at:
            output.append(f"**Published:** {format_rfc3339(official.published_at)}")
        if official.updated_at:
            output.append(f"**Updated:** {format_rfc3339(official.updated_at)}")

    if server.packages:
        output.append("\n## Packages\n")
        for package in server.packages:
            registry_type = package.get("registryType", "unknown")
            identifier = package.get("identifier", "")
            version = package.get("version")
            suffix = f"@{version}" if version else ""
            output.append(f"- {registry_type}: `{identifier}{suffix}`")

    if server.remotes:
        output.append("\n## Remotes\n")
        for remote in server.remotes:
            output.append(f"- {remote.get('type', 'unknown')}: {remote.get('url', '')}")

    return "\n".join(output)


def format_api_error(error: RegistryAPIError) -> str:
    output = [f"Registry error (HTTP {error.status}): {error}"]
    for detail in error.errors:
        location = f"{detail.location}: " if detail.location else ""
        output.append(f"- {location}{detail.message}")
    return "\n".join(output)


class RegistryTools:
    """Tool handlers backed by one coordinator, config and client.

    Every registry tool first makes sure the background sync has started,
    then reads the coordinator's snapshot.
    """

    def __init__(
        self,
        config: WireConfig,
        coordinator: SyncCoordinator,
        client: RegistryClient,
    ):
        self.config = config
        self.coordinator = coordinator
        self.client = client

    def registry_enabled(self) -> bool:
        return self.config.is_feature_enabled(REGISTRY_FEATURE)

    def ensure_sync(self) -> bool:
        """Start the background sync if the registry feature is on."""
        enabled = self.registry_enabled()
        self.coordinator.ensure_started(enabled)
        return enabled

    def _with_status(self, output: list[str]) -> str:
        status_line = self.coordinator.status_line(self.registry_enabled())
        if status_line:
            output.append(f"\n*{status_line}*")
        return "\n".join(output)

    async def registry_search(
        self,
        query: str = Field(..., description="Text matched against name, title and description"),
        limit: int = Field(20, description="Max results to return (1-100)"),
    ) -> str:
        """Search the locally cached MCP registry.

        Returns:
            Formatted list of matching servers
        """
        if not self.ensure_sync():
            return REGISTRY_DISABLED_MESSAGE

        servers = self.coordinator.snapshot()
        results = search_records(servers, query)
        limit = max(1, min(limit, 100))

        if not results:
            output = [f"No servers found matching query: {query}"]
            suggestions = suggest_names(query, servers)
            if suggestions:
                output.append("\nDid you mean:")
                output.extend(f"- {name}" for name in suggestions)
            return self._with_status(output)

        output = [f"# Found {len(results)} matching servers\n"]
        output.extend(format_server_line(record) for record in results[:limit])
        if len(results) > limit:
            output.append(f"\n*({len(results) - limit} more matches)*")
        return self._with_status(output)

    async def registry_list(
        self,
        limit: int = Field(50, description="Max results to return (1-200)"),
    ) -> str:
        """List servers in the locally cached MCP registry.

        Returns:
            Formatted list of servers
        """
        if not self.ensure_sync():
            return REGISTRY_DISABLED_MESSAGE

        servers = self.coordinator.snapshot()
        limit = max(1, min(limit, 200))

        output = [f"# Registry listing ({len(servers)} servers)\n"]
        output.extend(format_server_line(record) for record in servers[:limit])
        if len(servers) > limit:
            output.append(f"\n*({len(servers) - limit} more servers available)*")
        return self._with_status(output)

    async def registry_get(
        self,
        name: str = Field(..., description="Server name, e.g. io.github.user/server"),
    ) -> str:
        """Fetch the latest published version of a server from the registry.

        Returns:
            Formatted server details
        """
        if not self.ensure_sync():
            return REGISTRY_DISABLED_MESSAGE

        try:
            record = await self.client.get_server_latest(name)
        except ValueError as e:
            return f"Invalid server name: {e}"
        except RegistryAPIError as e:
            return format_api_error(e)
        except RegistryError as e:
            logger.warning(f"Registry lookup for {name!r} failed: {e}")
            return f"Registry request failed: {e}"

        return format_server_details(record)

    async def registry_status(self) -> str:
        """Show the state of the local registry mirror.

        Returns:
            Sync state, counters and the last error, if any
        """
        enabled = self.registry_enabled()
        status = self.coordinator.status()

        output = ["# Registry Status\n"]
        output.append(f"**Feature enabled:** {'yes' if enabled else 'no'}")
        output.append(f"**Sync state:** {status.state.value}")
        if status.mode:
            output.append(f"**Sync mode:** {status.mode.value}")
        output.append(f"**Pages processed:** {status.pages}")
        output.append(f"**Cached servers:** {status.cached}")
        output.append(f"**Cache file:** {self.coordinator.cache_path}")
        if status.last_error:
            output.append(f"**Last error:** {status.last_error}")

        status_line = self.coordinator.status_line(enabled)
        if status_line:
            output.append(f"\n*{status_line}*")
        return "\n".join(output)

    async def cache_clear(self) -> str:
        """Delete the local registry cache file.

        Returns:
            Confirmation message
        """
        try:
            path, removed = clear_cache(self.coordinator.cache_path)
        except CacheError as e:
            return f"Failed to clear registry cache: {e}"

        if removed:
            return f"Registry cache cleared: {path}"
        return f"Registry cache already empty: {path}"

    async def feature_list(self) -> str:
        """List feature flags and whether they are enabled.

        Returns:
            Formatted feature flag table
        """
        features = self.config.features()
        if not features:
            return "No feature flags available."

        width = max(len(f.name) for f in features)
        output = ["Feature flags:\n"]
        for feature in features:
            state = "enabled" if feature.enabled else "disabled"
            output.append(f"  {feature.name:<{width}}  {state:<8}  {feature.description}")
        return "\n".join(output)

    async def feature_enable(
        self,
        name: str = Field(..., description="Feature flag name"),
    ) -> str:
        """Enable a feature flag."""
        return self._set_feature(name, True)

    async def feature_disable(
        self,
        name: str = Field(..., description="Feature flag name"),
    ) -> str:
        """Disable a feature flag."""
        return self._set_feature(name, False)

    def _set_feature(self, name: str, enabled: bool) -> str:
        try:
            self.config.set_feature(name, enabled)
        except ConfigError as e:
            return f"Error: {e}"

        action = "enabled" if enabled else "disabled"
        return f"Feature {name.strip()!r} {action}."


def close_client_on_exit(client: RegistryClient):
    """Build a FastMCP lifespan that closes the registry client on shutdown."""

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            yield {}
        finally:
            await client.aclose()

    return lifespan


def create_server(tools: RegistryTools) -> FastMCP:
    """Build the FastMCP server and register the tool handlers."""
    mcp = FastMCP(
        name=APP_NAME,
        instructions="""
        This server mirrors the Official MCP Registry locally.

        Use mcp_wire_registry_search and mcp_wire_registry_list to browse the
        cached catalog, and mcp_wire_registry_get for live details of one server.

        The catalog refreshes in the background; results are served from the
        last known copy while a refresh is running or after it fails.
        """,
        lifespan=close_client_on_exit(tools.client),
    )

    mcp.tool(tools.registry_search, name="mcp_wire_registry_search")
    mcp.tool(tools.registry_list, name="mcp_wire_registry_list")
    mcp.tool(tools.registry_get, name="mcp_wire_registry_get")
    mcp.tool(tools.registry_status, name="mcp_wire_registry_status")
    mcp.tool(tools.cache_clear, name="mcp_wire_cache_clear")
    mcp.tool(tools.feature_list, name="mcp_wire_feature_list")
    mcp.tool(tools.feature_enable, name="mcp_wire_feature_enable")
    mcp.tool(tools.feature_disable, name="mcp_wire_feature_disable")

    return mcp


def main() -> None:
    """Main entry point for the server."""
    try:
        config = WireConfig.load()
    except ConfigError as e:
        logger.error(f"Failed to load config: {e}")
        raise SystemExit(1) from e

    coordinator = SyncCoordinator()
    client = RegistryClient()
    tools = RegistryTools(config, coordinator, client)
    mcp = create_server(tools)

    logger.info("Starting mcp-wire server")
    tools.ensure_sync()

    mcp.run()


if __name__ == "__main__":
    main()
