"""
Official MCP Registry client

Read-only async access to the registry API at registry.modelcontextprotocol.io
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import APP_NAME, APP_VERSION
from .errors import (
    RegistryAPIError,
    RegistryDecodeError,
    RegistryHTTPError,
    RegistryRequestError,
)
from .models import ProblemDetails, ServerListResponse, ServerRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://registry.modelcontextprotocol.io"
API_VERSION = "v0.1"

DEFAULT_LIMIT = 30
MAX_LIMIT = 100

# Fixed per-request timeout in seconds
DEFAULT_TIMEOUT = 15.0

# Max characters of a non-JSON error body quoted in the error message
ERROR_SNIPPET_LENGTH = 200


class RegistryClient:
    """Async HTTP client for the Official MCP Registry API.

    The client never retries. Transport failures raise
    :class:`RegistryRequestError`; error responses raise
    :class:`RegistryAPIError` when the body is a problem document and
    :class:`RegistryHTTPError` otherwise.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Registry root URL (trailing slash is ignored)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "RegistryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": f"{APP_NAME}/{APP_VERSION}",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list_servers(
        self,
        limit: int = DEFAULT_LIMIT,
        cursor: str = "",
        search: str = "",
        updated_since: str = "",
    ) -> ServerListResponse:
        """Fetch one page of latest-version servers.

        Args:
            limit: Page size; non-positive means the default, capped at 100
            cursor: Opaque cursor from the previous page's ``next_cursor``
            search: Optional server-side search term
            updated_since: RFC3339 timestamp, only return records updated after it

        Returns:
            The page; ``metadata.next_cursor`` is empty on the last page
        """
        if limit <= 0:
            limit = DEFAULT_LIMIT
        limit = min(limit, MAX_LIMIT)

        params = {"version": "latest", "limit": str(limit)}
        if cursor:
            params["cursor"] = cursor
        if search:
            params["search"] = search
        if updated_since:
            params["updated_since"] = updated_since

        data = await self._get(f"{self.base_url}/{API_VERSION}/servers", params)
        try:
            return ServerListResponse.model_validate(data)
        except ValidationError as e:
            raise RegistryDecodeError(f"parse response: {e}") from e

    async def get_server_latest(self, name: str) -> ServerRecord:
        """Fetch the latest version of a single server.

        The name is in reverse-DNS form (``io.github.user/server``); its slash
        is percent-encoded in the request path.

        Raises:
            ValueError: If the name is empty or whitespace
        """
        trimmed = name.strip()
        if not trimmed:
            raise ValueError("server name is required")

        encoded = quote(trimmed, safe="")
        data = await self._get(f"{self.base_url}/{API_VERSION}/servers/{encoded}/versions/latest")
        try:
            return ServerRecord.model_validate(data)
        except ValidationError as e:
            raise RegistryDecodeError(f"parse response: {e}") from e

    async def _get(self, url: str, params: dict[str, str] | None = None) -> Any:
        client = self._ensure_client()
        logger.debug(f"GET {url} params={params}")

        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise RegistryRequestError(f"registry request failed: {e}") from e

        if not response.is_success:
            raise parse_api_error(response.status_code, response.content)

        try:
            return response.json()
        except ValueError as e:
            raise RegistryDecodeError(f"parse response: {e}") from e


def parse_api_error(status_code: int, body: bytes) -> RegistryAPIError | RegistryHTTPError:
    """Map an error response body to an exception.

    Problem documents become :class:`RegistryAPIError`. Anything else becomes
    a :class:`RegistryHTTPError` quoting the start of the body.
    """
    try:
        problem = ProblemDetails.model_validate_json(body)
    except ValidationError:
        snippet = body.decode("utf-8", errors="replace")
        if len(snippet) > ERROR_SNIPPET_LENGTH:
            snippet = snippet[:ERROR_SNIPPET_LENGTH] + "..."
        snippet = snippet.strip()
        if not snippet:
            return RegistryHTTPError(
                status_code, f"registry returned HTTP {status_code} (empty response)"
            )
        return RegistryHTTPError(status_code, f"registry returned HTTP {status_code}: {snippet}")

    return RegistryAPIError.from_problem(problem, status_code)
