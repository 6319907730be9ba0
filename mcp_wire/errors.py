"""Exceptions raised by the registry client, the cache and the config layer."""

from .models import ErrorDetail, ProblemDetails, SyncMode


class WireError(Exception):
    """Base class for mcp-wire errors."""


class ConfigError(WireError):
    """Config file could not be read, parsed or updated."""


class CacheError(WireError):
    """Cache file could not be read, written or removed."""


class RegistryError(WireError):
    """Base class for failures talking to the registry."""


class RegistryRequestError(RegistryError):
    """Transport-level failure (DNS, connection refused, timeout)."""


class RegistryDecodeError(RegistryError):
    """A successful response whose body could not be decoded."""


class RegistryHTTPError(RegistryError):
    """Non-2xx response whose body is not a problem document."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class RegistryAPIError(RegistryError):
    """Structured ``application/problem+json`` error returned by the registry."""

    def __init__(
        self,
        status: int,
        title: str = "",
        detail: str = "",
        type: str = "",
        instance: str = "",
        errors: list[ErrorDetail] | None = None,
    ):
        self.status = status
        self.title = title
        self.detail = detail
        self.type = type
        self.instance = instance
        self.errors = list(errors or [])
        super().__init__(self.message)

    @classmethod
    def from_problem(cls, problem: ProblemDetails, status_code: int) -> "RegistryAPIError":
        """Build from a parsed problem document, filling a missing status."""
        return cls(
            status=problem.status or status_code,
            title=problem.title,
            detail=problem.detail,
            type=problem.type,
            instance=problem.instance,
            errors=problem.errors,
        )

    @property
    def message(self) -> str:
        return self.detail or self.title or "registry API error"

    def __str__(self) -> str:
        return self.message


class SyncError(WireError):
    """A page request failed during a cache sync.

    The failing client error is available as ``__cause__``.
    """

    def __init__(self, mode: SyncMode, cause: Exception):
        super().__init__(f"{mode.value} sync: {cause}")
        self.mode = mode
