"""Error taxonomy shared by the proxy components."""

from __future__ import annotations

from fastapi import status


class ProxyError(Exception):
    """Base class for failures that map onto an HTTP error response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ProxyError):
    """Startup configuration is malformed or contradictory."""


class UnknownRoute(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, route_name: str) -> None:
        super().__init__("Invalid service")
        self.route_name = route_name


class MalformedPath(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST


class MissingParameter(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing required parameter: {name}")
        self.name = name


class NotAuthorized(ProxyError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self) -> None:
        super().__init__("Request not allowed")


class UpstreamFailure(ProxyError):
    """Upstream answered with a non-2xx status; the status is passed through."""

    def __init__(self, upstream_status: int) -> None:
        super().__init__("Upstream fetch failed", status_code=upstream_status)
        self.upstream_status = upstream_status


class FetchError(ProxyError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self) -> None:
        super().__init__("Failed to fetch target")
