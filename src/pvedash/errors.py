"""Typed errors raised by the HTTP-facing layer.

Learn: The API client raises these; the orchestrator and the live client
turn them into outcomes (a False return, a bus event, a state transition).
Nothing below ever lets a raw httpx exception reach consumer code.
"""

REFRESH_BACKEND = "backend"
REFRESH_TRANSPORT = "transport"
REFRESH_TIMEOUT = "timeout"
REFRESH_CONFIG = "config"


class PvedashError(Exception):
    """Base class for every error raised by pvedash."""


class RefreshError(PvedashError):
    """A snapshot refresh did not produce data.

    `kind` is one of the REFRESH_* constants so consumers can tell a
    backend-reported failure from a connectivity problem.
    """

    kind = REFRESH_TRANSPORT

    def __init__(self, message: str, *, kind: str | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class BackendReportedError(RefreshError):
    """The aggregator answered with success=false."""

    kind = REFRESH_BACKEND


class TransportError(RefreshError):
    """Connectivity failure or non-2xx HTTP status."""

    kind = REFRESH_TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(RefreshError):
    """Cluster credentials are missing or invalid."""

    kind = REFRESH_CONFIG


class ChannelAuthError(PvedashError):
    """The live channel handshake was rejected (HTTP 401/403)."""

    def __init__(self, message: str, *, status_code: int):
        super().__init__(message)
        self.status_code = status_code
