"""
Request and outcome types for the authenticated registry transport.

Every transport call produces a RequestOutcome; HTTP and network failures
are classified instead of raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

from nugetkit import __version__
from nugetkit.connectors.backoff import RetryPolicy

API_KEY_HEADER = "X-NuGet-ApiKey"
DEFAULT_USER_AGENT = f"nugetkit/{__version__}"


class OutcomeStatus(str, Enum):
    """Top-level classification of a transport call."""

    SUCCESS = "SUCCESS"
    RETRYABLE = "RETRYABLE"  # Transient failure, retries exhausted or not allowed
    FATAL = "FATAL"  # Permanent failure, retrying cannot help


class FailureReason(str, Enum):
    """Why a call did not succeed."""

    TIMEOUT = "TIMEOUT"
    CONNECTION_FAILED = "CONNECTION_FAILED"  # Could not establish a connection
    CONNECTION_LOST = "CONNECTION_LOST"  # Reset/disconnected after sending
    RATE_LIMITED = "RATE_LIMITED"  # 429
    SERVER_ERROR = "SERVER_ERROR"  # 5xx
    TRANSIENT_STATUS = "TRANSIENT_STATUS"  # Other configured transient status
    UNAUTHENTICATED = "UNAUTHENTICATED"  # No credentials, or 401
    FORBIDDEN = "FORBIDDEN"  # 403
    BAD_REQUEST = "BAD_REQUEST"  # 400
    NOT_FOUND = "NOT_FOUND"  # 404
    CONFLICT = "CONFLICT"  # 409
    CLIENT_ERROR = "CLIENT_ERROR"  # Other 4xx
    UNEXPECTED_STATUS = "UNEXPECTED_STATUS"  # 1xx/3xx left unresolved


@dataclass(frozen=True)
class Credentials:
    """API key for one registry. The key never appears in repr or logs."""

    registry_url: str
    api_key: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("api_key must be non-empty")

    def __repr__(self) -> str:
        return f"Credentials(registry_url={self.registry_url!r}, api_key='***')"


@dataclass(frozen=True)
class FileUpload:
    """A file sent as the only part of a multipart/form-data body."""

    field_name: str
    filename: str
    data: bytes = field(repr=False)
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class RegistryRequest:
    """
    One outbound registry request.

    Attributes:
        method: HTTP method.
        url: Absolute URL.
        params: Query parameters.
        headers: Extra request headers.
        body: Raw request body.
        content_type: Content-Type of ``body``.
        upload: File sent as multipart/form-data instead of ``body``.
        idempotent: Safe to repeat after a response or timeout.
        requires_auth: Fail fast when no credentials are supplied.
        timeout_s: Per-attempt timeout overriding the transport default.
    """

    method: str
    url: str
    params: dict[str, str] | None = None
    headers: dict[str, str] | None = None
    body: bytes | None = None
    content_type: str | None = None
    upload: FileUpload | None = None
    idempotent: bool = True
    requires_auth: bool = False
    timeout_s: float | None = None

    @classmethod
    def get(cls, url: str, params: dict[str, str] | None = None, **kwargs: Any) -> RegistryRequest:
        """Idempotent GET request."""
        return cls("GET", url, params=params, idempotent=True, **kwargs)


@dataclass
class RequestOutcome:
    """
    Normalized result of a transport call.

    Attributes:
        status: SUCCESS, RETRYABLE or FATAL.
        reason: Failure reason (None on success).
        http_status: Last HTTP status received, if any response arrived.
        payload: Response body of the last response.
        headers: Response headers of the last response.
        attempts: Number of attempts made.
        elapsed_ms: Total time spent including backoff.
        detail: Human-readable description of the failure.
    """

    status: OutcomeStatus
    reason: FailureReason | None = None
    http_status: int | None = None
    payload: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    elapsed_ms: int = 0
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def is_retryable(self) -> bool:
        return self.status == OutcomeStatus.RETRYABLE

    @property
    def is_fatal(self) -> bool:
        return self.status == OutcomeStatus.FATAL

    def json(self) -> Any:
        """Decode the payload as JSON.

        Raises:
            orjson.JSONDecodeError: If the payload is not valid JSON.
        """
        return orjson.loads(self.payload)

    def text(self, limit: int | None = None) -> str:
        """Decode the payload as text, optionally truncated."""
        text = self.payload.decode("utf-8", errors="replace")
        return text if limit is None else text[:limit]

    def describe(self) -> str:
        """Short summary suitable for error messages."""
        parts = [self.status.value]
        if self.reason is not None:
            parts.append(self.reason.value)
        if self.http_status is not None:
            parts.append(f"HTTP {self.http_status}")
        parts.append(f"after {self.attempts} attempt(s)")
        summary = " ".join(parts)
        return f"{summary}: {self.detail}" if self.detail else summary


@dataclass
class TransportConfig:
    """
    Configuration for AuthenticatedTransport.

    Attributes:
        timeout_s: Default per-attempt timeout.
        connect_timeout_s: Timeout for establishing a connection.
        max_connections: Connection pool size shared by all calls.
        user_agent: User-Agent header value.
        retry: Default retry policy.
    """

    timeout_s: float = 100.0
    connect_timeout_s: float = 15.0
    max_connections: int = 16
    user_agent: str = DEFAULT_USER_AGENT
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {self.timeout_s}")
        if self.connect_timeout_s <= 0:
            raise ValueError(f"connect_timeout_s must be > 0, got {self.connect_timeout_s}")
        if self.max_connections < 1:
            raise ValueError(f"max_connections must be >= 1, got {self.max_connections}")
