"""
Authenticated HTTP transport for NuGet registries.

- One shared aiohttp session (connection pool) per transport, created lazily
- API key attached as X-NuGet-ApiKey when credentials are supplied
- Idempotent requests retry on timeouts, connection errors, 429 and 5xx
- Non-idempotent requests (publish, unlist, relist) retry only when the
  connection could not be established, never after a response or timeout
- Failures are classified into a RequestOutcome instead of raised
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import TYPE_CHECKING, Any

import aiohttp

from nugetkit.connectors.backoff import (
    RetryBudget,
    RetryPolicy,
    parse_retry_after,
)
from nugetkit.connectors.types import (
    API_KEY_HEADER,
    Credentials,
    FailureReason,
    OutcomeStatus,
    RegistryRequest,
    RequestOutcome,
    TransportConfig,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nugetkit.connectors.exporter import TransportMetricsExporter

logger = logging.getLogger(__name__)

# Always surfaced immediately, whatever the retry policy says
FATAL_STATUSES: dict[int, FailureReason] = {
    400: FailureReason.BAD_REQUEST,
    401: FailureReason.UNAUTHENTICATED,
    403: FailureReason.FORBIDDEN,
    404: FailureReason.NOT_FOUND,
    409: FailureReason.CONFLICT,
}

# The only failure class where the request provably never reached the server
SAFE_TO_REPEAT = frozenset({FailureReason.CONNECTION_FAILED})

BODY_PREVIEW_CHARS = 500


def classify_status(status: int, policy: RetryPolicy) -> tuple[OutcomeStatus, FailureReason | None]:
    """
    Classify an HTTP status code.

    Args:
        status: HTTP status code.
        policy: Retry policy deciding which statuses are transient.

    Returns:
        (status, reason) pair; reason is None for success.
    """
    if 200 <= status < 300:
        return OutcomeStatus.SUCCESS, None
    if status in FATAL_STATUSES:
        return OutcomeStatus.FATAL, FATAL_STATUSES[status]
    if policy.is_transient_status(status):
        if status == 429:
            return OutcomeStatus.RETRYABLE, FailureReason.RATE_LIMITED
        if status >= 500:
            return OutcomeStatus.RETRYABLE, FailureReason.SERVER_ERROR
        return OutcomeStatus.RETRYABLE, FailureReason.TRANSIENT_STATUS
    if status >= 500:
        return OutcomeStatus.FATAL, FailureReason.SERVER_ERROR
    if 400 <= status < 500:
        return OutcomeStatus.FATAL, FailureReason.CLIENT_ERROR
    return OutcomeStatus.FATAL, FailureReason.UNEXPECTED_STATUS


class AuthenticatedTransport:
    """
    Async HTTP transport shared by the resolver and all workflows.

    Safe for concurrent use: calls share the connection pool but keep their
    retry state local.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        metrics: TransportMetricsExporter | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
        time_fn: Callable[[], float] | None = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            config: Transport configuration.
            metrics: Optional Prometheus exporter.
            sleep: Sleep coroutine used between retries (injectable for tests).
            rng: Optional seeded Random instance for deterministic jitter.
            time_fn: Monotonic clock in seconds (injectable for tests).
        """
        self._config = config or TransportConfig()
        self._metrics = metrics
        self._sleep = sleep or asyncio.sleep
        self._rng = rng
        self._time_fn = time_fn or time.monotonic
        self._session: aiohttp.ClientSession | None = None

    @property
    def config(self) -> TransportConfig:
        return self._config

    def _now_ms(self) -> int:
        return int(self._time_fn() * 1000)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self._config.max_connections)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": self._config.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> AuthenticatedTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _build_headers(
        self,
        request: RegistryRequest,
        credentials: Credentials | None,
    ) -> dict[str, str]:
        headers = dict(request.headers or {})
        if request.content_type:
            headers["Content-Type"] = request.content_type
        if credentials is not None:
            headers[API_KEY_HEADER] = credentials.api_key
        return headers

    @staticmethod
    def _body(request: RegistryRequest) -> Any:
        # FormData is consumed on send; build a fresh one per attempt
        if request.upload is None:
            return request.body
        form = aiohttp.FormData()
        form.add_field(
            request.upload.field_name,
            request.upload.data,
            filename=request.upload.filename,
            content_type=request.upload.content_type,
        )
        return form

    def _timeout(self, request: RegistryRequest) -> aiohttp.ClientTimeout:
        total = request.timeout_s if request.timeout_s is not None else self._config.timeout_s
        return aiohttp.ClientTimeout(total=total, connect=min(total, self._config.connect_timeout_s))

    async def _attempt(
        self,
        request: RegistryRequest,
        headers: dict[str, str],
        policy: RetryPolicy,
    ) -> tuple[RequestOutcome, int | None]:
        """
        Send one attempt and classify it.

        Returns:
            (outcome, retry_after_ms) for this single attempt.
        """
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                params=request.params,
                data=self._body(request),
                headers=headers,
                timeout=self._timeout(request),
            ) as response:
                payload = await response.read()
                response_headers = dict(response.headers)
                status, reason = classify_status(response.status, policy)
                retry_after_ms = None
                if response.status in (429, 503):
                    retry_after_ms = parse_retry_after(response.headers.get("Retry-After"))
                detail = None
                if reason is not None:
                    detail = payload.decode("utf-8", errors="replace")[:BODY_PREVIEW_CHARS] or None
                return (
                    RequestOutcome(
                        status=status,
                        reason=reason,
                        http_status=response.status,
                        payload=payload,
                        headers=response_headers,
                        detail=detail,
                    ),
                    retry_after_ms,
                )
        except aiohttp.ClientConnectorCertificateError as e:
            return self._failure(OutcomeStatus.FATAL, FailureReason.CONNECTION_FAILED, e), None
        except aiohttp.ClientConnectorError as e:
            return self._failure(OutcomeStatus.RETRYABLE, FailureReason.CONNECTION_FAILED, e), None
        except TimeoutError as e:
            return self._failure(OutcomeStatus.RETRYABLE, FailureReason.TIMEOUT, e), None
        except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
            return self._failure(OutcomeStatus.RETRYABLE, FailureReason.CONNECTION_LOST, e), None
        except aiohttp.ClientError as e:
            return self._failure(OutcomeStatus.FATAL, FailureReason.CLIENT_ERROR, e), None

    @staticmethod
    def _failure(status: OutcomeStatus, reason: FailureReason, error: BaseException) -> RequestOutcome:
        detail = str(error) or type(error).__name__
        return RequestOutcome(status=status, reason=reason, detail=detail)

    @staticmethod
    def _may_repeat(request: RegistryRequest, outcome: RequestOutcome) -> bool:
        if request.idempotent:
            return True
        return outcome.reason in SAFE_TO_REPEAT

    async def send(
        self,
        request: RegistryRequest,
        credentials: Credentials | None = None,
        policy: RetryPolicy | None = None,
    ) -> RequestOutcome:
        """
        Send a request with credential attachment, timeout and retries.

        Args:
            request: Request to send.
            credentials: API key to attach, if any.
            policy: Retry policy (default: the transport config's policy).

        Returns:
            RequestOutcome describing the final attempt. Never raises for
            HTTP or network failures.
        """
        policy = policy or self._config.retry

        if request.requires_auth and credentials is None:
            logger.warning(
                "Request requires an API key but none was supplied",
                extra={"method": request.method, "url": request.url},
            )
            return RequestOutcome(
                status=OutcomeStatus.FATAL,
                reason=FailureReason.UNAUTHENTICATED,
                attempts=0,
                detail="An API key is required for this operation",
            )

        headers = self._build_headers(request, credentials)
        budget = RetryBudget(policy, started_at_ms=self._now_ms())
        if self._metrics is not None:
            self._metrics.call_started()

        while True:
            budget.attempts += 1
            attempts = budget.attempts
            if self._metrics is not None:
                self._metrics.attempt(request.method)
            outcome, retry_after_ms = await self._attempt(request, headers, policy)
            outcome.attempts = attempts

            if not outcome.is_retryable or not self._may_repeat(request, outcome):
                break
            if not budget.attempts_left:
                logger.warning(
                    "Retries exhausted",
                    extra={
                        "method": request.method,
                        "url": request.url,
                        "attempts": attempts,
                        "reason": outcome.reason.value if outcome.reason else None,
                    },
                )
                break

            delay_ms = budget.next_delay_ms(retry_after_ms, rng=self._rng)
            if not budget.allows(delay_ms, self._now_ms()):
                logger.warning(
                    "Retry time budget exhausted",
                    extra={
                        "method": request.method,
                        "url": request.url,
                        "attempts": attempts,
                        "max_elapsed_ms": policy.max_elapsed_ms,
                    },
                )
                break

            logger.info(
                "Transient failure, retrying",
                extra={
                    "method": request.method,
                    "url": request.url,
                    "attempt": attempts,
                    "reason": outcome.reason.value if outcome.reason else None,
                    "status": outcome.http_status,
                    "delay_ms": delay_ms,
                },
            )
            if self._metrics is not None:
                self._metrics.retry(request.method, outcome.reason.value if outcome.reason else "NONE")
            if delay_ms > 0:
                await self._sleep(delay_ms / 1000)

        outcome.elapsed_ms = budget.elapsed_ms(self._now_ms())
        if self._metrics is not None:
            self._metrics.call_finished(request.method, outcome)
        if not outcome.ok:
            logger.debug(
                "Request failed",
                extra={
                    "method": request.method,
                    "url": request.url,
                    "outcome": outcome.status.value,
                    "reason": outcome.reason.value if outcome.reason else None,
                    "status": outcome.http_status,
                    "attempts": outcome.attempts,
                },
            )
        return outcome
