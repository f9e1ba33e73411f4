"""Authenticated registry transport: retries, backoff, classification and metrics."""

from nugetkit.connectors.backoff import (
    RetryBudget,
    RetryPolicy,
    compute_backoff_delay,
    parse_retry_after,
)
from nugetkit.connectors.exporter import TransportMetricsExporter
from nugetkit.connectors.transport import AuthenticatedTransport, classify_status
from nugetkit.connectors.types import (
    API_KEY_HEADER,
    Credentials,
    FailureReason,
    FileUpload,
    OutcomeStatus,
    RegistryRequest,
    RequestOutcome,
    TransportConfig,
)

__all__ = [
    "API_KEY_HEADER",
    "AuthenticatedTransport",
    "Credentials",
    "FailureReason",
    "FileUpload",
    "OutcomeStatus",
    "RegistryRequest",
    "RequestOutcome",
    "RetryBudget",
    "RetryPolicy",
    "TransportConfig",
    "TransportMetricsExporter",
    "classify_status",
    "compute_backoff_delay",
    "parse_retry_after",
]
