"""
Workflow states and outcomes.

Every workflow ends in exactly one TerminalState. The exit code depends only
on the terminal state and the error class, never on message text, so scripts
can branch on the kind of outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from nugetkit.connectors.types import Credentials, FailureReason, RequestOutcome
from nugetkit.errors import (
    ArchiveFormatError,
    AuthenticationError,
    BuildError,
    ConfigError,
    InvalidSourceError,
    ManifestError,
    NugetkitError,
    RegistryApiError,
    RegistryUnreachableError,
    VersionError,
    VersionRangeError,
)


class Step(str, Enum):
    """Intermediate workflow states, recorded in the outcome trail."""

    START = "START"
    BUILD_ARCHIVE = "BUILD_ARCHIVE"
    RESOLVE_INDEX = "RESOLVE_INDEX"
    PROBE = "PROBE"
    QUERY = "QUERY"
    UPLOAD = "UPLOAD"
    TOGGLE_VISIBILITY = "TOGGLE_VISIBILITY"
    FETCH_METADATA = "FETCH_METADATA"
    VALIDATE_CREDENTIALS = "VALIDATE_CREDENTIALS"


class TerminalState(str, Enum):
    """How a workflow ended."""

    SUCCESS = "SUCCESS"
    RESULTS_PAGE = "RESULTS_PAGE"  # Search
    METADATA = "METADATA"  # View
    CONFLICT = "CONFLICT"  # Publish: id/version already exists
    NOT_FOUND = "NOT_FOUND"  # Unlist/Relist/View: unknown package
    FAILURE = "FAILURE"

    @property
    def is_success(self) -> bool:
        return self in (TerminalState.SUCCESS, TerminalState.RESULTS_PAGE, TerminalState.METADATA)


class ViewPart(str, Enum):
    """What the View workflow shows."""

    SUMMARY = "summary"
    VERSIONS = "versions"
    README = "readme"
    ICON = "icon"


class ExitCode(IntEnum):
    """Process exit codes by outcome category."""

    SUCCESS = 0
    FAILURE = 1
    INVALID_INPUT = 2
    CONFLICT = 3
    NOT_FOUND = 4
    AUTHENTICATION = 5


# Local errors the user fixes by changing their input
INPUT_ERRORS: tuple[type[Exception], ...] = (
    ManifestError,
    BuildError,
    ArchiveFormatError,
    VersionError,
    VersionRangeError,
    InvalidSourceError,
    ConfigError,
)


def _is_auth_failure(error: NugetkitError) -> bool:
    if isinstance(error, AuthenticationError):
        return True
    outcome = getattr(error, "outcome", None)
    if isinstance(error, (RegistryApiError, RegistryUnreachableError)) and outcome is not None:
        return outcome.reason in (FailureReason.UNAUTHENTICATED, FailureReason.FORBIDDEN)
    return False


def exit_code_for(state: TerminalState, error: BaseException | None = None) -> ExitCode:
    """Map a terminal state (and the error behind a failure) to an exit code."""
    if state.is_success:
        return ExitCode.SUCCESS
    if state == TerminalState.CONFLICT:
        return ExitCode.CONFLICT
    if state == TerminalState.NOT_FOUND:
        return ExitCode.NOT_FOUND
    if isinstance(error, INPUT_ERRORS):
        return ExitCode.INVALID_INPUT
    if isinstance(error, NugetkitError) and _is_auth_failure(error):
        return ExitCode.AUTHENTICATION
    return ExitCode.FAILURE


def _public(data: dict[str, Any]) -> dict[str, Any]:
    # Credentials are dataclasses; serializers would otherwise dump the key
    return {
        key: {"registry_url": value.registry_url} if isinstance(value, Credentials) else value
        for key, value in data.items()
    }


@dataclass
class WorkflowOutcome:
    """
    Result of one workflow run.

    Attributes:
        command: Workflow name (``ping``, ``publish``, ...).
        state: Terminal state.
        message: Stable one-line summary for humans.
        data: Structured result (search page, metadata, endpoints, ...).
        error: The error behind a non-success state, if any.
        request: Transport outcome of the decisive registry call, if any.
        trail: States visited, in order, ending with the terminal state.
    """

    command: str
    state: TerminalState
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error: NugetkitError | None = None
    request: RequestOutcome | None = None
    trail: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.state.is_success

    @property
    def exit_code(self) -> int:
        return int(exit_code_for(self.state, self.error))

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable view for ``--json`` output."""
        result: dict[str, Any] = {
            "command": self.command,
            "state": self.state.value,
            "message": self.message,
            "exit_code": self.exit_code,
            "trail": list(self.trail),
        }
        if self.data:
            result["data"] = _public(self.data)
        if self.error is not None:
            result["error"] = {"code": self.error.code, "message": str(self.error)}
            if self.error.help:
                result["error"]["help"] = self.error.help
        if self.request is not None:
            result["attempts"] = self.request.attempts
            if self.request.http_status is not None:
                result["http_status"] = self.request.http_status
        return result
