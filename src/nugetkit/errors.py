"""
Error taxonomy for nugetkit.

Every error carries a stable dotted ``code`` so scripts can branch on the kind
of failure instead of on message text, plus an optional ``help`` hint shown by
the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nugetkit.connectors.types import RequestOutcome


class NugetkitError(Exception):
    """Base class for all nugetkit errors."""

    code = "nugetkit::error"
    help: str | None = None

    def __init__(self, message: str, *, help: str | None = None) -> None:  # noqa: A002
        super().__init__(message)
        if help is not None:
            self.help = help


class VersionError(NugetkitError, ValueError):
    """Raised when a semantic version string cannot be parsed."""

    code = "nugetkit::version::invalid"
    help = "Versions look like 1.2.3, 1.2.3-beta.1 or 1.2.3.4."


class VersionRangeError(NugetkitError, ValueError):
    """Raised when a version range is malformed or describes an empty interval."""

    code = "nugetkit::version::invalid_range"
    help = "Ranges look like 1.0, [1.0], [1.0,2.0), (,2.0] or 1.*."


class ManifestError(NugetkitError):
    """Base class for manifest loading errors."""

    code = "nugetkit::manifest::error"


class ManifestValidationError(ManifestError):
    """Raised when a manifest has one or more validation issues.

    All issues found are collected before raising, so callers can report
    them together.
    """

    code = "nugetkit::manifest::invalid"
    help = "Fix every listed field and try again."

    def __init__(self, issues: list[ValidationIssue] | tuple[ValidationIssue, ...]) -> None:
        self.issues = tuple(issues)
        lines = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(f"Manifest validation failed with {len(self.issues)} issue(s):\n{lines}")


@dataclass(frozen=True)
class ValidationIssue:
    """A single manifest validation failure: the offending field and why."""

    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


class BuildError(NugetkitError):
    """Base class for archive construction failures."""

    code = "nugetkit::build::error"


class BuildValidationError(BuildError):
    """Raised when the manifest handed to the builder is invalid."""

    code = "nugetkit::build::invalid_manifest"

    def __init__(self, cause: ManifestValidationError) -> None:
        self.issues = cause.issues
        super().__init__(str(cause))


class UnreadableContentError(BuildError):
    """Raised when a declared content file cannot be read at build time."""

    code = "nugetkit::build::unreadable_content"
    help = "The file may have been moved or deleted after validation. Restore it and rebuild."

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        detail = f": {reason}" if reason else ""
        super().__init__(f"Content file {path!r} could not be read{detail}")


class EntryTooLargeError(BuildError):
    """Raised when a single archive entry exceeds the configured size ceiling."""

    code = "nugetkit::build::entry_too_large"

    def __init__(self, path: str, size: int, limit: int) -> None:
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(f"Archive entry {path!r} is {size} bytes, limit is {limit} bytes")


class ArchiveFormatError(NugetkitError):
    """Raised when a package archive is corrupt or missing required entries."""

    code = "nugetkit::archive::invalid"


class ResolutionError(NugetkitError):
    """Base class for service index resolution failures."""

    code = "nugetkit::index::error"


class InvalidSourceError(ResolutionError):
    """Raised when a registry URL is not an absolute http(s) URL."""

    code = "nugetkit::index::invalid_source"
    help = "Sources look like https://api.nuget.org/v3/index.json"


class RegistryUnreachableError(ResolutionError):
    """Raised when the service index could not be fetched."""

    code = "nugetkit::index::unreachable"
    help = "Check the source URL and your network connection, then try again."

    def __init__(self, message: str, outcome: RequestOutcome | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class MalformedIndexError(ResolutionError):
    """Raised when the service index document is not a valid index."""

    code = "nugetkit::index::malformed"


class NoMatchingResourceError(ResolutionError):
    """Raised when the index advertises no supported version of a resource."""

    code = "nugetkit::index::no_matching_resource"

    def __init__(self, resource_type: str, advertised: tuple[str, ...] = ()) -> None:
        self.resource_type = resource_type
        self.advertised = advertised
        detail = f" (advertised: {', '.join(advertised)})" if advertised else ""
        super().__init__(f"Registry does not offer a supported {resource_type} resource{detail}")


class RegistryApiError(NugetkitError):
    """Base class for errors reported by registry API calls."""

    code = "nugetkit::api::error"

    def __init__(
        self,
        message: str,
        outcome: RequestOutcome | None = None,
        *,
        help: str | None = None,  # noqa: A002
    ) -> None:
        super().__init__(message, help=help)
        self.outcome = outcome


class PackageExistsError(RegistryApiError):
    """Raised when publishing an id/version the registry already has."""

    code = "nugetkit::api::package_exists"
    help = "Bump the package version and publish again."


class PackageNotFoundError(RegistryApiError):
    """Raised when the registry does not know the requested package."""

    code = "nugetkit::api::package_not_found"


class InvalidPackageError(RegistryApiError):
    """Raised when the registry rejects an uploaded package as invalid."""

    code = "nugetkit::api::invalid_package"


class AuthenticationError(RegistryApiError):
    """Raised when the API key is missing or rejected."""

    code = "nugetkit::api::bad_api_key"
    help = "Pass --api-key or set NUGETKIT_API_KEY to a key with push rights for this package."


class UnexpectedResponseError(RegistryApiError):
    """Raised on a response status the operation does not expect."""

    code = "nugetkit::api::unexpected_response"


class TransportFailureError(RegistryApiError):
    """Raised when a request exhausted its retries without a usable response."""

    code = "nugetkit::api::transport_failure"


class ConfigError(NugetkitError):
    """Raised when a configuration file or environment variable is invalid."""

    code = "nugetkit::config::invalid"
    help = "Check the config file and NUGETKIT_* environment variables."
