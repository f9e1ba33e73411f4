"""Service index resource types and versioned endpoint selection.

A resource ``@type`` is ``Name/Version``, e.g. ``SearchQueryService/3.5.0``.
A registry may advertise several versions of one logical resource; the
client picks the highest version it supports that the registry also
advertises and never a version it does not support.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from nugetkit.errors import NoMatchingResourceError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nugetkit.contracts import ServiceIndex

PACKAGE_PUBLISH = "PackagePublish"
SEARCH_QUERY = "SearchQueryService"
SEARCH_AUTOCOMPLETE = "SearchAutocompleteService"
REGISTRATIONS_BASE_URL = "RegistrationsBaseUrl"
PACKAGE_BASE_ADDRESS = "PackageBaseAddress"
CATALOG = "Catalog"
REPOSITORY_SIGNATURES = "RepositorySignatures"
SYMBOL_PACKAGE_PUBLISH = "SymbolPackagePublish"

# Client-supported API versions per resource type, highest preference first
SUPPORTED_VERSIONS: dict[str, tuple[str, ...]] = {
    PACKAGE_PUBLISH: ("2.0.0",),
    SEARCH_QUERY: ("3.5.0", "3.0.0-rc", "3.0.0-beta"),
    SEARCH_AUTOCOMPLETE: ("3.5.0", "3.0.0-rc", "3.0.0-beta"),
    REGISTRATIONS_BASE_URL: ("3.6.0", "3.4.0", "3.0.0-rc", "3.0.0-beta"),
    PACKAGE_BASE_ADDRESS: ("3.0.0",),
    CATALOG: ("3.0.0",),
    REPOSITORY_SIGNATURES: ("5.0.0", "4.9.0", "4.7.0"),
    SYMBOL_PACKAGE_PUBLISH: ("4.9.0",),
}


@dataclass(frozen=True)
class Endpoint:
    """A resolved resource: its type, the chosen API version and its URL."""

    resource_type: str
    api_version: str
    url: str

    @property
    def type_string(self) -> str:
        return f"{self.resource_type}/{self.api_version}"

    def join(self, *segments: str) -> str:
        """Append path segments to the endpoint URL."""
        base = self.url.rstrip("/")
        return "/".join([base, *(segment.strip("/") for segment in segments)])


def split_resource_type(type_string: str) -> tuple[str, str] | None:
    """Split ``Name/Version`` into its parts.

    Returns:
        (name, version), or None when the type carries no version.
    """
    name, sep, version = type_string.strip().partition("/")
    if not sep or not name or not version or "/" in version:
        return None
    return name, version


def advertised_endpoints(index: ServiceIndex) -> list[Endpoint]:
    """Every versioned resource in the index, in document order.

    Entries without a parseable ``Name/Version`` type are skipped.
    """
    endpoints: list[Endpoint] = []
    for resource in index.resources:
        for type_string in resource.types:
            parts = split_resource_type(type_string)
            if parts is not None:
                endpoints.append(Endpoint(parts[0], parts[1], resource.url))
    return endpoints


def find_resource(
    index: ServiceIndex,
    resource_type: str,
    supported_versions: Sequence[str] | None = None,
) -> Endpoint:
    """Select the best endpoint for a resource type.

    Args:
        index: Service index to search.
        resource_type: Logical resource name, e.g. ``SearchQueryService``.
        supported_versions: Client-supported versions, highest preference
            first. Defaults to SUPPORTED_VERSIONS for the resource type.

    Returns:
        Endpoint for the highest supported version the index advertises.
        Among duplicate entries of that version the first one listed wins.

    Raises:
        NoMatchingResourceError: If no supported version is advertised.
    """
    if supported_versions is None:
        supported_versions = SUPPORTED_VERSIONS.get(resource_type, ())

    candidates = [
        endpoint
        for endpoint in advertised_endpoints(index)
        if endpoint.resource_type.lower() == resource_type.lower()
    ]
    for version in supported_versions:
        for endpoint in candidates:
            if endpoint.api_version.lower() == version.lower():
                return Endpoint(resource_type, version, endpoint.url)

    raise NoMatchingResourceError(
        resource_type,
        tuple(endpoint.api_version for endpoint in candidates),
    )
