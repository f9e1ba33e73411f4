"""Service index resolution and the NuGet v3 registry API client."""

from nugetkit.registry.client import NuGetClient
from nugetkit.registry.resolver import ServiceIndexResolver, normalize_registry_url
from nugetkit.registry.resources import (
    CATALOG,
    PACKAGE_BASE_ADDRESS,
    PACKAGE_PUBLISH,
    REGISTRATIONS_BASE_URL,
    REPOSITORY_SIGNATURES,
    SEARCH_AUTOCOMPLETE,
    SEARCH_QUERY,
    SUPPORTED_VERSIONS,
    SYMBOL_PACKAGE_PUBLISH,
    Endpoint,
    advertised_endpoints,
    find_resource,
    split_resource_type,
)

__all__ = [
    "CATALOG",
    "PACKAGE_BASE_ADDRESS",
    "PACKAGE_PUBLISH",
    "REGISTRATIONS_BASE_URL",
    "REPOSITORY_SIGNATURES",
    "SEARCH_AUTOCOMPLETE",
    "SEARCH_QUERY",
    "SUPPORTED_VERSIONS",
    "SYMBOL_PACKAGE_PUBLISH",
    "Endpoint",
    "NuGetClient",
    "ServiceIndexResolver",
    "advertised_endpoints",
    "find_resource",
    "normalize_registry_url",
    "split_resource_type",
]
