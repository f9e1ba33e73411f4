"""Registry wire documents (pydantic models)."""

from nugetkit.contracts.models import (
    CatalogDependency,
    CatalogEntry,
    DependencyGroup,
    Deprecation,
    IndexResource,
    PackageVersions,
    RegistrationIndex,
    RegistrationLeaf,
    RegistrationPage,
    SearchResponse,
    SearchResult,
    SearchVersion,
    ServiceIndex,
    WireModel,
)

__all__ = [
    "CatalogDependency",
    "CatalogEntry",
    "DependencyGroup",
    "Deprecation",
    "IndexResource",
    "PackageVersions",
    "RegistrationIndex",
    "RegistrationLeaf",
    "RegistrationPage",
    "SearchResponse",
    "SearchResult",
    "SearchVersion",
    "ServiceIndex",
    "WireModel",
]
