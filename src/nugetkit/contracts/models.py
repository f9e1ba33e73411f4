"""
Wire contracts for NuGet v3 registry documents.

Registry documents are parsed leniently: unknown fields are ignored and
optional fields may be absent. Field aliases follow the JSON names
(``@id``, ``@type``, camelCase).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    """Base for registry documents."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    @classmethod
    def from_json(cls, data: bytes | str) -> Any:
        """Deserialize from JSON using orjson."""
        if isinstance(data, str):
            data = data.encode()
        return cls.model_validate(orjson.loads(data))

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson, with wire aliases."""
        return orjson.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True))


def _as_list(value: Any) -> Any:
    # Several fields are either a single string or a list of strings
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class IndexResource(WireModel):
    """One entry in a service index."""

    url: str = Field(..., alias="@id", min_length=1)
    types: list[str] = Field(..., alias="@type")
    comment: str | None = None

    @field_validator("types", mode="before")
    @classmethod
    def validate_types(cls, v: Any) -> Any:
        """Accept a single ``@type`` string as well as a list."""
        if isinstance(v, str):
            return [v]
        return v


class ServiceIndex(WireModel):
    """Registry root document."""

    version: str = Field(..., min_length=1)
    resources: list[IndexResource] = Field(default_factory=list)


class SearchVersion(WireModel):
    version: str
    downloads: int = 0
    url: str | None = Field(default=None, alias="@id")


class SearchResult(WireModel):
    """One package in a search response."""

    id: str
    version: str
    description: str | None = None
    title: str | None = None
    summary: str | None = None
    authors: list[str] = Field(default_factory=list)
    owners: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    total_downloads: int | None = Field(default=None, alias="totalDownloads")
    verified: bool | None = None
    project_url: str | None = Field(default=None, alias="projectUrl")
    registration: str | None = None
    versions: list[SearchVersion] = Field(default_factory=list)

    @field_validator("authors", "owners", mode="before")
    @classmethod
    def validate_people(cls, v: Any) -> Any:
        return _as_list(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split()
        return v if v is not None else []


class SearchResponse(WireModel):
    """Search endpoint response."""

    total_hits: int = Field(..., alias="totalHits", ge=0)
    data: list[SearchResult] = Field(default_factory=list)


class CatalogDependency(WireModel):
    id: str
    range: str | None = None


class DependencyGroup(WireModel):
    target_framework: str | None = Field(default=None, alias="targetFramework")
    dependencies: list[CatalogDependency] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def validate_dependencies(cls, v: Any) -> Any:
        return v if v is not None else []


class Deprecation(WireModel):
    reasons: list[str] = Field(default_factory=list)
    message: str | None = None


class CatalogEntry(WireModel):
    """Package metadata from a registration leaf."""

    id: str
    version: str
    title: str | None = None
    summary: str | None = None
    description: str | None = None
    authors: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    listed: bool | None = None
    published: datetime | None = None
    project_url: str | None = Field(default=None, alias="projectUrl")
    license_url: str | None = Field(default=None, alias="licenseUrl")
    license_expression: str | None = Field(default=None, alias="licenseExpression")
    icon_url: str | None = Field(default=None, alias="iconUrl")
    require_license_acceptance: bool | None = Field(default=None, alias="requireLicenseAcceptance")
    dependency_groups: list[DependencyGroup] = Field(default_factory=list, alias="dependencyGroups")
    deprecation: Deprecation | None = None

    @field_validator("authors", mode="before")
    @classmethod
    def validate_authors(cls, v: Any) -> Any:
        return _as_list(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.split()
        return v if v is not None else []

    @field_validator("dependency_groups", mode="before")
    @classmethod
    def validate_groups(cls, v: Any) -> Any:
        return v if v is not None else []


class RegistrationLeaf(WireModel):
    catalog_entry: CatalogEntry = Field(..., alias="catalogEntry")
    package_content: str | None = Field(default=None, alias="packageContent")


class RegistrationPage(WireModel):
    """A page of registration leaves; ``items`` is absent when the page is not inlined."""

    url: str = Field(..., alias="@id")
    count: int = 0
    lower: str
    upper: str
    parent: str | None = None
    items: list[RegistrationLeaf] | None = None


class RegistrationIndex(WireModel):
    """Registration index for one package id."""

    count: int = 0
    items: list[RegistrationPage] = Field(default_factory=list)


class PackageVersions(WireModel):
    """Flat-container version list (lowercase normalized versions)."""

    versions: list[str] = Field(default_factory=list)
