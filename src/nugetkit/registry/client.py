"""
NuGet v3 registry API client.

Composes the service index resolver and the authenticated transport into
typed registry operations. Transport outcomes that are not successes are
mapped onto RegistryApiError subclasses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal, TypeVar

import orjson
from pydantic import ValidationError

from nugetkit.connectors.types import FailureReason, FileUpload, RegistryRequest, RequestOutcome
from nugetkit.contracts import (
    CatalogEntry,
    PackageVersions,
    RegistrationIndex,
    RegistrationLeaf,
    RegistrationPage,
    SearchResponse,
    WireModel,
)
from nugetkit.errors import (
    AuthenticationError,
    InvalidPackageError,
    PackageExistsError,
    PackageNotFoundError,
    RegistryApiError,
    TransportFailureError,
    UnexpectedResponseError,
    VersionError,
)
from nugetkit.registry.resources import (
    PACKAGE_BASE_ADDRESS,
    PACKAGE_PUBLISH,
    REGISTRATIONS_BASE_URL,
    SEARCH_QUERY,
    Endpoint,
)
from nugetkit.versioning import SemanticVersion, parse_version

if TYPE_CHECKING:
    from nugetkit.connectors.backoff import RetryPolicy
    from nugetkit.connectors.transport import AuthenticatedTransport
    from nugetkit.connectors.types import Credentials
    from nugetkit.registry.resolver import ServiceIndexResolver

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=WireModel)

MAX_SEARCH_TAKE = 1000
SEM_VER_LEVEL = "2.0.0"


class NuGetClient:
    """
    Client for one registry.

    Usage:
        client = NuGetClient(resolver, transport, "https://api.nuget.org/v3/index.json")
        results = await client.search("json", take=10)
    """

    def __init__(
        self,
        resolver: ServiceIndexResolver,
        transport: AuthenticatedTransport,
        registry_url: str,
        *,
        credentials: Credentials | None = None,
        policy: RetryPolicy | None = None,
        relist_method: Literal["PUT", "POST"] = "PUT",
    ) -> None:
        self._resolver = resolver
        self._transport = transport
        self._registry_url = registry_url
        self._credentials = credentials
        self._policy = policy
        self._relist_method = relist_method

    @property
    def registry_url(self) -> str:
        return self._registry_url

    async def endpoint(self, resource_type: str) -> Endpoint:
        """Resolve the endpoint for a resource type."""
        return await self._resolver.find(self._registry_url, resource_type)

    async def _send(self, request: RegistryRequest) -> RequestOutcome:
        # Read resources may live on other hosts; the key goes to authenticated operations only
        credentials = self._credentials if request.requires_auth else None
        return await self._transport.send(request, credentials, self._policy)

    @staticmethod
    def _error(
        outcome: RequestOutcome,
        action: str,
        overrides: dict[FailureReason, type[RegistryApiError]] | None = None,
    ) -> RegistryApiError:
        """Map a failed outcome onto a RegistryApiError."""
        message = f"{action} failed: {outcome.describe()}"
        if outcome.is_retryable:
            return TransportFailureError(message, outcome)
        if overrides and outcome.reason in overrides:
            return overrides[outcome.reason](message, outcome)
        if outcome.reason in (FailureReason.UNAUTHENTICATED, FailureReason.FORBIDDEN):
            return AuthenticationError(message, outcome)
        if outcome.reason == FailureReason.NOT_FOUND:
            return PackageNotFoundError(message, outcome)
        return UnexpectedResponseError(message, outcome)

    @staticmethod
    def _decode(model: type[ModelT], outcome: RequestOutcome, action: str) -> ModelT:
        try:
            return model.from_json(outcome.payload)
        except (orjson.JSONDecodeError, ValidationError) as e:
            msg = f"{action} returned a malformed {model.__name__} document: {e}"
            raise UnexpectedResponseError(msg, outcome) from e

    # === Publishing ===

    async def push(self, data: bytes) -> RequestOutcome:
        """
        Upload a package archive.

        Args:
            data: Raw .nupkg bytes.

        Returns:
            The successful outcome (HTTP 2xx).

        Raises:
            PackageExistsError: On HTTP 409.
            InvalidPackageError: On HTTP 400.
            AuthenticationError: On missing credentials, 401 or 403.
            TransportFailureError: On transient failure (never retried after a response).
            ResolutionError: If the publish endpoint cannot be resolved.
        """
        endpoint = await self.endpoint(PACKAGE_PUBLISH)
        request = RegistryRequest(
            "PUT",
            endpoint.url,
            upload=FileUpload("package", "package.nupkg", data),
            idempotent=False,
            requires_auth=True,
        )
        outcome = await self._send(request)
        if outcome.ok:
            logger.info(
                "Package pushed",
                extra={"status": outcome.http_status, "size_bytes": len(data), "attempts": outcome.attempts},
            )
            return outcome
        raise self._error(
            outcome,
            "Publish",
            {
                FailureReason.CONFLICT: PackageExistsError,
                FailureReason.BAD_REQUEST: InvalidPackageError,
            },
        )

    async def _toggle(self, method: str, package_id: str, version: SemanticVersion, action: str) -> RequestOutcome:
        endpoint = await self.endpoint(PACKAGE_PUBLISH)
        request = RegistryRequest(
            method,
            endpoint.join(package_id, version.normalized),
            idempotent=False,
            requires_auth=True,
        )
        outcome = await self._send(request)
        if outcome.ok:
            return outcome
        raise self._error(outcome, action)

    async def unlist(self, package_id: str, version: SemanticVersion) -> RequestOutcome:
        """Hide a package version from search (DELETE).

        Raises:
            PackageNotFoundError: On HTTP 404.
            AuthenticationError: On missing credentials, 401 or 403.
        """
        return await self._toggle("DELETE", package_id, version, "Unlist")

    async def relist(self, package_id: str, version: SemanticVersion) -> RequestOutcome:
        """Make an unlisted package version visible again.

        Raises:
            PackageNotFoundError: On HTTP 404.
            AuthenticationError: On missing credentials, 401 or 403.
        """
        return await self._toggle(self._relist_method, package_id, version, "Relist")

    # === Queries ===

    async def search(
        self,
        query: str = "",
        *,
        skip: int = 0,
        take: int = 20,
        prerelease: bool = False,
        package_type: str | None = None,
    ) -> SearchResponse:
        """
        Query the search service. Pagination is left to the caller.

        Raises:
            ValueError: If skip/take are out of range.
        """
        if skip < 0:
            raise ValueError(f"skip must be >= 0, got {skip}")
        if not 0 < take <= MAX_SEARCH_TAKE:
            raise ValueError(f"take must be in 1..{MAX_SEARCH_TAKE}, got {take}")

        endpoint = await self.endpoint(SEARCH_QUERY)
        params = {
            "q": query,
            "skip": str(skip),
            "take": str(take),
            "prerelease": "true" if prerelease else "false",
            "semVerLevel": SEM_VER_LEVEL,
        }
        if package_type:
            params["packageType"] = package_type
        outcome = await self._send(RegistryRequest.get(endpoint.url, params))
        if not outcome.ok:
            raise self._error(outcome, "Search")
        return self._decode(SearchResponse, outcome, "Search")

    async def registration(self, package_id: str) -> RegistrationIndex:
        """Fetch the registration index for a package id.

        Raises:
            PackageNotFoundError: If the registry does not know the id.
        """
        endpoint = await self.endpoint(REGISTRATIONS_BASE_URL)
        outcome = await self._send(RegistryRequest.get(endpoint.join(package_id.lower(), "index.json")))
        if not outcome.ok:
            raise self._error(outcome, f"Registration lookup for {package_id}")
        return self._decode(RegistrationIndex, outcome, "Registration lookup")

    async def registration_page(self, url: str) -> RegistrationPage:
        """Fetch a registration page that was not inlined in the index."""
        outcome = await self._send(RegistryRequest.get(url))
        if not outcome.ok:
            raise self._error(outcome, "Registration page fetch")
        return self._decode(RegistrationPage, outcome, "Registration page fetch")

    async def registration_leaves(self, package_id: str) -> list[RegistrationLeaf]:
        """All registration leaves for a package id, fetching non-inlined pages."""
        index = await self.registration(package_id)
        leaves: list[RegistrationLeaf] = []
        for page in index.items:
            if page.items is None:
                page = await self.registration_page(page.url)
            leaves.extend(page.items or [])
        return leaves

    async def metadata(self, package_id: str, version: SemanticVersion) -> CatalogEntry:
        """Catalog entry for one package version.

        Raises:
            PackageNotFoundError: If the id or the version is unknown.
        """
        for leaf in await self.registration_leaves(package_id):
            try:
                leaf_version = parse_version(leaf.catalog_entry.version)
            except VersionError:
                continue
            if leaf_version == version:
                return leaf.catalog_entry
        msg = f"Package {package_id} {version} not found"
        raise PackageNotFoundError(msg)

    async def versions(self, package_id: str) -> list[SemanticVersion]:
        """All versions of a package from the flat container, sorted ascending.

        Unparseable version strings are skipped.
        """
        endpoint = await self.endpoint(PACKAGE_BASE_ADDRESS)
        outcome = await self._send(RegistryRequest.get(endpoint.join(package_id.lower(), "index.json")))
        if not outcome.ok:
            raise self._error(outcome, f"Version list for {package_id}")
        listing = self._decode(PackageVersions, outcome, "Version list")
        parsed: list[SemanticVersion] = []
        for raw in listing.versions:
            try:
                parsed.append(parse_version(raw))
            except VersionError:
                logger.debug("Skipping unparseable version", extra={"version_text": raw})
        return sorted(parsed)

    async def _content(self, package_id: str, version: SemanticVersion, filename: str, action: str) -> bytes:
        endpoint = await self.endpoint(PACKAGE_BASE_ADDRESS)
        url = endpoint.join(package_id.lower(), version.lower(), filename)
        outcome = await self._send(RegistryRequest.get(url))
        if not outcome.ok:
            raise self._error(outcome, action)
        return outcome.payload

    async def nuspec(self, package_id: str, version: SemanticVersion) -> bytes:
        """Download the nuspec document of a package version."""
        return await self._content(package_id, version, f"{package_id.lower()}.nuspec", "Nuspec download")

    async def download(self, package_id: str, version: SemanticVersion) -> bytes:
        """Download the .nupkg archive of a package version."""
        filename = f"{package_id.lower()}.{version.lower()}.nupkg"
        return await self._content(package_id, version, filename, "Package download")
