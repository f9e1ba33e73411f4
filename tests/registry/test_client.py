"""
Tests for NuGetClient against the in-process registry.

Failed transport outcomes map onto RegistryApiError subclasses:
409 on push -> PackageExistsError, 400 -> InvalidPackageError,
401/403/missing key -> AuthenticationError, 404 -> PackageNotFoundError.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest

from nugetkit.connectors import Credentials, FailureReason
from nugetkit.errors import (
    AuthenticationError,
    InvalidPackageError,
    PackageExistsError,
    PackageNotFoundError,
    TransportFailureError,
    UnexpectedResponseError,
)
from nugetkit.registry import NuGetClient, ServiceIndexResolver
from nugetkit.versioning import parse_version
from tests.fixtures.mock_registry import MockRegistry, extract_nuspec, make_transport, sample_archive, serve


@asynccontextmanager
async def client_for(registry: MockRegistry, api_key: str | None = "test-key", **kwargs):
    async with serve(registry) as url, make_transport() as transport:
        credentials = Credentials(url, api_key) if api_key else None
        yield NuGetClient(ServiceIndexResolver(transport), transport, url, credentials=credentials, **kwargs)


class TestPush:
    """Tests for NuGetClient.push."""

    @pytest.mark.asyncio
    async def test_push_stores_package(self) -> None:
        registry = MockRegistry()
        archive = sample_archive()
        async with client_for(registry) as client:
            outcome = await client.push(archive.data)
        assert outcome.http_status == 201
        assert registry.get("Sample.Pkg", "1.0.0").data == archive.data
        [call] = registry.calls("PUT", "/api/v2/package")
        assert call.api_key == "test-key"

    @pytest.mark.asyncio
    async def test_duplicate_push_conflicts(self) -> None:
        registry = MockRegistry()
        archive = sample_archive()
        async with client_for(registry) as client:
            await client.push(archive.data)
            with pytest.raises(PackageExistsError) as exc_info:
                await client.push(archive.data)
        assert exc_info.value.outcome.http_status == 409
        assert exc_info.value.outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_invalid_package(self) -> None:
        async with client_for(MockRegistry()) as client:
            with pytest.raises(InvalidPackageError):
                await client.push(b"not a zip")

    @pytest.mark.asyncio
    async def test_missing_key_fails_without_request(self) -> None:
        registry = MockRegistry()
        async with client_for(registry, api_key=None) as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.push(sample_archive().data)
        assert exc_info.value.outcome.attempts == 0
        assert registry.calls("PUT") == []

    @pytest.mark.asyncio
    async def test_rejected_key(self) -> None:
        async with client_for(MockRegistry(), api_key="wrong") as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.push(sample_archive().data)
        assert exc_info.value.outcome.reason == FailureReason.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self) -> None:
        """A push that got a 5xx is reported, never repeated."""
        registry = MockRegistry(push_status=502)
        async with client_for(registry) as client:
            with pytest.raises(TransportFailureError):
                await client.push(sample_archive().data)
        assert len(registry.calls("PUT", "/api/v2/package")) == 1


class TestToggleVisibility:
    """Tests for unlist and relist."""

    @pytest.mark.asyncio
    async def test_unlist_and_relist(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        async with client_for(registry) as client:
            await client.unlist("Sample.Pkg", parse_version("1.0.0"))
            assert registry.get("Sample.Pkg", "1.0.0").listed is False
            await client.relist("Sample.Pkg", parse_version("1.0.0"))
        assert registry.get("Sample.Pkg", "1.0.0").listed is True
        assert [r.path for r in registry.calls("DELETE")] == ["/api/v2/package/Sample.Pkg/1.0.0"]
        assert len(registry.calls("PUT", "/api/v2/package/Sample.Pkg")) == 1

    @pytest.mark.asyncio
    async def test_relist_with_post(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0", listed=False)
        async with client_for(registry, relist_method="POST") as client:
            await client.relist("Sample.Pkg", parse_version("1.0.0"))
        assert len(registry.calls("POST")) == 1

    @pytest.mark.asyncio
    async def test_unknown_package(self) -> None:
        async with client_for(MockRegistry()) as client:
            with pytest.raises(PackageNotFoundError):
                await client.unlist("Missing.Pkg", parse_version("1.0.0"))

    @pytest.mark.asyncio
    async def test_forbidden(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        async with client_for(registry, api_key="wrong") as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await client.unlist("Sample.Pkg", parse_version("1.0.0"))
        assert exc_info.value.outcome.reason == FailureReason.FORBIDDEN

    @pytest.mark.asyncio
    async def test_conflict_is_unexpected(self) -> None:
        """409 is only meaningful for push; elsewhere the caller decides."""
        registry = MockRegistry(toggle_conflict=True)
        registry.add("Sample.Pkg", "1.0.0", listed=False)
        async with client_for(registry) as client:
            with pytest.raises(UnexpectedResponseError) as exc_info:
                await client.unlist("Sample.Pkg", parse_version("1.0.0"))
        assert exc_info.value.outcome.reason == FailureReason.CONFLICT


class TestQueries:
    """Tests for search, registration and flat-container reads."""

    @pytest.mark.asyncio
    async def test_search(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0", description="First")
        registry.add("Sample.Pkg", "1.1.0", description="Second")
        registry.add("Sample.Pkg", "2.0.0-beta")
        registry.add("Other", "1.0.0")
        async with client_for(registry, api_key=None) as client:
            page = await client.search("sample", take=5, package_type="Dependency")
        assert page.total_hits == 1
        [result] = page.data
        assert (result.id, result.version, result.description) == ("Sample.Pkg", "1.1.0", "Second")
        assert result.authors == ["Jane Doe"]
        [call] = registry.calls("GET", "/query")
        assert call.query == {
            "q": "sample",
            "skip": "0",
            "take": "5",
            "prerelease": "false",
            "semVerLevel": "2.0.0",
            "packageType": "Dependency",
        }

    @pytest.mark.asyncio
    async def test_search_prerelease(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "2.0.0-beta")
        async with client_for(registry, api_key=None) as client:
            page = await client.search("sample", prerelease=True)
        assert page.data[0].version == "2.0.0-beta"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("skip", "take"), [(-1, 20), (0, 0), (0, 1001)])
    async def test_search_bounds(self, skip: int, take: int) -> None:
        async with client_for(MockRegistry(), api_key=None) as client:
            with pytest.raises(ValueError):
                await client.search("x", skip=skip, take=take)

    @pytest.mark.asyncio
    async def test_registration_leaves_inline(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        registry.add("Sample.Pkg", "1.1.0", listed=False)
        async with client_for(registry, api_key=None) as client:
            leaves = await client.registration_leaves("Sample.Pkg")
        assert [(leaf.catalog_entry.version, leaf.catalog_entry.listed) for leaf in leaves] == [
            ("1.0.0", True),
            ("1.1.0", False),
        ]
        assert [r.path for r in registry.calls("GET", "/registration")] == ["/registration/sample.pkg/index.json"]

    @pytest.mark.asyncio
    async def test_registration_pages_fetched(self) -> None:
        """Pages without inlined items are fetched separately."""
        registry = MockRegistry(inline_pages=False)
        registry.add("Sample.Pkg", "1.0.0")
        async with client_for(registry, api_key=None) as client:
            leaves = await client.registration_leaves("Sample.Pkg")
        assert len(leaves) == 1
        assert len(registry.calls("GET", "/registration")) == 2

    @pytest.mark.asyncio
    async def test_metadata(self) -> None:
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0", description="Hello")
        async with client_for(registry, api_key=None) as client:
            entry = await client.metadata("sample.pkg", parse_version("1.0"))
            with pytest.raises(PackageNotFoundError):
                await client.metadata("Sample.Pkg", parse_version("9.0.0"))
        assert entry.description == "Hello"

    @pytest.mark.asyncio
    async def test_unknown_registration(self) -> None:
        async with client_for(MockRegistry(), api_key=None) as client:
            with pytest.raises(PackageNotFoundError):
                await client.registration("Missing.Pkg")

    @pytest.mark.asyncio
    async def test_versions_sorted(self) -> None:
        registry = MockRegistry()
        for version in ("1.10.0", "1.2.0", "1.2.0-RC.1"):
            registry.add("Sample.Pkg", version)
        async with client_for(registry, api_key=None) as client:
            versions = await client.versions("Sample.Pkg")
        assert [str(v) for v in versions] == ["1.2.0-rc.1", "1.2.0", "1.10.0"]

    @pytest.mark.asyncio
    async def test_download_and_nuspec(self) -> None:
        registry = MockRegistry()
        archive = sample_archive()
        async with client_for(registry) as client:
            await client.push(archive.data)
            data = await client.download("Sample.Pkg", parse_version("1.0.0"))
            nuspec = await client.nuspec("Sample.Pkg", parse_version("1.0.0"))
        assert data == archive.data
        assert nuspec == extract_nuspec(archive.data)
        assert registry.calls("GET", "/flatcontainer/sample.pkg/1.0.0/sample.pkg.1.0.0.nupkg")

    @pytest.mark.asyncio
    async def test_reads_never_carry_api_key(self) -> None:
        """Query resources can live on other hosts; only writes get the key."""
        registry = MockRegistry()
        registry.add("Sample.Pkg", "1.0.0")
        async with client_for(registry) as client:
            await client.search("sample")
            await client.metadata("Sample.Pkg", parse_version("1.0.0"))
            await client.versions("Sample.Pkg")
            await client.unlist("Sample.Pkg", parse_version("1.0.0"))
        reads = registry.calls("GET")
        paths = {r.path for r in reads}
        assert {"/query", "/registration/sample.pkg/index.json", "/flatcontainer/sample.pkg/index.json"} <= paths
        assert [r.api_key for r in reads] == [None] * len(reads)
        [delete] = registry.calls("DELETE")
        assert delete.api_key == "test-key"
