"""
Tests for ServiceIndexResolver.

- One fetch per registry for the resolver's lifetime unless refreshed
- Concurrent first resolves share a single fetch
- Unreachable, malformed and non-3.x indexes are reported as distinct errors
"""

from __future__ import annotations

import asyncio

import pytest

from nugetkit.connectors import FailureReason
from nugetkit.errors import InvalidSourceError, MalformedIndexError, RegistryUnreachableError
from nugetkit.registry import SEARCH_QUERY, ServiceIndexResolver, normalize_registry_url
from tests.fixtures.mock_registry import INDEX_PATH, MockRegistry, make_transport, serve


class TestResolve:
    """Tests for resolve caching and refresh."""

    @pytest.mark.asyncio
    async def test_cached_after_first_fetch(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            first = await resolver.resolve(url)
            second = await resolver.resolve(url)
        assert first is second
        assert resolver.fetch_count == 1
        assert len(registry.calls("GET", INDEX_PATH)) == 1

    @pytest.mark.asyncio
    async def test_cache_key_normalized(self) -> None:
        """Scheme and host case do not create separate entries."""
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            await resolver.resolve(url)
            await resolver.resolve(url.replace("http://", "HTTP://"))
        assert resolver.fetch_count == 1

    @pytest.mark.asyncio
    async def test_refresh_replaces_entry(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            old = await resolver.resolve(url)
            registry.index_version = "3.1.0"
            new = await resolver.resolve(url, refresh=True)
            cached = await resolver.resolve(url)
        assert old.version == "3.0.0"
        assert new.version == "3.1.0"
        assert cached is new
        assert resolver.fetch_count == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_old_entry(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            old = await resolver.resolve(url)
            registry.index_status = 500
            with pytest.raises(RegistryUnreachableError):
                await resolver.resolve(url, refresh=True)
            assert resolver.cached(url) is old

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_fetch(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            results = await asyncio.gather(*(resolver.resolve(url) for _ in range(10)))
        assert all(result is results[0] for result in results)
        assert resolver.fetch_count == 1

    @pytest.mark.asyncio
    async def test_invalidate(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            await resolver.resolve(url)
            resolver.invalidate(url)
            assert resolver.cached(url) is None
            await resolver.resolve(url)
        assert resolver.fetch_count == 2

    @pytest.mark.asyncio
    async def test_find(self) -> None:
        registry = MockRegistry()
        async with serve(registry) as url, make_transport() as transport:
            endpoint = await ServiceIndexResolver(transport).find(url, SEARCH_QUERY)
        assert endpoint.api_version == "3.5.0"
        assert endpoint.url.endswith("/query")


class TestResolveErrors:
    """Tests for resolution failures."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "ftp://example.com/index.json", "/v3/index.json", "not a url"])
    async def test_invalid_source(self, url: str) -> None:
        async with make_transport() as transport:
            resolver = ServiceIndexResolver(transport)
            with pytest.raises(InvalidSourceError):
                await resolver.resolve(url)
        assert resolver.fetch_count == 0

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        """Transient failures are retried, then reported with the outcome."""
        registry = MockRegistry(index_status=503)
        async with serve(registry) as url, make_transport() as transport:
            with pytest.raises(RegistryUnreachableError) as exc_info:
                await ServiceIndexResolver(transport).resolve(url)
        outcome = exc_info.value.outcome
        assert outcome is not None
        assert outcome.reason == FailureReason.SERVER_ERROR
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_not_found_not_retried(self) -> None:
        registry = MockRegistry(index_status=404)
        async with serve(registry) as url, make_transport() as transport:
            with pytest.raises(RegistryUnreachableError) as exc_info:
                await ServiceIndexResolver(transport).resolve(url)
        assert exc_info.value.outcome.attempts == 1
        assert len(registry.calls("GET", INDEX_PATH)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [b"<html>not json</html>", b"[]", b'{"resources": []}', b'{"version": "3.0.0", "resources": [{"@id": "x"}]}'],
    )
    async def test_malformed(self, body: bytes) -> None:
        registry = MockRegistry(index_body=body)
        async with serve(registry) as url, make_transport() as transport:
            with pytest.raises(MalformedIndexError):
                await ServiceIndexResolver(transport).resolve(url)

    @pytest.mark.asyncio
    async def test_unsupported_index_version(self) -> None:
        registry = MockRegistry(index_version="2.0.0")
        async with serve(registry) as url, make_transport() as transport:
            with pytest.raises(MalformedIndexError, match="unsupported version"):
                await ServiceIndexResolver(transport).resolve(url)


class TestNormalizeRegistryUrl:
    """Tests for normalize_registry_url."""

    def test_lowercases_scheme_and_host_only(self) -> None:
        assert normalize_registry_url("HTTPS://API.NuGet.org/V3/index.json") == "https://api.nuget.org/V3/index.json"

    def test_drops_fragment(self) -> None:
        assert normalize_registry_url("https://r/index.json#x") == "https://r/index.json"
