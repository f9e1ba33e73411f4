"""
Service index resolution with a per-registry cache.

The cache holds one ServiceIndex per normalized registry URL for the
lifetime of the resolver. Entries are only replaced by an explicit refresh,
and replacement is a single dict assignment, so concurrent readers see
either the old or the new index, never a partial one. Concurrent first
resolves of the same URL share a single fetch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import orjson
from pydantic import ValidationError

from nugetkit.connectors.types import RegistryRequest
from nugetkit.contracts import ServiceIndex
from nugetkit.errors import InvalidSourceError, MalformedIndexError, RegistryUnreachableError
from nugetkit.registry.resources import Endpoint, find_resource

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nugetkit.connectors.backoff import RetryPolicy
    from nugetkit.connectors.transport import AuthenticatedTransport
    from nugetkit.connectors.types import Credentials

logger = logging.getLogger(__name__)


def normalize_registry_url(url: str) -> str:
    """Normalize a registry URL for use as a cache key.

    Scheme and host are lowercased; path, query and trailing slashes are kept.

    Raises:
        InvalidSourceError: If the URL is not an absolute http(s) URL.
    """
    if not isinstance(url, str) or not url.strip():
        msg = "Registry URL is empty"
        raise InvalidSourceError(msg)
    parts = urlsplit(url.strip())
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        msg = f"Registry URL must be an absolute http(s) URL, got {url!r}"
        raise InvalidSourceError(msg)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, ""))


class ServiceIndexResolver:
    """
    Fetches and caches registry service indexes.

    One resolver is shared by all workflows in a process.
    """

    def __init__(
        self,
        transport: AuthenticatedTransport,
        *,
        policy: RetryPolicy | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            transport: Shared transport used for index fetches.
            policy: Retry policy for index fetches (default: transport's).
        """
        self._transport = transport
        self._policy = policy
        self._cache: dict[str, ServiceIndex] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._fetch_count = 0

    @property
    def fetch_count(self) -> int:
        """Number of network fetches performed so far."""
        return self._fetch_count

    def cached(self, registry_url: str) -> ServiceIndex | None:
        """Return the cached index for a registry, if any."""
        return self._cache.get(normalize_registry_url(registry_url))

    def invalidate(self, registry_url: str) -> None:
        """Drop the cached index for a registry."""
        self._cache.pop(normalize_registry_url(registry_url), None)

    async def resolve(
        self,
        registry_url: str,
        *,
        refresh: bool = False,
        credentials: Credentials | None = None,
    ) -> ServiceIndex:
        """
        Get the service index for a registry.

        Args:
            registry_url: Registry root (service index) URL.
            refresh: Re-fetch even if cached, then atomically replace the entry.
            credentials: Attached to the fetch when given.

        Returns:
            The ServiceIndex.

        Raises:
            InvalidSourceError: If the URL is not http(s).
            RegistryUnreachableError: If the index could not be fetched.
            MalformedIndexError: If the response is not a valid service index.
        """
        key = normalize_registry_url(registry_url)
        if not refresh:
            index = self._cache.get(key)
            if index is not None:
                return index

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have fetched it while we waited
            if not refresh and key in self._cache:
                return self._cache[key]
            index = await self._fetch(key, credentials)
            self._cache[key] = index
            return index

    async def _fetch(self, url: str, credentials: Credentials | None) -> ServiceIndex:
        self._fetch_count += 1
        outcome = await self._transport.send(RegistryRequest.get(url), credentials, self._policy)
        if not outcome.ok:
            logger.warning(
                "Service index fetch failed",
                extra={
                    "url": url,
                    "outcome": outcome.status.value,
                    "reason": outcome.reason.value if outcome.reason else None,
                    "status": outcome.http_status,
                    "attempts": outcome.attempts,
                },
            )
            msg = f"Could not fetch service index from {url}: {outcome.describe()}"
            raise RegistryUnreachableError(msg, outcome)

        try:
            index = ServiceIndex.from_json(outcome.payload)
        except (orjson.JSONDecodeError, ValidationError) as e:
            msg = f"Service index at {url} is not a valid index document: {e}"
            raise MalformedIndexError(msg) from e

        if not index.version.startswith("3."):
            msg = f"Service index at {url} has unsupported version {index.version!r}, expected 3.x"
            raise MalformedIndexError(msg)

        logger.debug(
            "Service index fetched",
            extra={"url": url, "resources": len(index.resources), "index_version": index.version},
        )
        return index

    async def find(
        self,
        registry_url: str,
        resource_type: str,
        supported_versions: Sequence[str] | None = None,
    ) -> Endpoint:
        """Resolve the registry and select an endpoint for a resource type.

        Raises:
            ResolutionError: Any resolution failure, including
                NoMatchingResourceError.
        """
        index = await self.resolve(registry_url)
        return find_resource(index, resource_type, supported_versions)
