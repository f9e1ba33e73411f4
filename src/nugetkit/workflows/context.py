"""
Explicit per-call context for workflows.

Everything a workflow needs (registry URL, credentials, transport,
resolver, retry and build settings) is passed in here instead of being read
from process-wide state, so workflows against different registries can run
concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from nugetkit.archive.builder import BuildConfig, FileReader, LocalFileReader
from nugetkit.connectors.transport import AuthenticatedTransport
from nugetkit.registry.client import NuGetClient
from nugetkit.registry.resolver import ServiceIndexResolver

if TYPE_CHECKING:
    from pathlib import Path

    from nugetkit.config import ClientConfig
    from nugetkit.connectors.backoff import RetryPolicy
    from nugetkit.connectors.exporter import TransportMetricsExporter
    from nugetkit.connectors.types import Credentials
    from nugetkit.credentials import CredentialSource


@dataclass
class WorkflowContext:
    """
    Inputs shared by all workflow variants.

    The transport and resolver may be shared by many contexts; a context
    never mutates them beyond the resolver's cache.
    """

    registry_url: str
    transport: AuthenticatedTransport
    resolver: ServiceIndexResolver
    credentials: Credentials | None = None
    policy: RetryPolicy | None = None
    build: BuildConfig = field(default_factory=BuildConfig)
    file_reader: FileReader | None = None
    relist_method: Literal["PUT", "POST"] = "PUT"

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        credentials: Credentials | None = None,
        credential_source: CredentialSource | None = None,
        metrics: TransportMetricsExporter | None = None,
    ) -> WorkflowContext:
        """Create a context with its own transport and resolver from a ClientConfig.

        Explicit ``credentials`` win over ``credential_source``.
        """
        transport = AuthenticatedTransport(config.transport, metrics=metrics)
        if credentials is None and credential_source is not None:
            credentials = credential_source.get(config.source)
        return cls(
            registry_url=config.source,
            transport=transport,
            resolver=ServiceIndexResolver(transport),
            credentials=credentials,
            build=config.build,
            relist_method=config.relist_method,
        )

    def client(self) -> NuGetClient:
        """Registry API client bound to this context."""
        return NuGetClient(
            self.resolver,
            self.transport,
            self.registry_url,
            credentials=self.credentials,
            policy=self.policy,
            relist_method=self.relist_method,
        )

    def reader(self, base_dir: Path | None = None) -> FileReader:
        """Configured file reader, or one reading from disk relative to base_dir."""
        return self.file_reader or LocalFileReader(base_dir)

    async def close(self) -> None:
        """Close the transport's connection pool."""
        await self.transport.close()

    async def __aenter__(self) -> WorkflowContext:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
