"""
Credential sources.

The core never stores API keys. A CredentialSource hands out Credentials
per registry URL at call time; persisting keys is left to the caller.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Protocol

from nugetkit.connectors.types import Credentials
from nugetkit.registry.resolver import normalize_registry_url

if TYPE_CHECKING:
    from collections.abc import Mapping

API_KEY_ENV_VAR = "NUGETKIT_API_KEY"


class CredentialSource(Protocol):
    """Provides credentials for a registry, or None when it has none."""

    def get(self, registry_url: str) -> Credentials | None: ...


class StaticCredentialSource:
    """In-memory API keys keyed by registry URL."""

    def __init__(self, keys: Mapping[str, str] | None = None) -> None:
        self._keys: dict[str, str] = {}
        for url, key in (keys or {}).items():
            self.add(url, key)

    def add(self, registry_url: str, api_key: str) -> None:
        self._keys[normalize_registry_url(registry_url)] = api_key

    def get(self, registry_url: str) -> Credentials | None:
        key = self._keys.get(normalize_registry_url(registry_url))
        if not key:
            return None
        return Credentials(registry_url=registry_url, api_key=key)


class EnvCredentialSource:
    """A single API key from ``NUGETKIT_API_KEY``, used for any registry."""

    def __init__(self, env: Mapping[str, str] | None = None, var: str = API_KEY_ENV_VAR) -> None:
        self._env = env if env is not None else os.environ
        self._var = var

    def get(self, registry_url: str) -> Credentials | None:
        key = self._env.get(self._var, "").strip()
        if not key:
            return None
        return Credentials(registry_url=registry_url, api_key=key)


class ChainCredentialSource:
    """Asks each source in turn; the first one with credentials wins."""

    def __init__(self, *sources: CredentialSource) -> None:
        self._sources = sources

    def get(self, registry_url: str) -> Credentials | None:
        for source in self._sources:
            credentials = source.get(registry_url)
            if credentials is not None:
                return credentials
        return None
