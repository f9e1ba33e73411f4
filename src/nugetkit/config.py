"""
Client configuration.

Sources, later ones win:
1. Built-in defaults
2. YAML config file (``--config`` or ``NUGETKIT_CONFIG``)
3. ``NUGETKIT_*`` environment variables

``api_key`` is only read from the file; ``NUGETKIT_API_KEY`` is looked up
per registry by nugetkit.credentials.EnvCredentialSource.

Example file:

    source: https://api.nuget.org/v3/index.json
    relist_method: PUT
    transport:
      timeout_s: 30
      max_connections: 8
    retry:
      max_attempts: 3
      base_delay_ms: 250
      transient_statuses: [408, 429]
    build:
      max_entry_bytes: 104857600
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml

from nugetkit.archive.builder import BuildConfig
from nugetkit.connectors.backoff import RetryPolicy
from nugetkit.connectors.types import TransportConfig
from nugetkit.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_SOURCE = "https://api.nuget.org/v3/index.json"

ENV_PREFIX = "NUGETKIT_"

# env var -> (section, key, converter)
ENV_OVERRIDES: dict[str, tuple[str | None, str, type]] = {
    "NUGETKIT_SOURCE": (None, "source", str),
    "NUGETKIT_RELIST_METHOD": (None, "relist_method", str),
    "NUGETKIT_TIMEOUT_S": ("transport", "timeout_s", float),
    "NUGETKIT_CONNECT_TIMEOUT_S": ("transport", "connect_timeout_s", float),
    "NUGETKIT_MAX_CONNECTIONS": ("transport", "max_connections", int),
    "NUGETKIT_MAX_ATTEMPTS": ("retry", "max_attempts", int),
    "NUGETKIT_BASE_DELAY_MS": ("retry", "base_delay_ms", int),
    "NUGETKIT_MAX_DELAY_MS": ("retry", "max_delay_ms", int),
    "NUGETKIT_MAX_ELAPSED_MS": ("retry", "max_elapsed_ms", int),
    "NUGETKIT_MAX_ENTRY_BYTES": ("build", "max_entry_bytes", int),
}


@dataclass
class ClientConfig:
    """Top-level configuration shared by every command."""

    source: str = DEFAULT_SOURCE
    api_key: str | None = field(default=None, repr=False)
    relist_method: Literal["PUT", "POST"] = "PUT"
    transport: TransportConfig = field(default_factory=TransportConfig)
    build: BuildConfig = field(default_factory=BuildConfig)

    def __post_init__(self) -> None:
        if not self.source:
            raise ValueError("source must be non-empty")
        self.relist_method = self.relist_method.upper()  # type: ignore[assignment]
        if self.relist_method not in ("PUT", "POST"):
            raise ValueError(f"relist_method must be PUT or POST, got {self.relist_method!r}")

    @property
    def retry(self) -> RetryPolicy:
        return self.transport.retry


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        msg = f"Config section {name!r} must be a mapping, got {type(value).__name__}"
        raise ConfigError(msg)
    return dict(value)


def _check_keys(section: str, values: Mapping[str, Any], cls: type) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        msg = f"Unknown key(s) in config section {section!r}: {', '.join(unknown)}"
        raise ConfigError(msg)


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a mapping.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping.
    """
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e
    except yaml.YAMLError as e:
        msg = f"Config file {path} is not valid YAML: {e}"
        raise ConfigError(msg) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Config file {path} must contain a mapping, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def _apply_env(data: dict[str, Any], env: Mapping[str, str]) -> None:
    for name, (section, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            msg = f"Environment variable {name}={raw!r} is not a valid {convert.__name__}"
            raise ConfigError(msg) from e
        if section is None:
            data[key] = value
        else:
            target = data.setdefault(section, {})
            if not isinstance(target, dict):
                msg = f"Config section {section!r} must be a mapping"
                raise ConfigError(msg)
            target[key] = value


def config_from_mapping(data: Mapping[str, Any]) -> ClientConfig:
    """Build a ClientConfig from a parsed config mapping.

    Raises:
        ConfigError: On unknown keys or values the dataclasses reject.
    """
    top = {key: value for key, value in data.items() if key not in ("transport", "retry", "build")}
    _check_keys("<root>", top, ClientConfig)
    transport = _section(data, "transport")
    retry = _section(data, "retry")
    build = _section(data, "build")
    _check_keys("transport", transport, TransportConfig)
    _check_keys("retry", retry, RetryPolicy)
    _check_keys("build", build, BuildConfig)
    transport.pop("retry", None)

    try:
        return ClientConfig(
            **top,
            transport=TransportConfig(**transport, retry=RetryPolicy(**retry)),
            build=BuildConfig(**build),
        )
    except (TypeError, ValueError) as e:
        msg = f"Invalid configuration: {e}"
        raise ConfigError(msg) from e


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ClientConfig:
    """
    Load configuration from an optional YAML file and the environment.

    Args:
        path: Config file. Defaults to ``NUGETKIT_CONFIG`` when set.
        env: Environment mapping (default: os.environ).

    Returns:
        Validated ClientConfig.

    Raises:
        ConfigError: If the file or any override is invalid.
    """
    if env is None:
        env = os.environ
    if path is None and env.get("NUGETKIT_CONFIG"):
        path = Path(env["NUGETKIT_CONFIG"])

    data: dict[str, Any] = read_config_file(path) if path is not None else {}
    _apply_env(data, env)
    return config_from_mapping(data)
