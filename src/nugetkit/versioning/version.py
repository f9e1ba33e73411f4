"""NuGet semantic version parsing and ordering.

Version string format:
    major[.minor[.patch[.revision]]][-prerelease][+build]

Examples:
    1.0.0
    2.1.0-beta.2
    4.0.0.1+sha.5114f85

NuGet extends SemVer 2.0 with an optional fourth ``revision`` component.
Missing numeric components default to 0 and the revision is only rendered
when it is non-zero, so ``1.0`` and ``1.0.0.0`` normalize to ``1.0.0``.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

from nugetkit.errors import VersionError

MAX_SAFE_INTEGER = 900_719_925_474_099
MAX_LENGTH = 256

_IDENT = r"[0-9A-Za-z-]+"

VERSION_PATTERN = re.compile(
    r"^"
    r"(?P<major>\d+)"
    r"(?:\.(?P<minor>\d+))?"
    r"(?:\.(?P<patch>\d+))?"
    r"(?:\.(?P<revision>\d+))?"
    rf"(?:-(?P<prerelease>{_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+(?P<build>{_IDENT}(?:\.{_IDENT})*))?"
    r"$"
)


def _identifier_key(identifier: str) -> tuple[int, int | str]:
    # Numeric identifiers sort below alphanumeric ones; alphanumerics compare
    # case-insensitively.
    if identifier.isdigit():
        return (0, int(identifier))
    return (1, identifier.upper())


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemanticVersion:
    """Parsed NuGet version.

    Equality, hashing and ordering ignore build metadata and treat pre-release
    labels case-insensitively.

    Attributes:
        major: Major version.
        minor: Minor version.
        patch: Patch version.
        revision: Legacy fourth component (0 when absent).
        prerelease: Dot-separated pre-release identifiers.
        build: Dot-separated build metadata identifiers.
    """

    major: int
    minor: int = 0
    patch: int = 0
    revision: int = 0
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @property
    def is_prerelease(self) -> bool:
        """True when the version carries a pre-release label."""
        return bool(self.prerelease)

    @property
    def normalized(self) -> str:
        """Normalized form without build metadata, as used on the wire."""
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.revision:
            text = f"{text}.{self.revision}"
        if self.prerelease:
            text = f"{text}-{'.'.join(self.prerelease)}"
        return text

    def lower(self) -> str:
        """Lowercase normalized form used in flat-container URLs."""
        return self.normalized.lower()

    def _key(self) -> tuple[object, ...]:
        return (
            self.major,
            self.minor,
            self.patch,
            self.revision,
            0 if self.prerelease else 1,
            tuple(_identifier_key(part) for part in self.prerelease),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: SemanticVersion) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        if self.build:
            return f"{self.normalized}+{'.'.join(self.build)}"
        return self.normalized


def _component(match: re.Match[str], name: str, text: str) -> int:
    raw = match.group(name)
    if raw is None:
        return 0
    value = int(raw)
    if value > MAX_SAFE_INTEGER:
        msg = f"Integer component of version {text!r} is larger than {MAX_SAFE_INTEGER}: {value}"
        raise VersionError(msg)
    return value


def parse_version(text: str) -> SemanticVersion:
    """Parse a NuGet version string.

    Args:
        text: Version string, e.g. ``1.2.3-beta.1+build.5``.

    Returns:
        Parsed SemanticVersion.

    Raises:
        VersionError: If the string is too long, malformed or has an
            oversized numeric component.
    """
    if not isinstance(text, str):
        msg = f"Version must be a string, got {type(text).__name__}"
        raise VersionError(msg)
    text = text.strip()
    if len(text) > MAX_LENGTH:
        msg = f"Version string can't be longer than {MAX_LENGTH} characters"
        raise VersionError(msg)

    match = VERSION_PATTERN.match(text)
    if match is None:
        msg = f"Invalid version string: {text!r}"
        raise VersionError(msg)

    prerelease = tuple(match.group("prerelease").split(".")) if match.group("prerelease") else ()
    for part in prerelease:
        # SemVer 2.0 forbids leading zeros in numeric pre-release identifiers
        if part.isdigit() and len(part) > 1 and part.startswith("0"):
            msg = f"Invalid version string: {text!r} (numeric pre-release identifier {part!r} has a leading zero)"
            raise VersionError(msg)

    return SemanticVersion(
        major=_component(match, "major", text),
        minor=_component(match, "minor", text),
        patch=_component(match, "patch", text),
        revision=_component(match, "revision", text),
        prerelease=prerelease,
        build=tuple(match.group("build").split(".")) if match.group("build") else (),
    )
