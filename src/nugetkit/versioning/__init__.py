"""NuGet versions, version ranges and version picking."""

from nugetkit.versioning.pick import pick_version
from nugetkit.versioning.range import VersionInterval, VersionRange, parse_range
from nugetkit.versioning.version import MAX_SAFE_INTEGER, SemanticVersion, parse_version

__all__ = [
    "MAX_SAFE_INTEGER",
    "SemanticVersion",
    "VersionInterval",
    "VersionRange",
    "parse_range",
    "parse_version",
    "pick_version",
]
