"""Selection of a concrete version from a candidate list."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from nugetkit.versioning.range import VersionRange
    from nugetkit.versioning.version import SemanticVersion


def pick_version(
    version_range: VersionRange,
    versions: Iterable[SemanticVersion],
    *,
    force_floating: bool = False,
) -> SemanticVersion | None:
    """Pick the version a range resolves to.

    Pre-release candidates are only considered when the range itself mentions
    a pre-release. Non-floating ranges resolve to the lowest satisfying
    version, floating ranges (``1.*``) to the highest.

    Args:
        version_range: Range to resolve.
        versions: Available versions, in any order.
        force_floating: Always prefer the highest satisfying version.

    Returns:
        The chosen version, or None when nothing satisfies the range.
    """
    include_prerelease = version_range.has_prerelease
    candidates = sorted(v for v in versions if include_prerelease or not v.is_prerelease)
    if version_range.is_floating or force_floating:
        candidates.reverse()
    for candidate in candidates:
        if version_range.satisfies(candidate):
            return candidate
    return None
