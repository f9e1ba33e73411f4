"""NuGet version range parsing and matching.

Supported notation (alternatives may be joined with ``||``):

    1.0          >= 1.0.0
    [1.0]        == 1.0.0
    [1.0,)       >= 1.0.0
    (1.0,)       >  1.0.0
    (,2.0]       <= 2.0.0
    (,2.0)       <  2.0.0
    [1.0,2.0)    >= 1.0.0 and < 2.0.0
    *            any version, prefer highest
    1.*          >= 1.0.0 and < 2.0.0, prefer highest
    1.2.*        >= 1.2.0 and < 1.3.0, prefer highest
    1.2.3-*      any pre-release of 1.2.3 or 1.2.3 itself, prefer highest
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from nugetkit.errors import VersionError, VersionRangeError
from nugetkit.versioning.version import SemanticVersion, parse_version

if TYPE_CHECKING:
    from collections.abc import Iterable

_FLOAT_PREFIX = re.compile(r"^\d+(?:\.\d+){0,2}$")


@dataclass(frozen=True)
class VersionInterval:
    """A single contiguous interval of versions.

    ``None`` bounds are unbounded; the matching ``*_inclusive`` flag is then
    ignored.
    """

    lower: SemanticVersion | None = None
    lower_inclusive: bool = False
    upper: SemanticVersion | None = None
    upper_inclusive: bool = False
    floating: bool = False
    float_text: str | None = None

    def satisfies(self, version: SemanticVersion) -> bool:
        """Check whether a version falls inside this interval."""
        if self.lower is not None:
            if self.lower_inclusive and version < self.lower:
                return False
            if not self.lower_inclusive and version <= self.lower:
                return False
        if self.upper is not None:
            if self.upper_inclusive and version > self.upper:
                return False
            if not self.upper_inclusive and version >= self.upper:
                return False
        return True

    @property
    def has_prerelease(self) -> bool:
        return any(bound is not None and bound.is_prerelease for bound in (self.lower, self.upper))

    def __str__(self) -> str:
        if self.float_text is not None:
            return self.float_text
        lower, upper = self.lower, self.upper
        if lower is None and upper is None:
            return "*"
        if lower is not None and upper is None:
            if self.lower_inclusive:
                return str(lower)
            return f"({lower},)"
        if lower is None:
            return f"(,{upper}{']' if self.upper_inclusive else ')'}"
        if lower == upper:
            return f"[{lower}]"
        return (
            f"{'[' if self.lower_inclusive else '('}{lower},"
            f"{upper}{']' if self.upper_inclusive else ')'}"
        )


@dataclass(frozen=True)
class VersionRange:
    """Union of one or more version intervals."""

    intervals: tuple[VersionInterval, ...]

    @classmethod
    def any(cls) -> VersionRange:
        """Range matching every version."""
        return cls((VersionInterval(),))

    @classmethod
    def exact(cls, version: SemanticVersion) -> VersionRange:
        """Range matching exactly one version."""
        return cls((VersionInterval(version, True, version, True),))

    @property
    def is_floating(self) -> bool:
        """True when the range asks for the highest matching version."""
        return any(interval.floating for interval in self.intervals)

    @property
    def has_prerelease(self) -> bool:
        """True when any bound mentions a pre-release version."""
        return any(interval.has_prerelease for interval in self.intervals)

    def satisfies(self, version: SemanticVersion) -> bool:
        """Check whether a version is inside any interval of the range."""
        return any(interval.satisfies(version) for interval in self.intervals)

    def filter(self, versions: Iterable[SemanticVersion]) -> list[SemanticVersion]:
        """Return the versions that satisfy the range, in input order."""
        return [version for version in versions if self.satisfies(version)]

    def __str__(self) -> str:
        return " || ".join(str(interval) for interval in self.intervals)


def _version(text: str, source: str) -> SemanticVersion:
    try:
        return parse_version(text)
    except VersionError as e:
        msg = f"Invalid version range {source!r}: {e}"
        raise VersionRangeError(msg) from e


def _checked(interval: VersionInterval, source: str) -> VersionInterval:
    lower, upper = interval.lower, interval.upper
    if lower is not None and upper is not None:
        if lower > upper:
            msg = f"Invalid version range {source!r}: minimum {lower} is greater than maximum {upper}"
            raise VersionRangeError(msg)
        if lower == upper and not (interval.lower_inclusive and interval.upper_inclusive):
            msg = f"Invalid version range {source!r}: interval is empty"
            raise VersionRangeError(msg)
    return interval


def _parse_bracketed(text: str, source: str) -> VersionInterval:
    if text[-1] not in "])":
        msg = f"Invalid version range {source!r}: missing closing bracket"
        raise VersionRangeError(msg)
    lower_inclusive = text[0] == "["
    upper_inclusive = text[-1] == "]"
    inner = text[1:-1].strip()
    if "*" in inner:
        msg = f"Invalid version range {source!r}: floating versions are not allowed inside brackets"
        raise VersionRangeError(msg)

    if "," not in inner:
        if not inner:
            msg = f"Invalid version range {source!r}: empty brackets"
            raise VersionRangeError(msg)
        if not (lower_inclusive and upper_inclusive):
            msg = f"Invalid version range {source!r}: exact versions must use [ and ]"
            raise VersionRangeError(msg)
        version = _version(inner, source)
        return VersionInterval(version, True, version, True)

    parts = inner.split(",")
    if len(parts) != 2:
        msg = f"Invalid version range {source!r}: expected exactly one comma"
        raise VersionRangeError(msg)
    low_text, high_text = parts[0].strip(), parts[1].strip()
    if not low_text and not high_text:
        msg = f"Invalid version range {source!r}: at least one bound is required"
        raise VersionRangeError(msg)
    lower = _version(low_text, source) if low_text else None
    upper = _version(high_text, source) if high_text else None
    return _checked(
        VersionInterval(
            lower=lower,
            lower_inclusive=lower_inclusive if lower is not None else False,
            upper=upper,
            upper_inclusive=upper_inclusive if upper is not None else False,
        ),
        source,
    )


def _parse_floating(text: str, source: str) -> VersionInterval:
    if text == "*":
        return VersionInterval(floating=True, float_text="*")

    if text.endswith("-*"):
        base = _version(text[:-2], source)
        if base.is_prerelease or "*" in text[:-2]:
            msg = f"Invalid version range {source!r}: unsupported floating pre-release"
            raise VersionRangeError(msg)
        return VersionInterval(
            lower=replace(base, prerelease=("0",), build=()),
            lower_inclusive=True,
            upper=replace(base, build=()),
            upper_inclusive=True,
            floating=True,
            float_text=text,
        )

    if text.endswith(".*") and _FLOAT_PREFIX.match(text[:-2]):
        numbers = [int(part) for part in text[:-2].split(".")]
        lower = SemanticVersion(*numbers)
        bumped = numbers[:-1] + [numbers[-1] + 1]
        upper = SemanticVersion(*bumped)
        return VersionInterval(
            lower=lower,
            lower_inclusive=True,
            upper=upper,
            upper_inclusive=False,
            floating=True,
            float_text=text,
        )

    msg = f"Invalid version range {source!r}: unsupported floating notation {text!r}"
    raise VersionRangeError(msg)


def _parse_interval(text: str, source: str) -> VersionInterval:
    text = text.strip()
    if not text:
        msg = f"Invalid version range {source!r}: empty alternative"
        raise VersionRangeError(msg)
    if text[0] in "[(":
        return _parse_bracketed(text, source)
    if "*" in text:
        return _parse_floating(text, source)
    return VersionInterval(lower=_version(text, source), lower_inclusive=True)


def parse_range(text: str) -> VersionRange:
    """Parse a NuGet version range expression.

    Args:
        text: Range expression, e.g. ``[1.0,2.0)`` or ``1.*``.

    Returns:
        Parsed VersionRange.

    Raises:
        VersionRangeError: If the expression is malformed or describes an
            empty interval.
    """
    if not isinstance(text, str) or not text.strip():
        msg = f"Invalid version range {text!r}: empty"
        raise VersionRangeError(msg)
    return VersionRange(tuple(_parse_interval(part, text) for part in text.split("||")))
