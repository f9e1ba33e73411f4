"""Package manifest model and validation.

A manifest is built from a plain mapping (the parsed form of a ``.nuspec``,
JSON or YAML document). Field names follow the nuspec element names; the
snake_case spellings are accepted as aliases:

    {
        "id": "Sample.Pkg",
        "version": "1.0.0",
        "authors": ["Jane Doe"],
        "description": "Sample package",
        "dependencies": [
            {"id": "Newtonsoft.Json", "range": "[13.0,14.0)", "targetFramework": "net6.0"}
        ],
        "files": [{"src": "bin/a.dll", "target": "lib/a.dll"}]
    }

Validation collects every issue before failing.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from nugetkit.errors import (
    ManifestValidationError,
    ValidationIssue,
    VersionError,
    VersionRangeError,
)
from nugetkit.versioning import SemanticVersion, VersionRange, parse_range, parse_version

if TYPE_CHECKING:
    from collections.abc import Mapping

MAX_ID_LENGTH = 100

ID_PATTERN = re.compile(r"^\w+(?:[.-]\w+)*$", re.ASCII)

# Archive paths owned by the container format itself
RESERVED_PATHS = frozenset({"[content_types].xml"})
RESERVED_PREFIXES = ("_rels/", "package/")

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")

FIELD_ALIASES: dict[str, str] = {
    "project_url": "projectUrl",
    "release_notes": "releaseNotes",
    "require_license_acceptance": "requireLicenseAcceptance",
    "content_files": "files",
}

KNOWN_FIELDS = frozenset(
    {
        "id",
        "version",
        "title",
        "description",
        "authors",
        "owners",
        "tags",
        "projectUrl",
        "license",
        "icon",
        "readme",
        "releaseNotes",
        "requireLicenseAcceptance",
        "dependencies",
        "files",
    }
)


@dataclass(frozen=True, eq=False)
class PackageIdentity:
    """Package id plus version. Ids compare case-insensitively."""

    id: str
    version: SemanticVersion

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version))

    def __str__(self) -> str:
        return f"{self.id} {self.version}"

    @property
    def filename_stem(self) -> str:
        """``{id}.{version}`` in lowercase, as used by archive filenames and URLs."""
        return f"{self.id.lower()}.{self.version.lower()}"


@dataclass(frozen=True)
class Dependency:
    """Dependency on another package, optionally scoped to a target framework."""

    id: str
    range: VersionRange = field(default_factory=VersionRange.any)
    target_framework: str | None = None

    def sort_key(self) -> tuple[str, str]:
        return ((self.target_framework or "").lower(), self.id.lower())


@dataclass(frozen=True)
class ContentFile:
    """Mapping of a source file to its normalized path inside the archive."""

    source: str
    target: str


@dataclass(frozen=True)
class Manifest:
    """Validated, immutable package manifest.

    Dependencies are stored in canonical (target framework, id) order;
    content files keep their declared order.
    """

    identity: PackageIdentity
    title: str | None = None
    description: str | None = None
    authors: tuple[str, ...] = ()
    owners: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    project_url: str | None = None
    license: str | None = None
    icon: str | None = None
    readme: str | None = None
    release_notes: str | None = None
    require_license_acceptance: bool = False
    dependencies: tuple[Dependency, ...] = ()
    content_files: tuple[ContentFile, ...] = ()

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.dependencies, key=Dependency.sort_key))
        object.__setattr__(self, "dependencies", ordered)

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def version(self) -> SemanticVersion:
        return self.identity.version

    @property
    def nuspec_name(self) -> str:
        """Archive path of the embedded metadata document."""
        return f"{self.identity.id}.nuspec"


def validate_id(value: Any) -> str | None:
    """Return a reason string when ``value`` is not a valid package id."""
    if not isinstance(value, str) or not value.strip():
        return "package id is required"
    if len(value) > MAX_ID_LENGTH:
        return f"package id must be at most {MAX_ID_LENGTH} characters, got {len(value)}"
    if not ID_PATTERN.match(value):
        return (
            f"invalid package id {value!r}: use letters, digits and '_', "
            "separated by '.' or '-', with no leading or trailing separator"
        )
    return None


def normalize_archive_path(path: str) -> str:
    """Normalize a content file's archive path.

    Backslashes become forward slashes and ``.``/empty segments are dropped.

    Raises:
        ValueError: If the path is empty, absolute or contains ``..``.
    """
    text = path.strip().replace("\\", "/")
    if not text:
        msg = "archive path is empty"
        raise ValueError(msg)
    if text.startswith("/") or _WINDOWS_DRIVE.match(text):
        msg = f"archive path {path!r} must be relative"
        raise ValueError(msg)
    parts = [part for part in text.split("/") if part not in ("", ".")]
    if ".." in parts:
        msg = f"archive path {path!r} must not contain '..' segments"
        raise ValueError(msg)
    if not parts:
        msg = f"archive path {path!r} does not name a file"
        raise ValueError(msg)
    return "/".join(parts)


def is_reserved_path(path: str, package_id: str | None = None) -> bool:
    """Check whether an archive path collides with container bookkeeping entries."""
    lowered = path.lower()
    if lowered in RESERVED_PATHS or lowered.startswith(RESERVED_PREFIXES):
        return True
    # Only the package's own nuspec may live at the archive root
    if "/" not in lowered and lowered.endswith(".nuspec"):
        return True
    return package_id is not None and lowered == f"{package_id.lower()}.nuspec"


def _canonical_fields(document: Mapping[str, Any]) -> dict[str, Any]:
    return {FIELD_ALIASES.get(key, key): value for key, value in document.items()}


def _optional_text(value: Any, name: str, issues: list[ValidationIssue]) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        issues.append(ValidationIssue(name, f"expected text, got {type(value).__name__}"))
        return None
    # XML parsing folds CR and CRLF into LF; match it so nuspec round trips are exact
    text = value.replace("\r\n", "\n").replace("\r", "\n").strip()
    return text or None


def _text_list(
    value: Any,
    name: str,
    issues: list[ValidationIssue],
    *,
    separator: str | None,
) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(separator) if separator else value.split()
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        issues.append(ValidationIssue(name, f"expected a list, got {type(value).__name__}"))
        return ()

    result: list[str] = []
    for index, item in enumerate(items):
        if not isinstance(item, str):
            issues.append(ValidationIssue(f"{name}[{index}]", "expected text"))
            continue
        item = item.strip()
        if not item:
            continue
        if separator and separator.strip() in item:
            issues.append(ValidationIssue(f"{name}[{index}]", f"must not contain {separator.strip()!r}"))
            continue
        if separator is None and any(ch.isspace() for ch in item):
            issues.append(ValidationIssue(f"{name}[{index}]", "must not contain whitespace"))
            continue
        result.append(item)
    return tuple(result)


def _parse_bool(value: Any, name: str, issues: list[ValidationIssue]) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    issues.append(ValidationIssue(name, f"expected true or false, got {value!r}"))
    return False


def _dependency_entries(value: Any, issues: list[ValidationIssue]) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    # Shorthand form: {"Newtonsoft.Json": "13.0.1"}
    if isinstance(value, dict):
        return [{"id": dep_id, "range": dep_range} for dep_id, dep_range in value.items()]
    if isinstance(value, (list, tuple)):
        return list(value)
    issues.append(ValidationIssue("dependencies", f"expected a list, got {type(value).__name__}"))
    return []


def _parse_dependencies(value: Any, issues: list[ValidationIssue]) -> tuple[Dependency, ...]:
    dependencies: list[Dependency] = []
    seen: set[tuple[str, str]] = set()

    for index, entry in enumerate(_dependency_entries(value, issues)):
        name = f"dependencies[{index}]"
        if not isinstance(entry, dict):
            issues.append(ValidationIssue(name, "expected a mapping with 'id' and 'range'"))
            continue

        dep_id = entry.get("id")
        id_problem = validate_id(dep_id)
        if id_problem:
            issues.append(ValidationIssue(f"{name}.id", id_problem))

        raw_range = entry.get("range", entry.get("version"))
        dep_range: VersionRange | None = VersionRange.any()
        if raw_range is not None:
            try:
                dep_range = parse_range(str(raw_range))
            except VersionRangeError as e:
                issues.append(ValidationIssue(f"{name}.range", str(e)))
                dep_range = None

        framework = entry.get("targetFramework", entry.get("target_framework"))
        framework = framework.strip() if isinstance(framework, str) and framework.strip() else None

        if id_problem or dep_range is None:
            continue
        key = ((framework or "").lower(), dep_id.lower())
        if key in seen:
            scope = f" for {framework}" if framework else ""
            issues.append(ValidationIssue(f"{name}.id", f"duplicate dependency {dep_id!r}{scope}"))
            continue
        seen.add(key)
        dependencies.append(Dependency(id=dep_id.strip(), range=dep_range, target_framework=framework))

    return tuple(dependencies)


def _check_source(source: str, base_dir: Path | None) -> str | None:
    path = Path(source)
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    if not path.exists():
        return f"source file {source!r} does not exist"
    if not path.is_file():
        return f"source {source!r} is not a regular file"
    if not os.access(path, os.R_OK):
        return f"source file {source!r} is not readable"
    return None


def _parse_files(
    value: Any,
    package_id: str | None,
    base_dir: Path | None,
    check_files: bool,
    issues: list[ValidationIssue],
) -> tuple[ContentFile, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        issues.append(ValidationIssue("files", f"expected a list, got {type(value).__name__}"))
        return ()

    files: list[ContentFile] = []
    seen: dict[str, int] = {}

    for index, entry in enumerate(value):
        name = f"files[{index}]"
        if isinstance(entry, str):
            entry = {"src": entry}
        if not isinstance(entry, dict):
            issues.append(ValidationIssue(name, "expected a mapping with 'src' and 'target'"))
            continue

        source = entry.get("src", entry.get("source"))
        if not isinstance(source, str) or not source.strip():
            issues.append(ValidationIssue(f"{name}.src", "source path is required"))
            continue
        source = source.strip().replace("\\", "/")

        raw_target = entry.get("target")
        if raw_target is None or (isinstance(raw_target, str) and not raw_target.strip()):
            raw_target = PurePosixPath(source).name if Path(source).is_absolute() else source
        elif isinstance(raw_target, str) and raw_target.replace("\\", "/").endswith("/"):
            # Directory target: keep the source file name
            raw_target = f"{raw_target.rstrip('/')}/{PurePosixPath(source).name}"
        if not isinstance(raw_target, str):
            issues.append(ValidationIssue(f"{name}.target", "expected text"))
            continue

        target: str | None
        try:
            target = normalize_archive_path(raw_target)
        except ValueError as e:
            issues.append(ValidationIssue(f"{name}.target", str(e)))
            target = None

        if target is not None:
            if is_reserved_path(target, package_id):
                issues.append(ValidationIssue(f"{name}.target", f"archive path {target!r} is reserved"))
            elif target.lower() in seen:
                first = seen[target.lower()]
                issues.append(
                    ValidationIssue(
                        f"{name}.target",
                        f"duplicate archive path {target!r} (also declared by files[{first}])",
                    )
                )
            else:
                seen[target.lower()] = index

        if check_files:
            problem = _check_source(source, base_dir)
            if problem:
                issues.append(ValidationIssue(f"{name}.src", problem))

        if target is not None:
            files.append(ContentFile(source=source, target=target))

    return tuple(files)


def parse_manifest(
    document: Mapping[str, Any],
    base_dir: Path | None = None,
    *,
    check_files: bool = True,
) -> Manifest:
    """Validate a manifest document and build a Manifest.

    Args:
        document: Parsed manifest fields (nuspec names or snake_case aliases).
        base_dir: Directory that relative content file sources resolve against.
        check_files: Stat declared content files. Disabled when reading a
            manifest back out of an archive.

    Returns:
        Validated Manifest.

    Raises:
        ManifestValidationError: With every issue found.
    """
    if not isinstance(document, dict):
        raise ManifestValidationError(
            [ValidationIssue("document", f"expected a mapping, got {type(document).__name__}")]
        )

    fields = _canonical_fields(document)
    issues: list[ValidationIssue] = []

    for key in sorted(set(fields) - KNOWN_FIELDS):
        issues.append(ValidationIssue(key, "unknown field"))

    package_id = fields.get("id")
    id_problem = validate_id(package_id)
    if id_problem:
        issues.append(ValidationIssue("id", id_problem))
        package_id = None
    else:
        package_id = package_id.strip()

    version: SemanticVersion | None = None
    raw_version = fields.get("version")
    if raw_version is None or (isinstance(raw_version, str) and not raw_version.strip()):
        issues.append(ValidationIssue("version", "version is required"))
    else:
        try:
            version = parse_version(str(raw_version))
        except VersionError as e:
            issues.append(ValidationIssue("version", str(e)))

    title = _optional_text(fields.get("title"), "title", issues)
    description = _optional_text(fields.get("description"), "description", issues)
    authors = _text_list(fields.get("authors"), "authors", issues, separator=",")
    owners = _text_list(fields.get("owners"), "owners", issues, separator=",")
    tags = _text_list(fields.get("tags"), "tags", issues, separator=None)
    license_expr = _optional_text(fields.get("license"), "license", issues)
    icon = _optional_text(fields.get("icon"), "icon", issues)
    readme = _optional_text(fields.get("readme"), "readme", issues)
    release_notes = _optional_text(fields.get("releaseNotes"), "releaseNotes", issues)

    project_url = _optional_text(fields.get("projectUrl"), "projectUrl", issues)
    if project_url is not None and not project_url.startswith(("http://", "https://")):
        issues.append(ValidationIssue("projectUrl", f"expected an http(s) URL, got {project_url!r}"))

    require_acceptance = _parse_bool(
        fields.get("requireLicenseAcceptance"), "requireLicenseAcceptance", issues
    )
    if require_acceptance and license_expr is None:
        issues.append(
            ValidationIssue("requireLicenseAcceptance", "requires a license to be declared")
        )

    dependencies = _parse_dependencies(fields.get("dependencies"), issues)
    files = _parse_files(fields.get("files"), package_id, base_dir, check_files, issues)

    if issues:
        raise ManifestValidationError(issues)

    assert package_id is not None and version is not None  # Type narrowing
    return Manifest(
        identity=PackageIdentity(id=package_id, version=version),
        title=title,
        description=description,
        authors=authors,
        owners=owners,
        tags=tags,
        project_url=project_url,
        license=license_expr,
        icon=icon,
        readme=readme,
        release_notes=release_notes,
        require_license_acceptance=require_acceptance,
        dependencies=dependencies,
        content_files=files,
    )


@dataclass(frozen=True)
class PackageRef:
    """A package id with an optional requested version range (``Id@range``)."""

    id: str
    range: VersionRange | None = None

    def __str__(self) -> str:
        return self.id if self.range is None else f"{self.id}@{self.range}"


def parse_package_ref(text: str) -> PackageRef:
    """Parse ``Id`` or ``Id@range``, e.g. ``Newtonsoft.Json@[13.0,14.0)``.

    Raises:
        ManifestValidationError: If the id or the range is invalid.
    """
    package_id, sep, raw_range = text.strip().partition("@")
    issues: list[ValidationIssue] = []
    id_problem = validate_id(package_id)
    if id_problem:
        issues.append(ValidationIssue("id", id_problem))

    version_range: VersionRange | None = None
    if sep:
        try:
            version_range = parse_range(raw_range)
        except VersionRangeError as e:
            issues.append(ValidationIssue("range", str(e)))

    if issues:
        raise ManifestValidationError(issues)
    return PackageRef(id=package_id, range=version_range)
