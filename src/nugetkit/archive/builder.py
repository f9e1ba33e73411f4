"""
Deterministic package archive (.nupkg) builder.

Entry order is fixed:
1. ``{id}.nuspec`` (canonical manifest serialization)
2. Content files, in the manifest's declared order
3. ``[Content_Types].xml`` (one Default per distinct extension, sorted)
4. ``_rels/.rels`` (relationship to the nuspec)

Every entry gets the same timestamp, permissions, creator system and
DEFLATE level, so identical input always yields byte-identical output.
"""

from __future__ import annotations

import hashlib
import io
import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote

from nugetkit.errors import (
    BuildValidationError,
    EntryTooLargeError,
    ManifestValidationError,
    UnreadableContentError,
)
from nugetkit.manifest.model import parse_manifest
from nugetkit.manifest.nuspec import read_nuspec, render_nuspec

if TYPE_CHECKING:
    from nugetkit.manifest.model import Manifest, PackageIdentity

logger = logging.getLogger(__name__)

CONTENT_TYPES_PATH = "[Content_Types].xml"
RELATIONSHIPS_PATH = "_rels/.rels"

CONTENT_TYPES_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/content-types"
RELATIONSHIPS_NAMESPACE = "http://schemas.openxmlformats.org/package/2006/relationships"
MANIFEST_RELATIONSHIP_TYPE = "http://schemas.microsoft.com/packaging/2010/07/manifest"
RELATIONSHIPS_CONTENT_TYPE = "application/vnd.openxmlformats-package.relationships+xml"
DEFAULT_CONTENT_TYPE = "application/octet"

# Deterministic entry metadata
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ZIP_CREATE_SYSTEM = 0
ZIP_FILE_MODE = 0o644
COMPRESS_LEVEL = 9

DEFAULT_MAX_ENTRY_BYTES = 250 * 1024 * 1024


@dataclass
class BuildConfig:
    """
    Archive builder configuration.

    Attributes:
        max_entry_bytes: Size ceiling for any single uncompressed entry.
    """

    max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES

    def __post_init__(self) -> None:
        if self.max_entry_bytes < 1:
            raise ValueError(f"max_entry_bytes must be >= 1, got {self.max_entry_bytes}")


class FileReader(Protocol):
    """Source of content file bytes, keyed by the manifest's source path."""

    def read(self, source: str) -> bytes:
        """Return the file's bytes. Raises OSError when unreadable."""
        ...


class LocalFileReader:
    """Reads content files from disk, resolving relative paths against base_dir."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir

    def resolve(self, source: str) -> Path:
        path = Path(source)
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        return path

    def read(self, source: str) -> bytes:
        return self.resolve(source).read_bytes()


@dataclass(frozen=True)
class Archive:
    """A finished package archive. A pure value: bytes plus the identity they carry."""

    identity: PackageIdentity
    data: bytes

    @property
    def filename(self) -> str:
        """Conventional file name, ``{id}.{version}.nupkg`` in lowercase."""
        return f"{self.identity.filename_stem}.nupkg"

    @property
    def sha256(self) -> str:
        """Lowercase hex SHA256 of the archive bytes."""
        return hashlib.sha256(self.data).hexdigest()

    @property
    def size(self) -> int:
        return len(self.data)

    def entry_names(self) -> list[str]:
        """Entry names in container order."""
        with zipfile.ZipFile(io.BytesIO(self.data)) as zf:
            return zf.namelist()

    def write(self, path: Path) -> Path:
        """Write the archive to ``path``; a directory gets the conventional file name."""
        target = path / self.filename if path.is_dir() else path
        target.write_bytes(self.data)
        return target


def _xml_document(root: ET.Element) -> bytes:
    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode", short_empty_elements=True)
    return ('<?xml version="1.0" encoding="utf-8"?>\n' + body + "\n").encode("utf-8")


def _part_name(path: str) -> str:
    return "/" + quote(path, safe="/")


def render_content_types(entry_paths: list[str]) -> bytes:
    """Render ``[Content_Types].xml`` for the given entry paths.

    One ``Default`` per distinct (lowercased) extension in sorted order, plus
    an ``Override`` for each extension-less entry.
    """
    extensions: set[str] = set()
    extensionless: list[str] = []
    for path in entry_paths:
        suffix = PurePosixPath(path).suffix
        name = PurePosixPath(path).name
        # Dotfiles like ".rels" count as an extension
        if name.startswith(".") and name.count(".") == 1:
            suffix = name
        if suffix and len(suffix) > 1:
            extensions.add(suffix[1:].lower())
        else:
            extensionless.append(path)

    root = ET.Element("Types", {"xmlns": CONTENT_TYPES_NAMESPACE})
    for extension in sorted(extensions):
        content_type = RELATIONSHIPS_CONTENT_TYPE if extension == "rels" else DEFAULT_CONTENT_TYPE
        ET.SubElement(root, "Default", {"Extension": extension, "ContentType": content_type})
    for path in sorted(extensionless):
        ET.SubElement(root, "Override", {"PartName": _part_name(path), "ContentType": DEFAULT_CONTENT_TYPE})
    return _xml_document(root)


def relationship_id(target: str) -> str:
    """Stable relationship Id derived from the target part name."""
    return "R" + hashlib.sha256(target.encode("utf-8")).hexdigest()[:16].upper()


def render_relationships(nuspec_path: str) -> bytes:
    """Render ``_rels/.rels`` pointing at the manifest entry."""
    root = ET.Element("Relationships", {"xmlns": RELATIONSHIPS_NAMESPACE})
    target = _part_name(nuspec_path)
    ET.SubElement(
        root,
        "Relationship",
        {"Type": MANIFEST_RELATIONSHIP_TYPE, "Target": target, "Id": relationship_id(target)},
    )
    return _xml_document(root)


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(filename=name, date_time=ZIP_EPOCH)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = ZIP_CREATE_SYSTEM
    info.external_attr = ZIP_FILE_MODE << 16
    return info


def _revalidate(manifest: Manifest) -> bytes:
    """Render the nuspec and check it parses back into a valid manifest.

    Manifests built by hand skip parse_manifest; this applies the same rules
    before anything is written.
    """
    nuspec = render_nuspec(manifest)
    try:
        parse_manifest(read_nuspec(nuspec), check_files=False)
    except ManifestValidationError as e:
        raise BuildValidationError(e) from e
    return nuspec


def build_archive(
    manifest: Manifest,
    file_reader: FileReader,
    config: BuildConfig | None = None,
) -> Archive:
    """
    Build a package archive from a manifest.

    Args:
        manifest: Validated manifest.
        file_reader: Source of content file bytes.
        config: Builder configuration.

    Returns:
        The finished Archive.

    Raises:
        BuildValidationError: If the manifest breaks a validation rule.
        UnreadableContentError: If a declared content file cannot be read.
        EntryTooLargeError: If any entry exceeds ``config.max_entry_bytes``.
    """
    config = config or BuildConfig()
    nuspec = _revalidate(manifest)
    nuspec_path = manifest.nuspec_name

    entries: list[tuple[str, bytes]] = [(nuspec_path, nuspec)]
    for content in manifest.content_files:
        try:
            data = file_reader.read(content.source)
        except OSError as e:
            raise UnreadableContentError(content.source, e.strerror or str(e)) from e
        entries.append((content.target, data))

    paths = [path for path, _ in entries]
    entries.append((CONTENT_TYPES_PATH, render_content_types([*paths, RELATIONSHIPS_PATH])))
    entries.append((RELATIONSHIPS_PATH, render_relationships(nuspec_path)))

    for path, data in entries:
        if len(data) > config.max_entry_bytes:
            raise EntryTooLargeError(path, len(data), config.max_entry_bytes)

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL) as zf:
        for path, data in entries:
            zf.writestr(_zip_info(path), data, compress_type=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL)

    archive = Archive(identity=manifest.identity, data=buffer.getvalue())
    logger.info(
        "Package archive built",
        extra={
            "package_id": manifest.identity.id,
            "package_version": str(manifest.identity.version),
            "entries": len(entries),
            "size_bytes": archive.size,
        },
    )
    return archive
