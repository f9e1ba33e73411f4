"""Reading package archives back: entry listing, verification and manifest extraction."""

from __future__ import annotations

import io
import zipfile
from typing import TYPE_CHECKING

from nugetkit.archive.builder import CONTENT_TYPES_PATH, RELATIONSHIPS_PATH, Archive
from nugetkit.errors import ArchiveFormatError, ManifestError
from nugetkit.manifest.nuspec import parse_nuspec

if TYPE_CHECKING:
    from pathlib import Path

    from nugetkit.manifest.model import Manifest


def _open(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        msg = f"Not a package archive: {e}"
        raise ArchiveFormatError(msg) from e


def _nuspec_entry(names: list[str]) -> str:
    candidates = [name for name in names if "/" not in name and name.lower().endswith(".nuspec")]
    if not candidates:
        msg = "Package archive has no .nuspec entry at its root"
        raise ArchiveFormatError(msg)
    if len(candidates) > 1:
        msg = f"Package archive has more than one root .nuspec entry: {', '.join(candidates)}"
        raise ArchiveFormatError(msg)
    return candidates[0]


def read_archive(data: bytes) -> list[str]:
    """List the entries of a package archive after checking the required ones.

    Args:
        data: Raw archive bytes.

    Returns:
        Entry names in container order.

    Raises:
        ArchiveFormatError: If the data is not a zip container, or lacks the
            nuspec, content-type or relationship entries.
    """
    with _open(data) as zf:
        names = zf.namelist()
        bad = zf.testzip()
    if bad is not None:
        msg = f"Package archive entry {bad!r} is corrupt"
        raise ArchiveFormatError(msg)
    _nuspec_entry(names)
    lowered = {name.lower() for name in names}
    for required in (CONTENT_TYPES_PATH, RELATIONSHIPS_PATH):
        if required.lower() not in lowered:
            msg = f"Package archive is missing required entry {required!r}"
            raise ArchiveFormatError(msg)
    return names


def extract_manifest(data: bytes, base_dir: Path | None = None) -> Manifest:
    """Re-parse the manifest embedded in an archive.

    Content file sources are only stat-ed when ``base_dir`` is given. Every
    content file the nuspec declares must be present as an entry.

    Raises:
        ArchiveFormatError: If the archive is malformed.
        ManifestValidationError: If the embedded nuspec is invalid.
    """
    names = read_archive(data)
    nuspec_name = _nuspec_entry(names)
    with _open(data) as zf:
        nuspec = zf.read(nuspec_name)

    manifest = parse_nuspec(nuspec, base_dir, check_files=base_dir is not None)
    present = set(names)
    missing = [content.target for content in manifest.content_files if content.target not in present]
    if missing:
        msg = f"Package archive is missing declared content file(s): {', '.join(missing)}"
        raise ArchiveFormatError(msg)
    return manifest


def load_archive(path: Path) -> Archive:
    """Load a prebuilt ``.nupkg`` from disk.

    Raises:
        ManifestError: If the file cannot be read.
        ArchiveFormatError: If it is not a valid package archive.
        ManifestValidationError: If its nuspec is invalid.
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        msg = f"Cannot read package archive {path}: {e}"
        raise ManifestError(msg) from e
    manifest = extract_manifest(data)
    return Archive(identity=manifest.identity, data=data)


def read_entry(data: bytes, path: str) -> bytes | None:
    """Bytes of one archive entry, or None when the archive has no such entry.

    ``path`` is matched case-insensitively and may use the backslashes or
    leading slash that nuspec ``<readme>`` and ``<icon>`` values often carry.

    Raises:
        ArchiveFormatError: If the data is not a zip container.
    """
    wanted = path.replace("\\", "/").lstrip("/").lower()
    with _open(data) as zf:
        for name in zf.namelist():
            if name.lower() == wanted:
                return zf.read(name)
    return None
