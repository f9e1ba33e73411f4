"""Manifest document loading from disk.

Supported formats, chosen by file suffix:
    .nuspec        NuGet XML manifest
    .json          JSON authoring document
    .yaml / .yml   YAML authoring document
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import orjson
import yaml

from nugetkit.errors import ManifestError, ManifestValidationError, ValidationIssue
from nugetkit.manifest.model import Manifest, parse_manifest
from nugetkit.manifest.nuspec import read_nuspec

if TYPE_CHECKING:
    from pathlib import Path

MANIFEST_SUFFIXES = (".nuspec", ".json", ".yaml", ".yml")


def read_manifest_document(path: Path) -> dict[str, Any]:
    """Read a manifest file into its field mapping without validating it.

    Raises:
        ManifestError: If the file cannot be read or has an unknown suffix.
        ManifestValidationError: If the file is not well-formed.
    """
    suffix = path.suffix.lower()
    if suffix not in MANIFEST_SUFFIXES:
        msg = f"Unsupported manifest format {suffix!r} for {path}; expected one of {', '.join(MANIFEST_SUFFIXES)}"
        raise ManifestError(msg)

    try:
        raw = path.read_bytes()
    except OSError as e:
        msg = f"Cannot read manifest {path}: {e}"
        raise ManifestError(msg) from e

    if suffix == ".nuspec":
        return read_nuspec(raw)

    try:
        data = orjson.loads(raw) if suffix == ".json" else yaml.safe_load(raw)
    except (orjson.JSONDecodeError, yaml.YAMLError) as e:
        raise ManifestValidationError([ValidationIssue("document", f"malformed {suffix[1:]}: {e}")]) from e

    if not isinstance(data, dict):
        raise ManifestValidationError(
            [ValidationIssue("document", f"expected a mapping at the top level, got {type(data).__name__}")]
        )
    return data


def load_manifest(path: Path, *, check_files: bool = True) -> Manifest:
    """Load and validate a manifest file.

    Relative content file sources resolve against the manifest's directory.

    Args:
        path: Manifest file path.
        check_files: Stat declared content files.

    Returns:
        Validated Manifest.

    Raises:
        ManifestError: If the file cannot be read.
        ManifestValidationError: With every issue found.
    """
    document = read_manifest_document(path)
    return parse_manifest(document, path.parent, check_files=check_files)
