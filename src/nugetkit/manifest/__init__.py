"""Package manifest model, validation and nuspec serialization."""

from nugetkit.manifest.loader import load_manifest, read_manifest_document
from nugetkit.manifest.model import (
    ContentFile,
    Dependency,
    Manifest,
    PackageIdentity,
    PackageRef,
    is_reserved_path,
    normalize_archive_path,
    parse_manifest,
    parse_package_ref,
    validate_id,
)
from nugetkit.manifest.nuspec import parse_nuspec, read_nuspec, render_nuspec

__all__ = [
    "ContentFile",
    "Dependency",
    "Manifest",
    "PackageIdentity",
    "PackageRef",
    "is_reserved_path",
    "load_manifest",
    "normalize_archive_path",
    "parse_manifest",
    "parse_nuspec",
    "parse_package_ref",
    "read_manifest_document",
    "read_nuspec",
    "render_nuspec",
    "validate_id",
]
