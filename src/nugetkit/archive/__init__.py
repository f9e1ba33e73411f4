"""Deterministic package archive builder and reader."""

from nugetkit.archive.builder import (
    CONTENT_TYPES_PATH,
    RELATIONSHIPS_PATH,
    Archive,
    BuildConfig,
    FileReader,
    LocalFileReader,
    build_archive,
    relationship_id,
    render_content_types,
    render_relationships,
)
from nugetkit.archive.reader import extract_manifest, load_archive, read_archive, read_entry

__all__ = [
    "CONTENT_TYPES_PATH",
    "RELATIONSHIPS_PATH",
    "Archive",
    "BuildConfig",
    "FileReader",
    "LocalFileReader",
    "build_archive",
    "extract_manifest",
    "load_archive",
    "read_archive",
    "read_entry",
    "relationship_id",
    "render_content_types",
    "render_relationships",
]
