"""Canonical ``.nuspec`` serialization.

The rendered document is byte-for-byte deterministic for a given Manifest:
fixed element order, two-space indentation, ``\\n`` line endings and UTF-8
with an XML declaration. Optional elements are omitted when empty.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any

from nugetkit.errors import ManifestValidationError, ValidationIssue
from nugetkit.manifest.model import Manifest, parse_manifest
from nugetkit.versioning import VersionRange

if TYPE_CHECKING:
    from pathlib import Path

NUSPEC_NAMESPACE = "http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd"
XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _text_element(parent: ET.Element, name: str, value: str | None) -> None:
    if value:
        ET.SubElement(parent, name).text = value


def render_nuspec(manifest: Manifest) -> bytes:
    """Serialize a manifest into its canonical nuspec document.

    Args:
        manifest: Validated manifest.

    Returns:
        UTF-8 encoded nuspec bytes.
    """
    # Default namespace as a plain xmlns attribute; all tags stay unqualified
    root = ET.Element("package", {"xmlns": NUSPEC_NAMESPACE})
    metadata = ET.SubElement(root, "metadata")

    _text_element(metadata, "id", manifest.identity.id)
    _text_element(metadata, "version", str(manifest.identity.version))
    _text_element(metadata, "title", manifest.title)
    _text_element(metadata, "authors", ", ".join(manifest.authors))
    _text_element(metadata, "owners", ", ".join(manifest.owners))
    if manifest.require_license_acceptance:
        _text_element(metadata, "requireLicenseAcceptance", "true")
    if manifest.license:
        license_el = ET.SubElement(metadata, "license", {"type": "expression"})
        license_el.text = manifest.license
    _text_element(metadata, "projectUrl", manifest.project_url)
    _text_element(metadata, "icon", manifest.icon)
    _text_element(metadata, "readme", manifest.readme)
    _text_element(metadata, "description", manifest.description)
    _text_element(metadata, "releaseNotes", manifest.release_notes)
    _text_element(metadata, "tags", " ".join(manifest.tags))

    if manifest.dependencies:
        deps_el = ET.SubElement(metadata, "dependencies")
        group_el: ET.Element | None = None
        current: str | None = None
        # Dependencies are already sorted by (framework, id)
        for dep in manifest.dependencies:
            if group_el is None or dep.target_framework != current:
                attrs = {"targetFramework": dep.target_framework} if dep.target_framework else {}
                group_el = ET.SubElement(deps_el, "group", attrs)
                current = dep.target_framework
            dep_attrs = {"id": dep.id}
            if dep.range != VersionRange.any():
                dep_attrs["version"] = str(dep.range)
            ET.SubElement(group_el, "dependency", dep_attrs)

    if manifest.content_files:
        files_el = ET.SubElement(root, "files")
        for content in manifest.content_files:
            ET.SubElement(files_el, "file", {"src": content.source, "target": content.target})

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode", short_empty_elements=True)
    return (XML_DECLARATION + body + "\n").encode("utf-8")


def read_nuspec(data: bytes | str) -> dict[str, Any]:
    """Parse a nuspec document into the manifest field mapping.

    Any nuspec schema namespace is accepted. Elements this toolkit does not
    model are ignored.

    Raises:
        ManifestValidationError: If the document is not well-formed XML or
            has no ``<metadata>`` element.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ManifestValidationError([ValidationIssue("nuspec", f"malformed XML: {e}")]) from e

    if _local(root.tag) != "package":
        raise ManifestValidationError(
            [ValidationIssue("nuspec", f"root element must be <package>, got <{_local(root.tag)}>")]
        )
    metadata = next((child for child in root if _local(child.tag) == "metadata"), None)
    if metadata is None:
        raise ManifestValidationError([ValidationIssue("nuspec", "missing <metadata> element")])

    fields: dict[str, Any] = {}
    for child in metadata:
        name = _local(child.tag)
        if name == "dependencies":
            fields["dependencies"] = _read_dependencies(child)
        elif name in (
            "id",
            "version",
            "title",
            "authors",
            "owners",
            "requireLicenseAcceptance",
            "license",
            "projectUrl",
            "icon",
            "readme",
            "description",
            "releaseNotes",
            "tags",
        ):
            fields[name] = (child.text or "").strip()

    files_el = next((child for child in root if _local(child.tag) == "files"), None)
    if files_el is not None:
        fields["files"] = [
            {"src": file_el.get("src", ""), "target": file_el.get("target")}
            for file_el in files_el
            if _local(file_el.tag) == "file"
        ]
    return fields


def _read_dependencies(element: ET.Element) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for child in element:
        name = _local(child.tag)
        if name == "dependency":
            entries.append(_dependency_entry(child, None))
        elif name == "group":
            framework = child.get("targetFramework")
            entries.extend(
                _dependency_entry(dep, framework) for dep in child if _local(dep.tag) == "dependency"
            )
    return entries


def _dependency_entry(element: ET.Element, framework: str | None) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": element.get("id")}
    if element.get("version") is not None:
        entry["range"] = element.get("version")
    if framework:
        entry["targetFramework"] = framework
    return entry


def parse_nuspec(
    data: bytes | str,
    base_dir: Path | None = None,
    *,
    check_files: bool = True,
) -> Manifest:
    """Parse and validate a nuspec document.

    Raises:
        ManifestValidationError: With every issue found.
    """
    return parse_manifest(read_nuspec(data), base_dir, check_files=check_files)
