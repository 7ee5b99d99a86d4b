"""Forward-compatibility probe for documents newer than we support.

A repository published with a future schema may still describe the tools
packages that would let this engine update itself. Rather than discarding
the whole document, the probe copies just those tool elements (and the
licenses they reference) into a fresh document in the newest namespace we
know, keeping only children our own vocabulary understands.

The result is never schema-validated: it is built element by element from
a fixed, known shape.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from sdkrepo.sources.constants import (
    ATTR_ID,
    ATTR_REF,
    NODE_ARCHIVE,
    NODE_ARCHIVES,
    NODE_CHECKSUM,
    NODE_DESC_URL,
    NODE_DESCRIPTION,
    NODE_LICENSE,
    NODE_MIN_PLATFORM_TOOLS_REV,
    NODE_OBSOLETE,
    NODE_PLATFORM_TOOL,
    NODE_RELEASE_NOTE,
    NODE_RELEASE_URL,
    NODE_REVISION,
    NODE_SIZE,
    NODE_TOOL,
    NODE_URL,
    NODE_USES_LICENSE,
    SourceKind,
)
from sdkrepo.sources.parser import split_tag

logger = logging.getLogger(__name__)

# Elements we can still install from a newer document
TOOL_ELEMENTS = (NODE_TOOL, NODE_PLATFORM_TOOL)

# Children of a tool element copied into the reduced document
TOOL_CHILDREN = {
    NODE_REVISION,
    NODE_DESCRIPTION,
    NODE_DESC_URL,
    NODE_RELEASE_NOTE,
    NODE_RELEASE_URL,
    NODE_OBSOLETE,
    NODE_USES_LICENSE,
    NODE_MIN_PLATFORM_TOOLS_REV,
}

ARCHIVE_CHILDREN = {NODE_SIZE, NODE_CHECKSUM, NODE_URL}


def _copy_leaf(source: ET.Element, parent: ET.Element, ns_uri: str, name: str) -> ET.Element:
    """Copy an element's attributes and text under parent, renamed into ns_uri."""
    copy = ET.SubElement(parent, f"{{{ns_uri}}}{name}", dict(source.attrib))
    if source.text and source.text.strip():
        copy.text = source.text.strip()
    return copy


def _find(element: ET.Element, ns_uri: str, name: str) -> ET.Element | None:
    return element.find(f"{{{ns_uri}}}{name}")


def _copy_archives(
    archives: ET.Element, src_ns: str, parent: ET.Element, dst_ns: str
) -> int:
    """Copy <archive> entries carrying a url; returns how many were copied."""
    archives_copy = ET.SubElement(parent, f"{{{dst_ns}}}{NODE_ARCHIVES}")
    copied = 0
    for archive in archives.findall(f"{{{src_ns}}}{NODE_ARCHIVE}"):
        if _find(archive, src_ns, NODE_URL) is None:
            continue
        archive_copy = ET.SubElement(
            archives_copy, f"{{{dst_ns}}}{NODE_ARCHIVE}", dict(archive.attrib)
        )
        for child in archive:
            if not isinstance(child.tag, str):
                continue
            child_ns, local_name = split_tag(child.tag)
            if child_ns == src_ns and local_name in ARCHIVE_CHILDREN:
                _copy_leaf(child, archive_copy, dst_ns, local_name)
        copied += 1
    return copied


def _copy_tool(
    tool: ET.Element, src_ns: str, local_name: str, parent: ET.Element, dst_ns: str
) -> ET.Element | None:
    """Copy one tool element, or return None if it lacks a revision or archives."""
    archives = _find(tool, src_ns, NODE_ARCHIVES)
    if _find(tool, src_ns, NODE_REVISION) is None or archives is None:
        return None

    tool_copy = ET.Element(f"{{{dst_ns}}}{local_name}")
    for child in tool:
        if not isinstance(child.tag, str):
            continue
        child_ns, child_name = split_tag(child.tag)
        if child_ns == src_ns and child_name in TOOL_CHILDREN:
            _copy_leaf(child, tool_copy, dst_ns, child_name)

    if _copy_archives(archives, src_ns, tool_copy, dst_ns) == 0:
        return None

    parent.append(tool_copy)
    return tool_copy


def find_alternate_tools_xml(data: bytes | None, kind: SourceKind) -> ET.Element | None:
    """Extract the tools subset of a document using a newer schema.

    Args:
        data: Raw bytes of a document whose declared version is newer than
              the latest supported one
        kind: Source kind; add-on documents never carry tools

    Returns:
        Root element of a reduced document in the latest supported
        namespace, containing only tool/platform-tool elements and the
        licenses they use, or None if no usable tool element exists.
    """
    if not data or kind.is_addon:
        return None

    schema = kind.schema
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        logger.debug(f"Newer-schema document is not well-formed: {e}")
        return None

    src_ns, root_name = split_tag(root.tag)
    if root_name != schema.root_element or not schema.ns_pattern.fullmatch(src_ns):
        return None

    dst_ns = schema.ns_uri
    new_root = ET.Element(f"{{{dst_ns}}}{schema.root_element}")

    used_licenses: set[str] = set()
    tool_count = 0
    for child in root:
        if not isinstance(child.tag, str):
            continue
        child_ns, local_name = split_tag(child.tag)
        if child_ns != src_ns or local_name not in TOOL_ELEMENTS:
            continue
        tool_copy = _copy_tool(child, src_ns, local_name, new_root, dst_ns)
        if tool_copy is None:
            continue
        tool_count += 1
        uses_license = _find(tool_copy, dst_ns, NODE_USES_LICENSE)
        if uses_license is not None and uses_license.get(ATTR_REF):
            used_licenses.add(uses_license.get(ATTR_REF))

    if tool_count == 0:
        return None

    for child in root:
        if child.tag != f"{{{src_ns}}}{NODE_LICENSE}":
            continue
        if child.get(ATTR_ID) in used_licenses:
            license_copy = ET.Element(f"{{{dst_ns}}}{NODE_LICENSE}", dict(child.attrib))
            license_copy.text = "".join(child.itertext())
            new_root.insert(0, license_copy)

    logger.info(f"Extracted {tool_count} tool element(s) from a newer schema document")
    return new_root
