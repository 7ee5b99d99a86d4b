"""Turn a validated repository document into package descriptors.

Parsing never fails as a whole because of one bad entry: each package
element is built independently, and an element that cannot be built is
logged, reported to the monitor and skipped.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET

from sdkrepo.sources.constants import ATTR_ID, NODE_LICENSE, SourceKind
from sdkrepo.sources.errors import PackageParseError
from sdkrepo.sources.monitor import NullMonitor, TaskMonitor
from sdkrepo.sources.packages import Package, create_package

logger = logging.getLogger(__name__)


def split_tag(tag: str) -> tuple[str, str]:
    """Split an ElementTree tag "{ns}local" into (ns, local)."""
    if tag.startswith("{"):
        ns_uri, _, local_name = tag[1:].partition("}")
        return ns_uri, local_name
    return "", tag


def read_document(data: bytes) -> ET.Element:
    """Parse bytes into a namespace-aware element tree root.

    Raises:
        ET.ParseError: The document is not well-formed XML
    """
    return ET.fromstring(data)


def collect_licenses(root: ET.Element, ns_uri: str) -> dict[str, str]:
    """Map license id -> license text for every <license> child of root."""
    licenses: dict[str, str] = {}
    for child in root:
        if child.tag != f"{{{ns_uri}}}{NODE_LICENSE}":
            continue
        license_id = child.get(ATTR_ID)
        if license_id is not None:
            licenses[license_id] = "".join(child.itertext())
    return licenses


def parse_packages(
    root: ET.Element,
    ns_uri: str,
    source_kind: SourceKind,
    source_url: str = "",
    monitor: TaskMonitor | None = None,
) -> tuple[Package, ...] | None:
    """Build the sorted packages declared by a repository document.

    Licenses are collected first so packages can reference them no matter
    where they are declared. Trusted-only variants are skipped for add-on
    sources (see create_package).

    Args:
        root: Root element of the validated (or probed) document
        ns_uri: Namespace URI the document was validated against
        source_kind: Trust level of the originating source
        source_url: URL recorded on each package
        monitor: Progress monitor receiving "Found ..." and skip reports

    Returns:
        Sorted tuple of packages, or None if root is not the expected
        root element in ns_uri.
    """
    monitor = monitor or NullMonitor()
    root_name = source_kind.schema.root_element

    if root.tag != f"{{{ns_uri}}}{root_name}":
        logger.warning(f"Expected <{root_name}> in {ns_uri}, found {root.tag}")
        return None

    licenses = collect_licenses(root, ns_uri)

    packages: list[Package] = []
    for child in root:
        if not isinstance(child.tag, str):
            continue
        child_ns, local_name = split_tag(child.tag)
        if child_ns != ns_uri:
            continue

        try:
            package = create_package(child, ns_uri, licenses, source_kind, source_url)
        except ValueError as e:
            reason = e.reason if isinstance(e, PackageParseError) else str(e)
            logger.warning(f"Ignoring invalid {local_name} element: {reason}")
            monitor.set_result(f"Ignoring invalid {local_name} element: {reason}")
            continue

        if package is not None:
            packages.append(package)
            monitor.set_description(f"Found {package.short_description()}")

    return tuple(sorted(packages))
