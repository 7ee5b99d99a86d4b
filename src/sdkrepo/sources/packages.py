"""Package descriptors parsed from repository documents.

Each package element of a repository or add-on document maps to one frozen
dataclass variant. The set of variants is closed: PACKAGE_FACTORIES maps
element names to their class and to whether the variant may only come from
a trusted (non add-on) source.

Packages are immutable once built and totally ordered so that a parsed
list can be sorted deterministically:
    platform < add-on < sample < doc < tool < platform-tool < extra
then by API level (newest first), name, and revision (newest first).
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from sdkrepo.sources.constants import (
    ATTR_ARCH,
    ATTR_OS,
    ATTR_REF,
    ATTR_TYPE,
    NODE_ADD_ON,
    NODE_API_LEVEL,
    NODE_ARCHIVE,
    NODE_ARCHIVES,
    NODE_CHECKSUM,
    NODE_CODENAME,
    NODE_DESC_URL,
    NODE_DESCRIPTION,
    NODE_DOC,
    NODE_EXTRA,
    NODE_LIB,
    NODE_LIBS,
    NODE_MIN_PLATFORM_TOOLS_REV,
    NODE_MIN_TOOLS_REV,
    NODE_NAME,
    NODE_OBSOLETE,
    NODE_PATH,
    NODE_PLATFORM,
    NODE_PLATFORM_TOOL,
    NODE_RELEASE_NOTE,
    NODE_RELEASE_URL,
    NODE_REVISION,
    NODE_SAMPLE,
    NODE_SIZE,
    NODE_TOOL,
    NODE_URL,
    NODE_USES_LICENSE,
    NODE_VENDOR,
    NODE_VERSION,
    SourceKind,
)
from sdkrepo.sources.errors import PackageParseError


class PackageKind(Enum):
    """Package variants, valued by their XML element name."""

    PLATFORM = NODE_PLATFORM
    ADDON = NODE_ADD_ON
    SAMPLE = NODE_SAMPLE
    DOC = NODE_DOC
    TOOL = NODE_TOOL
    PLATFORM_TOOL = NODE_PLATFORM_TOOL
    EXTRA = NODE_EXTRA

    @property
    def rank(self) -> int:
        return _KIND_RANK[self]


_KIND_RANK = {kind: index for index, kind in enumerate(PackageKind)}


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def _qname(ns_uri: str, name: str) -> str:
    return f"{{{ns_uri}}}{name}"


def _child(element: ET.Element, ns_uri: str, name: str) -> ET.Element | None:
    return element.find(_qname(ns_uri, name))


def _text(element: ET.Element, ns_uri: str, name: str, default: str = "") -> str:
    child = _child(element, ns_uri, name)
    if child is None or child.text is None:
        return default
    return child.text.strip()


def _required_text(element: ET.Element, ns_uri: str, name: str, owner: str) -> str:
    value = _text(element, ns_uri, name)
    if not value:
        raise PackageParseError(owner, f"missing <{name}>")
    return value


def _int(element: ET.Element, ns_uri: str, name: str, owner: str, required: bool) -> int:
    raw = _text(element, ns_uri, name)
    if not raw:
        if required:
            raise PackageParseError(owner, f"missing <{name}>")
        return 0
    try:
        return int(raw)
    except ValueError:
        raise PackageParseError(owner, f"invalid <{name}> value '{raw}'")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Archive:
    """One downloadable archive of a package."""

    url: str
    size: int = 0
    checksum: str = ""
    checksum_type: str = "sha1"
    os: str = "any"
    arch: str = "any"

    def is_compatible(self, os_name: str, arch: str = "any") -> bool:
        """True if this archive can be installed on the given os/arch."""
        os_ok = self.os == "any" or self.os == os_name
        arch_ok = self.arch == "any" or arch == "any" or self.arch == arch
        return os_ok and arch_ok

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "size": self.size,
            "checksum": self.checksum,
            "checksum_type": self.checksum_type,
            "os": self.os,
            "arch": self.arch,
        }


@dataclass(frozen=True)
class AddonLibrary:
    """An optional library shipped with an add-on."""

    name: str
    description: str = ""


def _parse_archives(element: ET.Element, ns_uri: str, owner: str) -> tuple[Archive, ...]:
    archives_elem = _child(element, ns_uri, NODE_ARCHIVES)
    if archives_elem is None:
        return ()

    archives = []
    for archive_elem in archives_elem.findall(_qname(ns_uri, NODE_ARCHIVE)):
        url = _required_text(archive_elem, ns_uri, NODE_URL, owner)
        checksum_elem = _child(archive_elem, ns_uri, NODE_CHECKSUM)
        archives.append(
            Archive(
                url=url,
                size=_int(archive_elem, ns_uri, NODE_SIZE, owner, required=False),
                checksum=(checksum_elem.text or "").strip()
                if checksum_elem is not None
                else "",
                checksum_type=checksum_elem.get(ATTR_TYPE, "sha1")
                if checksum_elem is not None
                else "sha1",
                os=archive_elem.get(ATTR_OS, "any"),
                arch=archive_elem.get(ATTR_ARCH, "any"),
            )
        )
    return tuple(archives)


def _common_fields(
    element: ET.Element,
    ns_uri: str,
    licenses: dict[str, str],
    source_url: str,
    owner: str,
) -> dict:
    """Fields shared by every package variant."""
    license_ref = None
    uses_license = _child(element, ns_uri, NODE_USES_LICENSE)
    if uses_license is not None:
        license_ref = uses_license.get(ATTR_REF)

    return {
        "source_url": source_url,
        "revision": _int(element, ns_uri, NODE_REVISION, owner, required=True),
        "description": _text(element, ns_uri, NODE_DESCRIPTION),
        "desc_url": _text(element, ns_uri, NODE_DESC_URL),
        "release_note": _text(element, ns_uri, NODE_RELEASE_NOTE),
        "release_url": _text(element, ns_uri, NODE_RELEASE_URL),
        "obsolete": _child(element, ns_uri, NODE_OBSOLETE) is not None,
        "license_ref": license_ref,
        "license": licenses.get(license_ref) if license_ref else None,
        "archives": _parse_archives(element, ns_uri, owner),
    }


def _api_label(api_level: int, codename: str) -> str:
    if codename:
        return f"{codename} Preview"
    return f"API {api_level}"


# ---------------------------------------------------------------------------
# Package variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Package:
    """Fields and ordering shared by all package variants.

    source_url is a back-reference to the originating source's URL; the
    source does not own packages and packages never mutate it.
    """

    kind: ClassVar[PackageKind]

    source_url: str = ""
    revision: int = 0
    description: str = ""
    desc_url: str = ""
    release_note: str = ""
    release_url: str = ""
    obsolete: bool = False
    license_ref: str | None = None
    license: str | None = None
    archives: tuple[Archive, ...] = ()

    def short_description(self) -> str:
        raise NotImplementedError

    def long_description(self) -> str:
        """Description text followed by the revision line."""
        text = self.description or self.short_description()
        if self.obsolete:
            text += " (Obsolete)"
        return f"{text}\nRevision {self.revision}"

    def _name_key(self) -> str:
        return ""

    def sort_key(self) -> tuple:
        api_level = getattr(self, "api_level", 0)
        return (self.kind.rank, -api_level, self._name_key(), -self.revision)

    def __lt__(self, other: "Package") -> bool:
        if not isinstance(other, Package):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "kind": self.kind.value,
            "short_description": self.short_description(),
            "long_description": self.long_description(),
            "revision": self.revision,
            "api_level": getattr(self, "api_level", 0),
            "description": self.description,
            "obsolete": self.obsolete,
            "license_ref": self.license_ref,
            "source_url": self.source_url,
            "archives": [a.to_dict() for a in self.archives],
        }


@dataclass(frozen=True)
class PlatformPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.PLATFORM

    version: str = ""
    api_level: int = 0
    codename: str = ""
    min_tools_rev: int = 0

    def short_description(self) -> str:
        return (
            f"SDK Platform Android {self.version}, "
            f"{_api_label(self.api_level, self.codename)}, revision {self.revision}"
        )

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "PlatformPackage":
        owner = NODE_PLATFORM
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            version=_required_text(element, ns_uri, NODE_VERSION, owner),
            api_level=_int(element, ns_uri, NODE_API_LEVEL, owner, required=True),
            codename=_text(element, ns_uri, NODE_CODENAME),
            min_tools_rev=_int(element, ns_uri, NODE_MIN_TOOLS_REV, owner, required=False),
        )


@dataclass(frozen=True)
class AddonPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.ADDON

    name: str = ""
    vendor: str = ""
    api_level: int = 0
    codename: str = ""
    libraries: tuple[AddonLibrary, ...] = ()

    def short_description(self) -> str:
        return (
            f"{self.name}, Android {_api_label(self.api_level, self.codename)}, "
            f"revision {self.revision}"
        )

    def _name_key(self) -> str:
        return f"{self.vendor}|{self.name}"

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "AddonPackage":
        owner = NODE_ADD_ON
        libraries = []
        libs_elem = _child(element, ns_uri, NODE_LIBS)
        if libs_elem is not None:
            for lib in libs_elem.findall(_qname(ns_uri, NODE_LIB)):
                libraries.append(
                    AddonLibrary(
                        name=_required_text(lib, ns_uri, NODE_NAME, owner),
                        description=_text(lib, ns_uri, NODE_DESCRIPTION),
                    )
                )
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            name=_required_text(element, ns_uri, NODE_NAME, owner),
            vendor=_required_text(element, ns_uri, NODE_VENDOR, owner),
            api_level=_int(element, ns_uri, NODE_API_LEVEL, owner, required=True),
            codename=_text(element, ns_uri, NODE_CODENAME),
            libraries=tuple(libraries),
        )


@dataclass(frozen=True)
class SamplePackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.SAMPLE

    api_level: int = 0
    codename: str = ""
    min_tools_rev: int = 0

    def short_description(self) -> str:
        return (
            f"Samples for SDK {_api_label(self.api_level, self.codename)}, "
            f"revision {self.revision}"
        )

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "SamplePackage":
        owner = NODE_SAMPLE
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            api_level=_int(element, ns_uri, NODE_API_LEVEL, owner, required=True),
            codename=_text(element, ns_uri, NODE_CODENAME),
            min_tools_rev=_int(element, ns_uri, NODE_MIN_TOOLS_REV, owner, required=False),
        )


@dataclass(frozen=True)
class DocPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.DOC

    api_level: int = 0
    codename: str = ""

    def short_description(self) -> str:
        return (
            f"Documentation for Android SDK, "
            f"{_api_label(self.api_level, self.codename)}, revision {self.revision}"
        )

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "DocPackage":
        owner = NODE_DOC
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            api_level=_int(element, ns_uri, NODE_API_LEVEL, owner, required=True),
            codename=_text(element, ns_uri, NODE_CODENAME),
        )


@dataclass(frozen=True)
class ToolPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.TOOL

    min_platform_tools_rev: int = 0

    def short_description(self) -> str:
        return f"Android SDK Tools, revision {self.revision}"

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "ToolPackage":
        owner = NODE_TOOL
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            min_platform_tools_rev=_int(
                element, ns_uri, NODE_MIN_PLATFORM_TOOLS_REV, owner, required=False
            ),
        )


@dataclass(frozen=True)
class PlatformToolPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.PLATFORM_TOOL

    def short_description(self) -> str:
        return f"Android SDK Platform-tools, revision {self.revision}"

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "PlatformToolPackage":
        return cls(**_common_fields(element, ns_uri, licenses, source_url, NODE_PLATFORM_TOOL))


@dataclass(frozen=True)
class ExtraPackage(Package):
    kind: ClassVar[PackageKind] = PackageKind.EXTRA

    vendor: str = ""
    path: str = ""
    min_tools_rev: int = 0

    def short_description(self) -> str:
        title = self.path.replace("_", " ")
        if self.vendor:
            title = f"{self.vendor} {title}"
        return f"{title} package, revision {self.revision}"

    def _name_key(self) -> str:
        return f"{self.vendor}|{self.path}"

    @classmethod
    def from_element(cls, element, ns_uri, licenses, source_url) -> "ExtraPackage":
        owner = NODE_EXTRA
        return cls(
            **_common_fields(element, ns_uri, licenses, source_url, owner),
            vendor=_text(element, ns_uri, NODE_VENDOR),
            path=_required_text(element, ns_uri, NODE_PATH, owner),
            min_tools_rev=_int(element, ns_uri, NODE_MIN_TOOLS_REV, owner, required=False),
        )


# element name -> (variant, trusted sources only)
PACKAGE_FACTORIES: dict[str, tuple[type[Package], bool]] = {
    NODE_ADD_ON: (AddonPackage, False),
    NODE_EXTRA: (ExtraPackage, False),
    NODE_PLATFORM: (PlatformPackage, True),
    NODE_DOC: (DocPackage, True),
    NODE_TOOL: (ToolPackage, True),
    NODE_PLATFORM_TOOL: (PlatformToolPackage, True),
    NODE_SAMPLE: (SamplePackage, True),
}


def create_package(
    element: ET.Element,
    ns_uri: str,
    licenses: dict[str, str],
    source_kind: SourceKind,
    source_url: str = "",
) -> Package | None:
    """Build the package variant matching an element's local name.

    Add-ons and extras can come from any source. Platforms, docs, tools,
    platform-tools and samples are only built for trusted repository
    sources; for add-on sources they return None, as do unknown elements.

    Raises:
        PackageParseError: The element is a known package but is malformed
    """
    local_name = element.tag.rpartition("}")[2]
    entry = PACKAGE_FACTORIES.get(local_name)
    if entry is None:
        return None
    package_cls, trusted_only = entry
    if trusted_only and source_kind.is_addon:
        return None
    return package_cls.from_element(element, ns_uri, licenses, source_url)
