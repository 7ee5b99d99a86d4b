"""XML vocabulary and schema registry for SDK repository and add-on documents.

Two document families exist:
- sdk-repository: the trusted index published with the SDK (repository.xml)
- sdk-addon: third-party add-on indexes (addon.xml)

Each family declares its schema version as the trailing segment of its
namespace URI, e.g. http://schemas.android.com/sdk/android/repository/3
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from importlib import resources

# Root elements
NODE_SDK_REPOSITORY = "sdk-repository"
NODE_SDK_ADDON = "sdk-addon"

# Package elements
NODE_PLATFORM = "platform"
NODE_ADD_ON = "add-on"
NODE_EXTRA = "extra"
NODE_DOC = "doc"
NODE_TOOL = "tool"
NODE_PLATFORM_TOOL = "platform-tool"
NODE_SAMPLE = "sample"

# Licenses
NODE_LICENSE = "license"
NODE_USES_LICENSE = "uses-license"
ATTR_ID = "id"
ATTR_REF = "ref"

# Common package children
NODE_REVISION = "revision"
NODE_DESCRIPTION = "description"
NODE_DESC_URL = "desc-url"
NODE_RELEASE_NOTE = "release-note"
NODE_RELEASE_URL = "release-url"
NODE_OBSOLETE = "obsolete"

# Archives
NODE_ARCHIVES = "archives"
NODE_ARCHIVE = "archive"
NODE_SIZE = "size"
NODE_CHECKSUM = "checksum"
NODE_URL = "url"
ATTR_OS = "os"
ATTR_ARCH = "arch"
ATTR_TYPE = "type"

# Variant-specific children
NODE_VERSION = "version"
NODE_API_LEVEL = "api-level"
NODE_CODENAME = "codename"
NODE_MIN_TOOLS_REV = "min-tools-rev"
NODE_MIN_PLATFORM_TOOLS_REV = "min-platform-tools-rev"
NODE_NAME = "name"
NODE_VENDOR = "vendor"
NODE_PATH = "path"
NODE_LIBS = "libs"
NODE_LIB = "lib"

XSD_PACKAGE = "sdkrepo.sources.xsd"


@dataclass(frozen=True)
class RepositorySchema:
    """Static description of one document family."""

    root_element: str
    default_xml_file: str
    ns_base: str
    latest_version: int
    xsd_prefix: str

    @property
    def ns_pattern(self) -> re.Pattern:
        """Pattern whose single group captures the version of a namespace URI."""
        return _compile_ns_pattern(self.ns_base)

    @property
    def ns_uri(self) -> str:
        """Namespace URI of the latest supported version."""
        return self.schema_uri(self.latest_version)

    def schema_uri(self, version: int) -> str:
        """Namespace URI registered for a given version."""
        return f"{self.ns_base}{version}"

    def xsd_name(self, version: int) -> str:
        return f"{self.xsd_prefix}-{version}.xsd"

    def supports(self, version: int) -> bool:
        return 1 <= version <= self.latest_version


@lru_cache(maxsize=None)
def _compile_ns_pattern(ns_base: str) -> re.Pattern:
    return re.compile(re.escape(ns_base) + r"([1-9][0-9]*)")


REPOSITORY_SCHEMA = RepositorySchema(
    root_element=NODE_SDK_REPOSITORY,
    default_xml_file="repository.xml",
    ns_base="http://schemas.android.com/sdk/android/repository/",
    latest_version=3,
    xsd_prefix="sdk-repository",
)

ADDON_SCHEMA = RepositorySchema(
    root_element=NODE_SDK_ADDON,
    default_xml_file="addon.xml",
    ns_base="http://schemas.android.com/sdk/android/addon/",
    latest_version=2,
    xsd_prefix="sdk-addon",
)


class SourceKind(Enum):
    """Trust level of a source.

    Repository sources are trusted and may publish every package type.
    Add-on sources are user supplied and only contribute add-ons and extras.
    """

    REPOSITORY = "repository"
    ADDON = "addon"

    @property
    def is_addon(self) -> bool:
        return self is SourceKind.ADDON

    @property
    def schema(self) -> RepositorySchema:
        return ADDON_SCHEMA if self.is_addon else REPOSITORY_SCHEMA


@lru_cache(maxsize=None)
def get_xsd_bytes(xsd_name: str) -> bytes | None:
    """Read a packaged XSD document.

    Returns None when no schema ships under that name. Results are cached
    and never mutated, so concurrent readers share them safely.
    """
    resource = resources.files(XSD_PACKAGE).joinpath(xsd_name)
    if not resource.is_file():
        return None
    return resource.read_bytes()
