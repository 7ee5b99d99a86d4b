"""Repository source resolution.

This package turns a repository or add-on URL into package descriptors:
- fetcher.py: Fetch raw bytes, classifying failures
- schema.py: Detect the declared schema version and validate against XSD
- compat.py: Extract tools from documents using a newer schema
- packages.py: Package variants and the trust-gated factory
- parser.py: Build sorted packages from a validated document
- source.py: SdkSource and the SourceLoader state machine
- catalog.py: Built-in and user-registered sources
"""

from sdkrepo.sources.catalog import SourceCatalog
from sdkrepo.sources.compat import find_alternate_tools_xml
from sdkrepo.sources.constants import ADDON_SCHEMA, REPOSITORY_SCHEMA, SourceKind
from sdkrepo.sources.errors import CatalogError, PackageParseError, SdkRepoError
from sdkrepo.sources.fetcher import (
    ContentFetcher,
    FetchError,
    FetchIOError,
    FetchNotFoundError,
    FetchSSLError,
    UrlFetcher,
)
from sdkrepo.sources.monitor import (
    ConsoleMonitor,
    LoggingMonitor,
    NullMonitor,
    RecordingMonitor,
    TaskMonitor,
)
from sdkrepo.sources.packages import (
    AddonPackage,
    Archive,
    DocPackage,
    ExtraPackage,
    Package,
    PackageKind,
    PlatformPackage,
    PlatformToolPackage,
    SamplePackage,
    ToolPackage,
    create_package,
)
from sdkrepo.sources.parser import parse_packages
from sdkrepo.sources.schema import SchemaValidator, ValidationResult, detect_version
from sdkrepo.sources.source import (
    LoadErrorKind,
    LoadOutcome,
    LoadState,
    SdkSource,
    SourceLoader,
    UpgradeHint,
)

__all__ = [
    "SourceCatalog",
    "find_alternate_tools_xml",
    "ADDON_SCHEMA",
    "REPOSITORY_SCHEMA",
    "SourceKind",
    "CatalogError",
    "PackageParseError",
    "SdkRepoError",
    "ContentFetcher",
    "FetchError",
    "FetchIOError",
    "FetchNotFoundError",
    "FetchSSLError",
    "UrlFetcher",
    "ConsoleMonitor",
    "LoggingMonitor",
    "NullMonitor",
    "RecordingMonitor",
    "TaskMonitor",
    "AddonPackage",
    "Archive",
    "DocPackage",
    "ExtraPackage",
    "Package",
    "PackageKind",
    "PlatformPackage",
    "PlatformToolPackage",
    "SamplePackage",
    "ToolPackage",
    "create_package",
    "parse_packages",
    "SchemaValidator",
    "ValidationResult",
    "detect_version",
    "LoadErrorKind",
    "LoadOutcome",
    "LoadState",
    "SdkSource",
    "SourceLoader",
    "UpgradeHint",
]
