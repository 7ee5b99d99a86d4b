"""Repository sources and the loader that resolves them.

An SdkSource is a download site identified by its URL: either the trusted
SDK repository or a user-supplied add-on site. SourceLoader turns a source
into a LoadOutcome by running an explicit state machine:

    START -> FETCHING -> FETCH_FAILED | FETCHED
    FETCHED -> DETECTING_VERSION -> NO_VERSION | VERSION_SUPPORTED | VERSION_TOO_NEW
    VERSION_SUPPORTED -> VALIDATING -> VALIDATION_FAILED | VALIDATOR_MISSING | VALIDATED
    VERSION_TOO_NEW -> PROBING -> PROBE_FAILED | PROBED
    VALIDATED | PROBED -> PARSING -> PARSED
    every failure ends in FAILED

At most two fetches happen for the original URL (the URL as given, then
the URL with the default index filename appended), and the
detect/validate loop runs at most twice. Every failure is reported as data
on the LoadOutcome; nothing is raised to the caller.

A source's packages are only replaced when a load reaches PARSED, so a
transient outage never erases a previously good package list.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum

from sdkrepo.config import Settings
from sdkrepo.sources.compat import find_alternate_tools_xml
from sdkrepo.sources.constants import SourceKind
from sdkrepo.sources.fetcher import (
    ContentFetcher,
    FetchError,
    FetchNotFoundError,
    FetchSSLError,
    UrlFetcher,
    classify_fetch_exception,
)
from sdkrepo.sources.monitor import NullMonitor, TaskMonitor
from sdkrepo.sources.packages import Package
from sdkrepo.sources.parser import parse_packages, read_document
from sdkrepo.sources.schema import SchemaValidator, detect_version

logger = logging.getLogger(__name__)

PROGRESS_STEPS = 4


class LoadState(Enum):
    """States of a single source load."""

    START = "start"
    FETCHING = "fetching"
    FETCH_FAILED = "fetch_failed"
    FETCHED = "fetched"
    DETECTING_VERSION = "detecting_version"
    NO_VERSION = "no_version"
    VERSION_SUPPORTED = "version_supported"
    VERSION_TOO_NEW = "version_too_new"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    VALIDATOR_MISSING = "validator_missing"
    VALIDATED = "validated"
    PROBING = "probing"
    PROBE_FAILED = "probe_failed"
    PROBED = "probed"
    PARSING = "parsing"
    PARSED = "parsed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({LoadState.PARSED, LoadState.FAILED})

# Upper bound on handler invocations for one load
MAX_TRANSITIONS = 32


class LoadErrorKind(Enum):
    """Classification of the final error of a load."""

    FETCH_NOT_FOUND = "fetch_not_found"
    FETCH_SSL = "fetch_ssl"
    FETCH_IO = "fetch_io"
    VALIDATOR_MISSING = "validator_missing"
    DOCUMENT_INVALID = "document_invalid"
    UNRECOGNIZED_DOCUMENT = "unrecognized_document"
    UNSUPPORTED_SCHEMA = "unsupported_schema"
    PARSE_FAILED = "parse_failed"


class UpgradeHint(Enum):
    """Which upgrade instructions to show when a source needs a newer engine."""

    TOOLS = "tools"
    IDE_PLUGIN = "ide_plugin"

    @property
    def info(self) -> str:
        if self is UpgradeHint.IDE_PLUGIN:
            return (
                "This repository requires a more recent version of the IDE plugin. "
                "Please update the plugin."
            )
        return "This repository requires a more recent version of the Tools. Please update."

    @property
    def description(self) -> str:
        if self is UpgradeHint.IDE_PLUGIN:
            return (
                "This repository requires a more recent version of the IDE plugin.\n"
                "You must update it before you can see other new packages."
            )
        return (
            "This repository requires a more recent version of the Tools.\n"
            "You must update it before you can see other new packages."
        )


@dataclass(frozen=True)
class LoadOutcome:
    """Immutable result of loading one source.

    packages is None unless the load reached PARSED. url is the URL the
    source should keep: the alternate URL when that is what worked.
    """

    url: str
    state: LoadState
    description: str
    packages: tuple[Package, ...] | None = None
    error: str | None = None
    error_kind: LoadErrorKind | None = None
    validation_error: str | None = None
    schema_version: int = 0
    schema_uri: str | None = None
    used_alternate_url: bool = False
    upgrade_required: bool = False

    @property
    def success(self) -> bool:
        return self.state is LoadState.PARSED

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "url": self.url,
            "state": self.state.value,
            "success": self.success,
            "description": self.description,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "validation_error": self.validation_error,
            "schema_version": self.schema_version,
            "schema_uri": self.schema_uri,
            "used_alternate_url": self.used_alternate_url,
            "upgrade_required": self.upgrade_required,
            "packages": (
                [p.to_dict() for p in self.packages] if self.packages is not None else None
            ),
        }


def package_count_summary(count: int) -> str:
    if count == 0:
        return "No packages found."
    if count == 1:
        return "One package found."
    return f"{count} packages found."


def alternate_url(url: str, default_xml_file: str) -> str:
    """Append the default index filename to url, unless already there."""
    if url.endswith(default_xml_file):
        return url
    if not url.endswith("/"):
        url += "/"
    return url + default_xml_file


class SdkSource:
    """A repository or add-on download site.

    Two sources are equal when their URLs are equal. The loaded packages,
    description and last error are only written through apply_outcome();
    loads of one source must be serialized by the caller.
    """

    def __init__(
        self,
        url: str,
        ui_name: str | None = None,
        kind: SourceKind = SourceKind.REPOSITORY,
    ):
        url = url.strip()
        # A directory URL gets the default index filename so it is obvious
        # which resource is actually fetched
        if url.endswith("/"):
            url += kind.schema.default_xml_file

        self._url = url
        self._ui_name = ui_name
        self._kind = kind
        self._packages: tuple[Package, ...] | None = None
        self._fetch_error: str | None = None
        self._description = self.default_description()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SdkSource):
            return NotImplemented
        return self._url == other._url

    def __hash__(self) -> int:
        return hash(self._url)

    def __repr__(self) -> str:
        return f"SdkSource({self._url!r}, kind={self._kind.value})"

    @property
    def url(self) -> str:
        return self._url

    @property
    def ui_name(self) -> str | None:
        return self._ui_name

    @property
    def kind(self) -> SourceKind:
        return self._kind

    @property
    def is_addon_source(self) -> bool:
        return self._kind.is_addon

    @property
    def packages(self) -> tuple[Package, ...] | None:
        """Packages found by the last successful load, or None if never loaded."""
        return self._packages

    @property
    def description(self) -> str:
        return self._description

    @property
    def fetch_error(self) -> str | None:
        """Error of the last load, None if it succeeded cleanly."""
        return self._fetch_error

    def clear_packages(self) -> None:
        """Forget loaded packages so the next caller knows to reload."""
        self._packages = None

    def short_description(self) -> str:
        if self._ui_name:
            return self._ui_name
        return self._url

    def default_description(self) -> str:
        if self.is_addon_source:
            desc = ""
            if self._ui_name:
                desc += f"Add-on Provider: {self._ui_name}\n"
            return desc + f"Add-on URL: {self._url}"
        return f"SDK Source: {self._url}"

    def apply_outcome(self, outcome: LoadOutcome) -> None:
        """Store the result of a load on this source.

        The package list is only replaced by a successful outcome.
        """
        self._url = outcome.url
        self._description = outcome.description
        self._fetch_error = outcome.error
        if outcome.packages is not None:
            self._packages = outcome.packages

    def load(
        self,
        monitor: TaskMonitor | None = None,
        force_http: bool | None = None,
        loader: "SourceLoader | None" = None,
        upgrade_hint: UpgradeHint = UpgradeHint.TOOLS,
    ) -> LoadOutcome:
        """Fetch, validate and parse this source, then apply the outcome."""
        loader = loader or SourceLoader()
        outcome = loader.load(self, monitor, force_http=force_http, upgrade_hint=upgrade_hint)
        self.apply_outcome(outcome)
        return outcome

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "url": self._url,
            "name": self._ui_name,
            "kind": self._kind.value,
            "loaded": self._packages is not None,
            "package_count": len(self._packages) if self._packages is not None else 0,
            "description": self._description,
            "fetch_error": self._fetch_error,
        }


@dataclass
class _LoadRun:
    """Working state of one SourceLoader.load call."""

    source: SdkSource
    monitor: TaskMonitor
    upgrade_hint: UpgradeHint
    url: str = ""
    data: bytes | None = None
    version: int = 0
    iteration: int = 0
    document: ET.Element | None = None
    schema_uri: str | None = None
    using_alternate_url: bool = False
    using_alternate_xml: bool = False
    fetch_exception: FetchError | None = None
    validation_error: str | None = None
    error: str | None = None
    error_kind: LoadErrorKind | None = None
    packages: tuple[Package, ...] | None = None
    description: str = ""

    @property
    def default_xml_file(self) -> str:
        return self.source.kind.schema.default_xml_file

    def soft_fail(self, kind: LoadErrorKind, message: str) -> None:
        """Record an error unless an earlier one already explains the failure."""
        if self.error is None:
            self.error = message
            self.error_kind = kind


def render_fetch_error(exc: FetchError) -> tuple[str, LoadErrorKind, str]:
    """Return (error message, error kind, reason for the monitor)."""
    if isinstance(exc, FetchNotFoundError):
        return (
            "Failed to fetch URL: File not found",
            LoadErrorKind.FETCH_NOT_FOUND,
            "File not found",
        )
    if isinstance(exc, FetchSSLError):
        return (
            "Failed to fetch URL: HTTPS SSL error",
            LoadErrorKind.FETCH_SSL,
            "HTTPS SSL error. You might want to force download through HTTP in the settings.",
        )
    return f"Failed to fetch URL: {exc.reason}", LoadErrorKind.FETCH_IO, exc.reason


class SourceLoader:
    """Resolves sources into LoadOutcomes.

    A loader holds no per-load state and can be shared between threads
    loading different sources.

    Usage:
        loader = SourceLoader(UrlFetcher(settings), SchemaValidator(), settings)
        outcome = loader.load(source, ConsoleMonitor())
        source.apply_outcome(outcome)
    """

    def __init__(
        self,
        fetcher: ContentFetcher | None = None,
        validator: SchemaValidator | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or Settings()
        self._fetcher = fetcher or UrlFetcher(self._settings)
        self._validator = validator or SchemaValidator()
        self._handlers = {
            LoadState.START: self._start,
            LoadState.FETCHING: self._fetching,
            LoadState.FETCH_FAILED: self._fetch_failed,
            LoadState.FETCHED: self._fetched,
            LoadState.DETECTING_VERSION: self._detecting_version,
            LoadState.NO_VERSION: self._no_version,
            LoadState.VERSION_SUPPORTED: self._version_supported,
            LoadState.VERSION_TOO_NEW: self._version_too_new,
            LoadState.VALIDATING: self._validating,
            LoadState.VALIDATION_FAILED: self._validation_failed,
            LoadState.VALIDATOR_MISSING: self._validator_missing,
            LoadState.VALIDATED: self._validated,
            LoadState.PROBING: self._probing,
            LoadState.PROBE_FAILED: self._probe_failed,
            LoadState.PROBED: self._probed,
            LoadState.PARSING: self._parsing,
        }

    def load(
        self,
        source: SdkSource,
        monitor: TaskMonitor | None = None,
        force_http: bool | None = None,
        upgrade_hint: UpgradeHint = UpgradeHint.TOOLS,
    ) -> LoadOutcome:
        """Resolve a source without modifying it.

        Args:
            source: Source to load
            monitor: Progress monitor (defaults to a NullMonitor)
            force_http: Rewrite https:// to http:// before fetching;
                        None uses Settings.force_http
            upgrade_hint: Wording of the upgrade message for newer schemas

        Returns:
            LoadOutcome describing packages or the failure
        """
        monitor = monitor or NullMonitor()
        if force_http is None:
            force_http = self._settings.force_http

        run = _LoadRun(source=source, monitor=monitor, upgrade_hint=upgrade_hint)
        run.description = source.default_description()
        run.url = source.url
        if force_http:
            run.url = run.url.replace("https://", "http://")

        monitor.set_progress_max(PROGRESS_STEPS)

        state = LoadState.START
        for _ in range(MAX_TRANSITIONS):
            if state in TERMINAL_STATES:
                break
            next_state = self._handlers[state](run)
            logger.debug(f"{source.url}: {state.name} -> {next_state.name}")
            state = next_state

        if state not in TERMINAL_STATES:
            logger.error(f"Load of {source.url} stopped in state {state.name}")
            run.soft_fail(LoadErrorKind.PARSE_FAILED, f"Loading {source.url} did not complete")
            state = LoadState.FAILED

        return self._finish(run, state)

    # -- state handlers ---------------------------------------------------

    def _start(self, run: _LoadRun) -> LoadState:
        run.monitor.set_description(f"Fetching {run.url}")
        run.monitor.inc_progress(1)
        return LoadState.FETCHING

    def _fetching(self, run: _LoadRun) -> LoadState:
        try:
            run.data = self._fetcher.fetch(run.url)
        except Exception as e:
            run.fetch_exception = classify_fetch_exception(run.url, e)
            if not run.using_alternate_url and not run.url.endswith(run.default_xml_file):
                # Try again with the default index filename appended
                run.url = alternate_url(run.url, run.default_xml_file)
                run.using_alternate_url = True
                return LoadState.FETCHING
            return LoadState.FETCH_FAILED

        # The alternate URL answered, the first failure no longer matters
        run.fetch_exception = None
        return LoadState.FETCHED

    def _fetch_failed(self, run: _LoadRun) -> LoadState:
        return LoadState.FAILED

    def _fetched(self, run: _LoadRun) -> LoadState:
        if run.iteration == 0:
            run.monitor.set_description("Validate XML")
        return LoadState.DETECTING_VERSION

    def _detecting_version(self, run: _LoadRun) -> LoadState:
        schema = run.source.kind.schema
        run.version = detect_version(run.data, run.source.kind)
        logger.debug(f"{run.url} declares schema version {run.version}")
        if schema.supports(run.version):
            return LoadState.VERSION_SUPPORTED
        if run.version > schema.latest_version:
            return LoadState.VERSION_TOO_NEW
        return LoadState.NO_VERSION

    def _version_supported(self, run: _LoadRun) -> LoadState:
        return LoadState.VALIDATING

    def _validating(self, run: _LoadRun) -> LoadState:
        result = self._validator.validate(run.data, run.source.kind, run.version, run.url)
        if result.ok:
            run.schema_uri = result.schema_uri
            run.validation_error = None
            return LoadState.VALIDATED
        run.validation_error = result.error
        if result.validator_missing:
            return LoadState.VALIDATOR_MISSING
        return LoadState.VALIDATION_FAILED

    def _validation_failed(self, run: _LoadRun) -> LoadState:
        # Validation errors are more precise than anything recorded earlier
        run.error = run.validation_error
        run.error_kind = LoadErrorKind.DOCUMENT_INVALID
        if self._can_retry(run) and self._refetch_alternate(run):
            return LoadState.FETCHED
        return LoadState.FAILED

    def _validator_missing(self, run: _LoadRun) -> LoadState:
        run.error = run.validation_error
        run.error_kind = LoadErrorKind.VALIDATOR_MISSING
        return LoadState.FAILED

    def _validated(self, run: _LoadRun) -> LoadState:
        try:
            run.document = read_document(run.data)
        except ET.ParseError as e:
            logger.warning(f"Validated document from {run.url} could not be parsed: {e}")
            run.monitor.set_result("Failed to parse XML document")
            run.soft_fail(LoadErrorKind.PARSE_FAILED, "Failed to parse XML document")
            return LoadState.FAILED
        # Errors from a first iteration are resolved by the alternate document
        run.error = None
        run.error_kind = None
        self._report_alternate(run)
        return LoadState.PARSING

    def _no_version(self, run: _LoadRun) -> LoadState:
        run.soft_fail(
            LoadErrorKind.UNRECOGNIZED_DOCUMENT,
            f"Failed to validate the XML for the repository at URL '{run.url}'",
        )
        if self._can_retry(run) and self._refetch_alternate(run):
            return LoadState.FETCHED
        return LoadState.FAILED

    def _version_too_new(self, run: _LoadRun) -> LoadState:
        return LoadState.PROBING

    def _probing(self, run: _LoadRun) -> LoadState:
        document = find_alternate_tools_xml(run.data, run.source.kind)
        if document is None:
            return LoadState.PROBE_FAILED
        run.document = document
        run.schema_uri = run.source.kind.schema.ns_uri
        run.using_alternate_xml = True
        run.validation_error = None
        # A usable subset supersedes errors from an earlier iteration
        run.error = None
        run.error_kind = None
        return LoadState.PROBED

    def _probe_failed(self, run: _LoadRun) -> LoadState:
        run.error = (
            f"The repository at URL '{run.url}' uses schema version {run.version}, "
            f"which is newer than this version supports. {run.upgrade_hint.info}"
        )
        run.error_kind = LoadErrorKind.UNSUPPORTED_SCHEMA
        return LoadState.FAILED

    def _probed(self, run: _LoadRun) -> LoadState:
        self._report_alternate(run)
        return LoadState.PARSING

    def _parsing(self, run: _LoadRun) -> LoadState:
        # Validation step done
        run.monitor.inc_progress(1)

        run.monitor.set_description("Parse XML")
        run.monitor.inc_progress(1)
        packages = parse_packages(
            run.document,
            run.schema_uri,
            run.source.kind,
            source_url=run.url,
            monitor=run.monitor,
        )
        if packages is None:
            run.monitor.set_result("Failed to parse XML document")
            run.soft_fail(LoadErrorKind.PARSE_FAILED, "Failed to parse XML document")
            return LoadState.FAILED

        if run.using_alternate_xml:
            # Only the tools can be installed until the engine is updated
            info = run.upgrade_hint.info
            run.description = run.upgrade_hint.description
            run.error = info if run.error is None else f"{run.error}. {info}"
            run.error_kind = LoadErrorKind.UNSUPPORTED_SCHEMA

        run.packages = packages
        run.description += "\n" + package_count_summary(len(packages))

        # Done
        run.monitor.inc_progress(1)
        return LoadState.PARSED

    # -- helpers ----------------------------------------------------------

    def _can_retry(self, run: _LoadRun) -> bool:
        return (
            run.iteration == 0
            and not run.using_alternate_url
            and not run.url.endswith(run.default_xml_file)
        )

    def _refetch_alternate(self, run: _LoadRun) -> bool:
        """Fetch the alternate URL for another detect/validate iteration.

        Failures here are not recorded so they cannot hide the error that
        caused the retry.
        """
        url = alternate_url(run.url, run.default_xml_file)
        try:
            data = self._fetcher.fetch(url)
        except Exception as e:
            logger.debug(f"Alternate URL {url} failed: {e}")
            return False
        run.url = url
        run.data = data
        run.using_alternate_url = True
        run.iteration += 1
        return True

    def _report_alternate(self, run: _LoadRun) -> None:
        if run.using_alternate_url:
            run.monitor.set_result(f"Repository found at {run.url}")

    def _finish(self, run: _LoadRun, state: LoadState) -> LoadOutcome:
        monitor = run.monitor
        error = run.error
        error_kind = run.error_kind

        if run.fetch_exception is not None:
            message, error_kind, reason = render_fetch_error(run.fetch_exception)
            monitor.set_result(f"Failed to fetch URL {run.url}, reason: {reason}")
            error = message
            if run.validation_error:
                error += "\n" + run.validation_error

        if run.validation_error:
            monitor.set_result(run.validation_error)

        success = state is LoadState.PARSED
        url = run.source.url
        if success and run.using_alternate_url:
            # Remember the working form, keeping the configured scheme
            url = alternate_url(run.source.url, run.default_xml_file)

        if success:
            logger.info(f"Loaded {url}: {package_count_summary(len(run.packages))}")
        else:
            logger.info(f"Failed to load {run.source.url}: {error}")

        return LoadOutcome(
            url=url,
            state=state,
            description=run.description,
            packages=run.packages if success else None,
            error=error,
            error_kind=error_kind,
            validation_error=run.validation_error,
            schema_version=run.version,
            schema_uri=run.schema_uri if success else None,
            used_alternate_url=run.using_alternate_url,
            upgrade_required=run.using_alternate_xml,
        )
