"""Catalog of repository sources.

The catalog holds the built-in SDK repository plus the add-on sites a
user has registered. User sources persist in a YAML file:

    - url: https://example.com/addons/addon.xml
      name: Example Add-ons
      kind: addon

kind is optional and defaults to "addon"; name is optional. Sources are
unique by URL.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import yaml

from sdkrepo.config import Settings
from sdkrepo.sources.constants import SourceKind
from sdkrepo.sources.errors import CatalogError
from sdkrepo.sources.monitor import LoggingMonitor, TaskMonitor
from sdkrepo.sources.source import LoadOutcome, SdkSource, SourceLoader

logger = logging.getLogger(__name__)

DEFAULT_REPOSITORY_URL = "https://dl-ssl.google.com/android/repository/repository.xml"


def _source_from_dict(index: int, data: object) -> SdkSource:
    """Create an SdkSource from one sources-file entry."""
    if not isinstance(data, dict):
        raise CatalogError("Entry must be a mapping", index)

    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise CatalogError("Missing required field: url", index)

    name = data.get("name")
    if name is not None and not isinstance(name, str):
        raise CatalogError("Field 'name' must be a string", index)

    kind_str = data.get("kind", SourceKind.ADDON.value)
    try:
        kind = SourceKind(kind_str)
    except ValueError:
        valid_kinds = [k.value for k in SourceKind]
        raise CatalogError(f"Invalid kind '{kind_str}'. Must be one of: {valid_kinds}", index)

    return SdkSource(url, ui_name=name or None, kind=kind)


def _logging_monitor(source: SdkSource) -> TaskMonitor:
    return LoggingMonitor(source.short_description())


class SourceCatalog:
    """Built-in and user sources, keyed by URL.

    Usage:
        catalog = SourceCatalog.load(settings.sources_path)
        outcomes = catalog.load_all(settings=settings)
    """

    def __init__(
        self,
        user_sources: list[SdkSource] | None = None,
        path: Path | None = None,
        include_builtin: bool = True,
    ):
        self.path = path
        self._builtin: list[SdkSource] = []
        if include_builtin:
            self._builtin.append(
                SdkSource(DEFAULT_REPOSITORY_URL, "Android Repository", SourceKind.REPOSITORY)
            )
        self._user: list[SdkSource] = []
        for source in user_sources or []:
            self.add(source)

    @property
    def sources(self) -> list[SdkSource]:
        """All sources, built-in first."""
        return self._builtin + self._user

    @property
    def user_sources(self) -> list[SdkSource]:
        return list(self._user)

    def __len__(self) -> int:
        return len(self._builtin) + len(self._user)

    def __contains__(self, source: object) -> bool:
        return source in self._builtin or source in self._user

    def get(self, url: str) -> SdkSource | None:
        """Get a source by URL (directory URLs match their default file)."""
        for source in self.sources:
            if source.url == url or source == SdkSource(url, kind=source.kind):
                return source
        return None

    def add(self, source: SdkSource) -> bool:
        """Add a user source; returns False if one with that URL exists."""
        if source in self:
            logger.debug(f"Source already registered: {source.url}")
            return False
        self._user.append(source)
        return True

    def remove(self, url: str) -> bool:
        """Remove a user source by URL; built-in sources cannot be removed."""
        source = self.get(url)
        if source is None or source not in self._user:
            return False
        self._user.remove(source)
        return True

    def load_all(
        self,
        monitor_factory: Callable[[SdkSource], TaskMonitor] | None = None,
        force_http: bool | None = None,
        settings: Settings | None = None,
        loader: SourceLoader | None = None,
    ) -> list[tuple[SdkSource, LoadOutcome]]:
        """Load every source concurrently and apply each outcome.

        Each source is loaded by exactly one worker, so no source is
        mutated from two threads. A load can rewrite a directory URL to
        its default index file; a user source that ends up with the URL
        of an earlier source is dropped from the catalog afterwards.

        Args:
            monitor_factory: Builds a monitor per source (defaults to
                             a LoggingMonitor named after the source)
            force_http: Passed to every load
            settings: Supplies max_workers and the default loader's settings
            loader: Shared loader (defaults to one built from settings)

        Returns:
            List of (source, outcome) pairs, one per source loaded, in
            catalog order
        """
        settings = settings or Settings()
        loader = loader or SourceLoader(settings=settings)
        if monitor_factory is None:
            monitor_factory = _logging_monitor

        sources = self.sources
        if not sources:
            return []

        def _load(source: SdkSource) -> LoadOutcome:
            return source.load(monitor_factory(source), force_http=force_http, loader=loader)

        workers = max(1, min(settings.max_workers, len(sources)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(_load, sources))

        failed = sum(1 for outcome in outcomes if not outcome.success)
        logger.info(f"Loaded {len(sources)} source(s), {failed} failed")
        self._drop_duplicate_urls()
        return list(zip(sources, outcomes))

    def _drop_duplicate_urls(self) -> None:
        seen = {source.url for source in self._builtin}
        kept: list[SdkSource] = []
        for source in self._user:
            if source.url in seen:
                logger.warning(f"Dropping duplicate source {source.url}")
                continue
            seen.add(source.url)
            kept.append(source)
        self._user = kept

    def to_list(self) -> list[dict]:
        """Serialize user sources in the sources-file format."""
        entries = []
        for source in self._user:
            entry = {"url": source.url, "kind": source.kind.value}
            if source.ui_name:
                entry["name"] = source.ui_name
            entries.append(entry)
        return entries

    def save(self, path: Path | str | None = None) -> Path:
        """Write user sources to YAML."""
        path = Path(path) if path is not None else self.path
        if path is None:
            raise CatalogError("No sources file path configured")

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_list(), f, sort_keys=False)
        self.path = path
        return path

    @classmethod
    def load(cls, path: Path | str | None = None, include_builtin: bool = True) -> "SourceCatalog":
        """Load user sources from a YAML file.

        A missing or empty file yields a catalog with only built-in sources.

        Raises:
            CatalogError: If the file is not a list or an entry is invalid
        """
        if path is None:
            path = Settings.from_env().sources_path
        path = Path(path)

        if not path.exists():
            return cls(path=path, include_builtin=include_builtin)

        with open(path, "r", encoding="utf-8") as f:
            try:
                raw_data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise CatalogError(f"Invalid YAML in {path}: {e}")

        if raw_data is None:
            raw_data = []
        if not isinstance(raw_data, list):
            raise CatalogError("Sources file must be a YAML list")

        sources = [_source_from_dict(i, entry) for i, entry in enumerate(raw_data)]
        return cls(sources, path=path, include_builtin=include_builtin)
