"""Configuration settings for sdkrepo."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from sdkrepo import __version__

# Environment overrides
ENV_FETCH_TIMEOUT = "SDKREPO_FETCH_TIMEOUT"
ENV_USER_AGENT = "SDKREPO_USER_AGENT"
ENV_FORCE_HTTP = "SDKREPO_FORCE_HTTP"
ENV_MAX_WORKERS = "SDKREPO_MAX_WORKERS"
ENV_SOURCES_PATH = "SDKREPO_SOURCES_PATH"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Application settings."""

    # Network
    fetch_timeout: float = 30.0
    user_agent: str = f"sdkrepo/{__version__}"
    force_http: bool = False

    # CLI
    verbose: bool = False

    # Concurrent source loading (one worker per source, capped)
    max_workers: int = 4

    # User add-on sources
    sources_path: Path = field(
        default_factory=lambda: Path.home() / ".sdkrepo" / "sources.yaml"
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings, applying SDKREPO_* environment overrides.

        Unparsable numeric values raise ValueError naming the variable.
        """
        settings = cls()

        timeout = os.environ.get(ENV_FETCH_TIMEOUT, "").strip()
        if timeout:
            try:
                settings.fetch_timeout = float(timeout)
            except ValueError:
                raise ValueError(f"{ENV_FETCH_TIMEOUT} must be a number, got {timeout!r}")

        user_agent = os.environ.get(ENV_USER_AGENT, "").strip()
        if user_agent:
            settings.user_agent = user_agent

        force_http = os.environ.get(ENV_FORCE_HTTP, "").strip().lower()
        if force_http:
            settings.force_http = force_http in _TRUTHY

        workers = os.environ.get(ENV_MAX_WORKERS, "").strip()
        if workers:
            try:
                settings.max_workers = max(1, int(workers))
            except ValueError:
                raise ValueError(f"{ENV_MAX_WORKERS} must be an integer, got {workers!r}")

        sources_path = os.environ.get(ENV_SOURCES_PATH, "").strip()
        if sources_path:
            settings.sources_path = Path(sources_path).expanduser()

        return settings
