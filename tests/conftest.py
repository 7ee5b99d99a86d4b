"""Shared fixtures and XML document builders for sdkrepo tests."""

from __future__ import annotations

import pytest

from sdkrepo.config import Settings
from sdkrepo.sources.fetcher import FetchNotFoundError

REPO_NS = "http://schemas.android.com/sdk/android/repository/{version}"
ADDON_NS = "http://schemas.android.com/sdk/android/addon/{version}"

CHECKSUM = "2f3ed4a1b9c8d7e6f5a4b3c2d1e0f9a8b7c6d5e4"


def archive_xml(url: str = "tools_r1-linux.zip", os: str = "any", size: int = 1024) -> str:
    return (
        f'<sdk:archive os="{os}">'
        f"<sdk:size>{size}</sdk:size>"
        f'<sdk:checksum type="sha1">{CHECKSUM}</sdk:checksum>'
        f"<sdk:url>{url}</sdk:url>"
        "</sdk:archive>"
    )


def _archives(archives: str | None) -> str:
    return f"<sdk:archives>{archives or archive_xml()}</sdk:archives>"


def _uses_license(ref: str | None) -> str:
    return f'<sdk:uses-license ref="{ref}"/>' if ref else ""


def license_xml(license_id: str, text: str = "License text.") -> str:
    return f'<sdk:license id="{license_id}" type="text">{text}</sdk:license>'


def tool_xml(
    revision: int = 1,
    license_ref: str | None = None,
    archives: str | None = None,
    extra: str = "",
) -> str:
    return (
        "<sdk:tool>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_uses_license(license_ref)}{extra}{_archives(archives)}"
        "</sdk:tool>"
    )


def platform_tool_xml(revision: int = 1, license_ref: str | None = None) -> str:
    return (
        "<sdk:platform-tool>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_uses_license(license_ref)}{_archives(None)}"
        "</sdk:platform-tool>"
    )


def platform_xml(
    version: str = "2.2",
    api_level: int = 8,
    revision: int = 1,
    license_ref: str | None = None,
    codename: str | None = None,
) -> str:
    codename_xml = f"<sdk:codename>{codename}</sdk:codename>" if codename else ""
    return (
        "<sdk:platform>"
        f"<sdk:version>{version}</sdk:version>"
        f"<sdk:api-level>{api_level}</sdk:api-level>"
        f"{codename_xml}"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_uses_license(license_ref)}{_archives(None)}"
        "</sdk:platform>"
    )


def doc_xml(api_level: int = 8, revision: int = 1) -> str:
    return (
        "<sdk:doc>"
        f"<sdk:api-level>{api_level}</sdk:api-level>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_archives(None)}"
        "</sdk:doc>"
    )


def sample_xml(api_level: int = 8, revision: int = 1) -> str:
    return (
        "<sdk:sample>"
        f"<sdk:api-level>{api_level}</sdk:api-level>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_archives(None)}"
        "</sdk:sample>"
    )


def addon_xml(
    name: str = "Google APIs",
    vendor: str = "Google Inc.",
    api_level: int = 8,
    revision: int = 1,
    libs: str = "",
) -> str:
    libs_xml = f"<sdk:libs>{libs}</sdk:libs>" if libs else ""
    return (
        "<sdk:add-on>"
        f"<sdk:name>{name}</sdk:name>"
        f"<sdk:vendor>{vendor}</sdk:vendor>"
        f"<sdk:api-level>{api_level}</sdk:api-level>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{libs_xml}{_archives(None)}"
        "</sdk:add-on>"
    )


def extra_xml(path: str = "usb_driver", vendor: str | None = "google", revision: int = 1) -> str:
    vendor_xml = f"<sdk:vendor>{vendor}</sdk:vendor>" if vendor else ""
    return (
        "<sdk:extra>"
        f"{vendor_xml}"
        f"<sdk:path>{path}</sdk:path>"
        f"<sdk:revision>{revision}</sdk:revision>"
        f"{_archives(None)}"
        "</sdk:extra>"
    )


def repository_doc(*elements: str, version: int = 3) -> bytes:
    """A <sdk:sdk-repository> document declaring the given schema version."""
    ns = REPO_NS.format(version=version)
    body = "".join(elements)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<sdk:sdk-repository xmlns:sdk="{ns}">{body}</sdk:sdk-repository>'
    ).encode("utf-8")


def addon_doc(*elements: str, version: int = 2) -> bytes:
    """A <sdk:sdk-addon> document declaring the given schema version."""
    ns = ADDON_NS.format(version=version)
    body = "".join(elements)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<sdk:sdk-addon xmlns:sdk="{ns}">{body}</sdk:sdk-addon>'
    ).encode("utf-8")


class FakeFetcher:
    """ContentFetcher serving canned responses.

    Values are bytes or an exception instance to raise. Unknown URLs raise
    FetchNotFoundError. Every requested URL is recorded in calls.
    """

    def __init__(self, responses: dict[str, bytes | BaseException] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[str] = []

    def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise FetchNotFoundError(url)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's home directory."""
    return Settings(sources_path=tmp_path / "sources.yaml", fetch_timeout=5.0)


@pytest.fixture(autouse=True)
def clear_sdkrepo_env(monkeypatch):
    """Keep SDKREPO_* variables from the host environment out of tests."""
    for name in (
        "SDKREPO_FETCH_TIMEOUT",
        "SDKREPO_USER_AGENT",
        "SDKREPO_FORCE_HTTP",
        "SDKREPO_MAX_WORKERS",
        "SDKREPO_SOURCES_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
