"""Tests for SdkSource and the SourceLoader state machine.

All tests use FakeFetcher; nothing touches the network.
"""

import json
import xml.etree.ElementTree as ET

import pytest

from sdkrepo.sources import source as source_module
from sdkrepo.sources.constants import SourceKind
from sdkrepo.sources.fetcher import FetchIOError, FetchNotFoundError, FetchSSLError
from sdkrepo.sources.monitor import RecordingMonitor
from sdkrepo.sources.packages import ExtraPackage, PlatformToolPackage, ToolPackage
from sdkrepo.sources.schema import ValidationResult
from sdkrepo.sources.source import (
    LoadErrorKind,
    LoadState,
    SdkSource,
    SourceLoader,
    UpgradeHint,
    alternate_url,
    package_count_summary,
)

from conftest import (
    FakeFetcher,
    addon_doc,
    addon_xml,
    doc_xml,
    extra_xml,
    license_xml,
    platform_tool_xml,
    platform_xml,
    repository_doc,
    tool_xml,
)

REPO_URL = "https://example.com/android/repository.xml"
DIR_URL = "https://example.com/android"
DIR_ALT_URL = "https://example.com/android/repository.xml"


class StubValidator:
    """Validator returning a fixed result."""

    def __init__(self, result: ValidationResult):
        self.result = result
        self.calls = 0

    def validate(self, data, kind, version, url=""):
        self.calls += 1
        return self.result


def load(source, responses, validator=None, **kwargs):
    fetcher = FakeFetcher(responses)
    monitor = RecordingMonitor()
    loader = SourceLoader(fetcher, validator)
    outcome = loader.load(source, monitor, **kwargs)
    return outcome, fetcher, monitor


class TestSdkSource:
    """Test source identity and descriptions."""

    def test_equality_by_url(self):
        assert SdkSource(REPO_URL, "A") == SdkSource(REPO_URL, "B")
        assert SdkSource(REPO_URL) != SdkSource(REPO_URL + "2")
        assert len({SdkSource(REPO_URL), SdkSource(REPO_URL)}) == 1

    def test_trailing_slash_gets_default_file(self):
        assert SdkSource("https://example.com/repo/").url == "https://example.com/repo/repository.xml"
        addon = SdkSource("https://example.com/addons/", kind=SourceKind.ADDON)
        assert addon.url == "https://example.com/addons/addon.xml"

    def test_short_description(self):
        assert SdkSource(REPO_URL, "Official").short_description() == "Official"
        assert SdkSource(REPO_URL).short_description() == REPO_URL

    def test_default_descriptions(self):
        assert SdkSource(REPO_URL).description == f"SDK Source: {REPO_URL}"
        addon = SdkSource(REPO_URL, "Vendor", SourceKind.ADDON)
        assert addon.description == f"Add-on Provider: Vendor\nAdd-on URL: {REPO_URL}"

    def test_not_loaded(self):
        source = SdkSource(REPO_URL)
        assert source.packages is None
        assert source.fetch_error is None

    def test_clear_packages(self):
        source = SdkSource(REPO_URL)
        source.load(loader=SourceLoader(FakeFetcher({REPO_URL: repository_doc(tool_xml())})))
        assert source.packages
        source.clear_packages()
        assert source.packages is None


class TestHelpers:
    def test_alternate_url(self):
        assert alternate_url("http://a/b", "repository.xml") == "http://a/b/repository.xml"
        assert alternate_url("http://a/b/", "repository.xml") == "http://a/b/repository.xml"
        assert alternate_url("http://a/repository.xml", "repository.xml") == "http://a/repository.xml"

    def test_package_count_summary(self):
        assert package_count_summary(0) == "No packages found."
        assert package_count_summary(1) == "One package found."
        assert package_count_summary(5) == "5 packages found."


class TestSuccessfulLoad:
    """Test loads that reach PARSED."""

    def test_direct_hit(self):
        source = SdkSource(REPO_URL)
        data = repository_doc(tool_xml(), platform_xml())
        outcome, fetcher, monitor = load(source, {REPO_URL: data})

        assert outcome.success
        assert outcome.state is LoadState.PARSED
        assert outcome.error is None
        assert outcome.error_kind is None
        assert outcome.schema_version == 3
        assert outcome.schema_uri == "http://schemas.android.com/sdk/android/repository/3"
        assert not outcome.used_alternate_url
        assert len(outcome.packages) == 2
        assert outcome.description == f"SDK Source: {REPO_URL}\n2 packages found."
        assert fetcher.calls == [REPO_URL]

    def test_progress_reporting(self):
        source = SdkSource(REPO_URL)
        _, _, monitor = load(source, {REPO_URL: repository_doc(tool_xml())})
        assert monitor.progress_max == 4
        assert monitor.progress == 4
        assert monitor.descriptions == [
            f"Fetching {REPO_URL}",
            "Validate XML",
            "Parse XML",
            "Found Android SDK Tools, revision 1",
        ]

    def test_loader_does_not_mutate_source(self):
        source = SdkSource(REPO_URL)
        load(source, {REPO_URL: repository_doc(tool_xml())})
        assert source.packages is None

    def test_apply_outcome(self):
        source = SdkSource(REPO_URL)
        outcome = source.load(
            loader=SourceLoader(FakeFetcher({REPO_URL: repository_doc(tool_xml())}))
        )
        assert source.packages == outcome.packages
        assert source.description.endswith("One package found.")
        assert source.fetch_error is None

    def test_empty_repository(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: repository_doc()})
        assert outcome.success
        assert outcome.packages == ()
        assert outcome.description.endswith("No packages found.")

    @pytest.mark.parametrize("version", [1, 2])
    def test_older_schema_versions(self, version):
        data = repository_doc(tool_xml(), version=version)
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: data})
        assert outcome.success
        assert outcome.schema_version == version
        assert outcome.schema_uri.endswith(f"/repository/{version}")

    def test_license_text_attached(self):
        data = repository_doc(
            license_xml("L1", "Tools terms"),
            license_xml("L2", "Platform terms"),
            tool_xml(license_ref="L1"),
            platform_xml(license_ref="L2"),
        )
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: data})
        licenses = {p.kind.value: p.license for p in outcome.packages}
        assert licenses == {"tool": "Tools terms", "platform": "Platform terms"}

    def test_version_2_licenses_by_reference(self):
        """Three packages, one referencing L1, in a version 2 document."""
        l1_body = "  L1 body\n  line2  "
        data = repository_doc(
            license_xml("L1", l1_body),
            license_xml("L2", "Platform terms"),
            tool_xml(license_ref="L1"),
            platform_xml(),
            doc_xml(),
            version=2,
        )
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: data})

        assert outcome.success
        assert outcome.schema_version == 2
        assert len(outcome.packages) == 3
        licenses = {p.kind.value: p.license for p in outcome.packages}
        assert licenses == {"tool": l1_body, "platform": None, "doc": None}

    def test_addon_source(self):
        url = "https://vendor.example.com/addons/addon.xml"
        source = SdkSource(url, "Vendor", SourceKind.ADDON)
        outcome, _, _ = load(source, {url: addon_doc(addon_xml(), extra_xml())})
        assert outcome.success
        assert len(outcome.packages) == 2
        assert outcome.description == (
            f"Add-on Provider: Vendor\nAdd-on URL: {url}\n2 packages found."
        )

    def test_force_http(self):
        http_url = REPO_URL.replace("https://", "http://")
        source = SdkSource(REPO_URL)
        outcome, fetcher, _ = load(
            source, {http_url: repository_doc(tool_xml())}, force_http=True
        )
        assert outcome.success
        assert fetcher.calls == [http_url]
        assert outcome.url == REPO_URL


class TestAlternateUrl:
    """Test the single retry at url/<default file>."""

    def test_fetch_failure_retries_with_default_file(self):
        source = SdkSource(DIR_URL)
        outcome, fetcher, monitor = load(source, {DIR_ALT_URL: repository_doc(tool_xml())})

        assert outcome.success
        assert fetcher.calls == [DIR_URL, DIR_ALT_URL]
        assert outcome.used_alternate_url
        assert outcome.url == DIR_ALT_URL
        assert outcome.error is None
        assert f"Repository found at {DIR_ALT_URL}" in monitor.results

    def test_source_url_rewritten_after_alternate(self):
        source = SdkSource(DIR_URL)
        source.load(loader=SourceLoader(FakeFetcher({DIR_ALT_URL: repository_doc(tool_xml())})))
        assert source.url == DIR_ALT_URL

    def test_no_retry_when_url_has_default_file(self):
        outcome, fetcher, _ = load(SdkSource(REPO_URL), {})
        assert fetcher.calls == [REPO_URL]
        assert outcome.error_kind is LoadErrorKind.FETCH_NOT_FOUND

    def test_unrecognized_document_retries(self):
        source = SdkSource(DIR_URL)
        responses = {
            DIR_URL: b"<html><body>Index of /android</body></html>",
            DIR_ALT_URL: repository_doc(tool_xml()),
        }
        outcome, fetcher, monitor = load(source, responses)
        assert outcome.success
        assert fetcher.calls == [DIR_URL, DIR_ALT_URL]
        assert outcome.error is None
        assert f"Repository found at {DIR_ALT_URL}" in monitor.results

    def test_unrecognized_document_without_alternate(self):
        source = SdkSource(DIR_URL)
        outcome, fetcher, _ = load(source, {DIR_URL: b"<html></html>"})
        assert not outcome.success
        assert outcome.error_kind is LoadErrorKind.UNRECOGNIZED_DOCUMENT
        assert outcome.error == (
            f"Failed to validate the XML for the repository at URL '{DIR_URL}'"
        )
        assert fetcher.calls == [DIR_URL, DIR_ALT_URL]

    def test_invalid_document_retries(self):
        invalid = repository_doc("<sdk:tool><sdk:revision>1</sdk:revision></sdk:tool>")
        responses = {DIR_URL: invalid, DIR_ALT_URL: repository_doc(tool_xml())}
        outcome, fetcher, _ = load(SdkSource(DIR_URL), responses)
        assert outcome.success
        assert outcome.validation_error is None
        assert fetcher.calls == [DIR_URL, DIR_ALT_URL]

    def test_at_most_two_fetches(self):
        invalid = repository_doc("<sdk:tool><sdk:revision>1</sdk:revision></sdk:tool>")
        outcome, fetcher, _ = load(SdkSource(DIR_URL), {DIR_URL: invalid, DIR_ALT_URL: invalid})
        assert not outcome.success
        assert outcome.error_kind is LoadErrorKind.DOCUMENT_INVALID
        assert len(fetcher.calls) == 2


class TestFetchFailures:
    """Test classification of fetch failures."""

    def test_unreachable_host(self):
        """Both attempts fail and are reported once."""
        responses = {
            DIR_URL: FetchIOError(DIR_URL, "Name or service not known"),
            DIR_ALT_URL: FetchIOError(DIR_ALT_URL, "Name or service not known"),
        }
        outcome, fetcher, monitor = load(SdkSource(DIR_URL), responses)

        assert outcome.state is LoadState.FAILED
        assert outcome.packages is None
        assert outcome.error_kind is LoadErrorKind.FETCH_IO
        assert outcome.error == "Failed to fetch URL: Name or service not known"
        assert fetcher.calls == [DIR_URL, DIR_ALT_URL]
        assert (
            f"Failed to fetch URL {DIR_ALT_URL}, reason: Name or service not known"
            in monitor.results
        )
        assert monitor.progress == 1

    def test_failure_keeps_previous_packages(self):
        source = SdkSource(REPO_URL)
        source.load(loader=SourceLoader(FakeFetcher({REPO_URL: repository_doc(tool_xml())})))
        previous = source.packages
        assert previous

        outcome = source.load(
            loader=SourceLoader(FakeFetcher({REPO_URL: FetchIOError(REPO_URL, "timed out")}))
        )
        assert not outcome.success
        assert source.packages == previous
        assert source.fetch_error == "Failed to fetch URL: timed out"

    def test_failed_loads_are_idempotent(self):
        source = SdkSource(REPO_URL)
        fetcher = FakeFetcher({})
        loader = SourceLoader(fetcher)
        first = source.load(loader=loader)
        second = source.load(loader=loader)
        assert first == second
        assert source.packages is None

    def test_not_found(self):
        outcome, _, monitor = load(SdkSource(REPO_URL), {})
        assert outcome.error == "Failed to fetch URL: File not found"
        assert f"Failed to fetch URL {REPO_URL}, reason: File not found" in monitor.results

    def test_ssl(self):
        outcome, _, monitor = load(
            SdkSource(REPO_URL), {REPO_URL: FetchSSLError(REPO_URL, "certificate verify failed")}
        )
        assert outcome.error_kind is LoadErrorKind.FETCH_SSL
        assert outcome.error == "Failed to fetch URL: HTTPS SSL error"
        assert any("force download through HTTP" in r for r in monitor.results)

    def test_raw_exception_is_classified(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: ConnectionRefusedError()})
        assert outcome.error_kind is LoadErrorKind.FETCH_IO
        assert "ConnectionRefusedError" in outcome.error

    def test_alternate_success_clears_first_failure(self):
        responses = {
            DIR_URL: FetchNotFoundError(DIR_URL),
            DIR_ALT_URL: repository_doc(tool_xml()),
        }
        outcome, _, _ = load(SdkSource(DIR_URL), responses)
        assert outcome.success
        assert outcome.error is None


class TestValidationOutcomes:
    """Test validator-missing and invalid documents."""

    def test_validator_missing_is_distinct(self):
        validator = StubValidator(
            ValidationResult(ok=False, error="no validator", validator_missing=True)
        )
        outcome, fetcher, monitor = load(
            SdkSource(DIR_URL), {DIR_URL: repository_doc(tool_xml())}, validator
        )
        assert outcome.error_kind is LoadErrorKind.VALIDATOR_MISSING
        assert outcome.error == "no validator"
        assert fetcher.calls == [DIR_URL]
        assert "no validator" in monitor.results

    def test_invalid_document_reports_validator_text(self):
        invalid = repository_doc("<sdk:tool><sdk:revision>1</sdk:revision></sdk:tool>")
        outcome, _, monitor = load(SdkSource(REPO_URL), {REPO_URL: invalid})
        assert outcome.error_kind is LoadErrorKind.DOCUMENT_INVALID
        assert outcome.error.startswith(f"XML verification failed for {REPO_URL}.")
        assert outcome.validation_error == outcome.error
        assert outcome.error in monitor.results

    def test_unparsable_after_validation(self, monkeypatch):
        def broken(data):
            raise ET.ParseError("boom")

        monkeypatch.setattr(source_module, "read_document", broken)
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: repository_doc(tool_xml())})
        assert outcome.error_kind is LoadErrorKind.PARSE_FAILED
        assert outcome.packages is None


class TestNewerSchema:
    """Test the forward-compatibility path."""

    def newer_doc(self):
        return repository_doc(
            license_xml("t", "Tools terms"),
            platform_xml(),
            tool_xml(revision=30, license_ref="t"),
            platform_tool_xml(revision=20),
            extra_xml(),
            version=9,
        )

    def test_tools_extracted(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: self.newer_doc()})
        assert outcome.success
        assert outcome.upgrade_required
        assert outcome.schema_version == 9
        assert [type(p) for p in outcome.packages] == [ToolPackage, PlatformToolPackage]
        assert outcome.error == UpgradeHint.TOOLS.info
        assert outcome.error_kind is LoadErrorKind.UNSUPPORTED_SCHEMA
        assert outcome.description == UpgradeHint.TOOLS.description + "\n2 packages found."

    def test_ide_plugin_wording(self):
        outcome, _, _ = load(
            SdkSource(REPO_URL),
            {REPO_URL: self.newer_doc()},
            upgrade_hint=UpgradeHint.IDE_PLUGIN,
        )
        assert outcome.error == UpgradeHint.IDE_PLUGIN.info
        assert "plugin" in outcome.description

    def test_no_tools_in_newer_document(self):
        data = repository_doc(platform_xml(), extra_xml(), version=9)
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: data})
        assert not outcome.success
        assert outcome.error_kind is LoadErrorKind.UNSUPPORTED_SCHEMA
        assert "Please update" in outcome.error
        assert outcome.packages is None

    def test_newer_addon_document(self):
        url = "https://vendor.example.com/addon.xml"
        source = SdkSource(url, kind=SourceKind.ADDON)
        outcome, _, _ = load(source, {url: addon_doc(extra_xml(), version=5)})
        assert not outcome.success
        assert outcome.error_kind is LoadErrorKind.UNSUPPORTED_SCHEMA


class TestLoadOutcome:
    def test_to_dict_is_json_serializable(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: repository_doc(extra_xml())})
        data = json.loads(json.dumps(outcome.to_dict()))
        assert data["success"] is True
        assert data["state"] == "parsed"
        assert data["packages"][0]["kind"] == "extra"

    def test_failed_to_dict(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {})
        data = outcome.to_dict()
        assert data["packages"] is None
        assert data["error_kind"] == "fetch_not_found"

    def test_outcome_is_frozen(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {})
        with pytest.raises(AttributeError):
            outcome.error = None

    def test_extra_only_package(self):
        outcome, _, _ = load(SdkSource(REPO_URL), {REPO_URL: repository_doc(extra_xml())})
        assert isinstance(outcome.packages[0], ExtraPackage)
