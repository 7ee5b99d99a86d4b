"""Schema version detection and XSD validation for repository documents.

Version detection deliberately runs without namespace processing: a
document whose prefixes cannot be resolved is still scanned for its root
element, and any failure simply means "not one of ours" (version 0).

Validation uses lxml's XMLSchema against the XSD shipped for the detected
version. Three outcomes are kept apart:
- success, carrying the schema URI registered for that version
- validator missing (lxml or the XSD resource unavailable), an
  environment problem rather than a document problem
- document invalid, carrying line/column when the parser knows them
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from xml.parsers import expat

from sdkrepo.sources.constants import SourceKind, get_xsd_bytes

logger = logging.getLogger(__name__)

_missing_validator_reported = False
_missing_validator_lock = threading.Lock()


def _split_qname(name: str) -> tuple[str | None, str]:
    """Split "prefix:local" into (prefix, local); no prefix gives (None, name)."""
    pos = name.find(":")
    if 0 < pos < len(name) - 1:
        return name[:pos], name[pos + 1 :]
    return None, name


def detect_version(data: bytes | None, kind: SourceKind) -> int:
    """Extract the schema version declared by a document's root namespace.

    Looks for the root element of the expected family (sdk-repository or
    sdk-addon, with or without a prefix) and matches its xmlns or
    xmlns:<prefix> declaration against the family's namespace pattern.

    Args:
        data: Raw document bytes
        kind: Source kind selecting the document family

    Returns:
        The declared version (>= 1), or 0 if the document cannot be
        parsed, has no matching root, or declares a foreign namespace.
    """
    if not data:
        return 0

    schema = kind.schema
    roots: list[tuple[str, dict]] = []

    def start_element(name: str, attrs: dict) -> None:
        if not roots:
            roots.append((name, attrs))

    parser = expat.ParserCreate()
    parser.StartElementHandler = start_element
    try:
        parser.Parse(data, True)
    except (expat.ExpatError, ValueError) as e:
        logger.debug(f"Version detection could not parse document: {e}")
        return 0

    if not roots:
        return 0

    name, attrs = roots[0]
    prefix, local_name = _split_qname(name)
    if local_name != schema.root_element:
        return 0

    xmlns = f"xmlns:{prefix}" if prefix else "xmlns"
    uri = attrs.get(xmlns)
    if not uri:
        return 0

    match = schema.ns_pattern.fullmatch(uri)
    if not match:
        return 0
    try:
        return int(match.group(1))
    except ValueError:
        return 0


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one document against one schema version."""

    ok: bool
    schema_uri: str | None = None
    error: str | None = None
    validator_missing: bool = False
    line: int | None = None
    column: int | None = None


def _load_lxml():
    """Return lxml.etree, or None when lxml is not importable."""
    try:
        from lxml import etree
    except ImportError:
        return None
    return etree


def _report_missing_validator(reason: str) -> None:
    """Log the missing validator once per process."""
    global _missing_validator_reported
    with _missing_validator_lock:
        if _missing_validator_reported:
            return
        _missing_validator_reported = True
    logger.warning(f"No XML Schema validator available: {reason}")


def missing_validator_message(url: str) -> str:
    return (
        f"XML verification failed for {url}.\n"
        "No suitable XML Schema Validator could be found in your Python "
        "environment. Please make sure lxml is installed."
    )


class SchemaValidator:
    """Validates documents against the packaged XSD for a schema version.

    Usage:
        validator = SchemaValidator()
        result = validator.validate(data, SourceKind.REPOSITORY, 2, url)
        if result.ok:
            print(result.schema_uri)
    """

    def validate(
        self,
        data: bytes,
        kind: SourceKind,
        version: int,
        url: str = "",
    ) -> ValidationResult:
        """Validate data against the XSD of the given version.

        Every call builds its own parser over the immutable buffer, so the
        same bytes can be validated any number of times.
        """
        schema = kind.schema
        etree = _load_lxml()
        if etree is None:
            _report_missing_validator("lxml is not installed")
            return ValidationResult(
                ok=False, error=missing_validator_message(url), validator_missing=True
            )

        xsd_name = schema.xsd_name(version)
        xsd = get_xsd_bytes(xsd_name)
        if xsd is None:
            _report_missing_validator(f"schema resource {xsd_name} not found")
            return ValidationResult(
                ok=False, error=missing_validator_message(url), validator_missing=True
            )

        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            xml_schema = etree.XMLSchema(etree.fromstring(xsd, parser))
        except (etree.XMLSyntaxError, etree.XMLSchemaParseError) as e:
            # A broken packaged XSD is reported like any other validation error
            return ValidationResult(
                ok=False, error=f"XML verification failed for {url}.\nError: {e}"
            )

        try:
            document = etree.fromstring(data, parser)
            xml_schema.assertValid(document)
        except etree.XMLSyntaxError as e:
            line, column = e.position if e.position else (None, None)
            return self._invalid(url, getattr(e, "msg", None) or str(e), line, column)
        except etree.DocumentInvalid as e:
            errors = list(e.error_log)
            if errors:
                first = errors[0]
                return self._invalid(url, first.message, first.line, first.column)
            return self._invalid(url, str(e), None, None)

        logger.debug(f"{url} validated against {xsd_name}")
        return ValidationResult(ok=True, schema_uri=schema.schema_uri(version))

    @staticmethod
    def _invalid(
        url: str, message: str, line: int | None, column: int | None
    ) -> ValidationResult:
        if line is not None and column is not None:
            error = (
                f"XML verification failed for {url}.\n"
                f"Line {line}:{column}, Error: {message}"
            )
        else:
            error = f"XML verification failed for {url}.\nError: {message}"
        return ValidationResult(ok=False, error=error, line=line, column=column)
