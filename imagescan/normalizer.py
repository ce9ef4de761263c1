from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator

from imagescan.errors import DigestMissingError, MalformedReportError
from imagescan.models import EPOCH, ScanSummary, ScannerKind, Suppression, VulnerabilityRecord, format_utc
from imagescan.parsers import (
    GrypeReport,
    SuppressionAnnotation,
    TrivyReport,
    TrivyVersion,
    load_json_document,
    parse_report,
)

LOGGER = logging.getLogger(__name__)


GRYPE_SEVERITY_MAP = {
    "Low": "low",
    "Medium": "medium",
    "High": "high",
    "Critical": "critical",
    "Negligible": "negligible",
    "Unknown": "unknown",
}

# trivy has no negligible tier
TRIVY_SEVERITY_MAP = {
    "LOW": "low",
    "MEDIUM": "medium",
    "HIGH": "high",
    "CRITICAL": "critical",
    "UNKNOWN": "unknown",
}

_FRACTION = re.compile(r"\.\d+")


def _suppression(annotation: SuppressionAnnotation | None, cve_id: str) -> Suppression | None:
    if annotation is None:
        return None
    return Suppression(cve=annotation.cve or cve_id, reason=annotation.reason, url=annotation.url)


def _grype_records(report: GrypeReport, scan_id: str) -> Iterator[VulnerabilityRecord]:
    for match in report.matches:
        vuln = match.vulnerability
        fixed = vuln.fix.versions if vuln.fix else []
        yield VulnerabilityRecord(
            scan_id=scan_id,
            cve_id=vuln.id,
            data_source=vuln.data_source,
            severity=vuln.severity,
            package_name=match.artifact.name,
            installed_version=match.artifact.version,
            fixed_in_version=",".join(fixed),
            artifact_type=match.artifact.type,
            suppression=_suppression(match.suppression, vuln.id),
        )


def _trivy_records(report: TrivyReport, scan_id: str) -> Iterator[VulnerabilityRecord]:
    for result in report.results:
        for vuln in result.vulnerabilities:
            data_source = vuln.data_source.url if vuln.data_source and vuln.data_source.url else vuln.primary_url
            yield VulnerabilityRecord(
                scan_id=scan_id,
                cve_id=vuln.vulnerability_id,
                data_source=data_source,
                severity=vuln.severity,
                package_name=vuln.pkg_name,
                installed_version=vuln.installed_version,
                fixed_in_version=vuln.fixed_version,
                artifact_type=result.type,
                suppression=_suppression(vuln.suppression, vuln.vulnerability_id),
            )


def _grype_metadata(report: GrypeReport, version: TrivyVersion | None) -> tuple[str, str]:
    return report.descriptor.version, report.descriptor.db.version


def _trivy_metadata(report: TrivyReport, version: TrivyVersion | None) -> tuple[str, str]:
    # trivy keeps its version out of the report; it comes from `trivy --version`
    if version is None:
        LOGGER.warning("No trivy version information supplied; scanner version left blank")
        return "", ""
    db = version.vulnerability_db
    return version.version, db.updated_at if db else ""


def _grype_created(report: GrypeReport) -> str | None:
    encoded = report.source.target.config
    if not encoded:
        return None
    try:
        config = json.loads(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError) as exc:
        LOGGER.warning("Could not decode grype image config for %s: %s", report.source.target.user_input, exc)
        return None
    if not isinstance(config, dict):
        LOGGER.warning("Unexpected grype image config for %s", report.source.target.user_input)
        return None
    created = config.get("created")
    return created if isinstance(created, str) else None


def _trivy_created(report: TrivyReport) -> str | None:
    config = report.metadata.image_config
    return config.created if config else None


@dataclass(frozen=True)
class Dialect:
    """Field mapping for one scanner's report schema."""

    severities: dict[str, str]
    repo_digests: Callable[[Any], list[str]]
    records: Callable[[Any, str], Iterator[VulnerabilityRecord]]
    metadata: Callable[[Any, TrivyVersion | None], tuple[str, str]]
    created: Callable[[Any], str | None]


DIALECTS: dict[ScannerKind, Dialect] = {
    ScannerKind.GRYPE: Dialect(
        severities=GRYPE_SEVERITY_MAP,
        repo_digests=lambda report: report.source.target.repo_digests,
        records=_grype_records,
        metadata=_grype_metadata,
        created=_grype_created,
    ),
    ScannerKind.TRIVY: Dialect(
        severities=TRIVY_SEVERITY_MAP,
        repo_digests=lambda report: report.metadata.repo_digests,
        records=_trivy_records,
        metadata=_trivy_metadata,
        created=_trivy_created,
    ),
}


def extract_digest(repo_digests: list[str]) -> str:
    """``["repo@sha256:abc", ...]`` -> ``"sha256:abc"`` (first entry only)."""
    if not repo_digests:
        raise DigestMissingError("scanner reported no repository digest")
    _, separator, digest = repo_digests[0].partition("@")
    if not separator or not digest:
        raise DigestMissingError(f"repository digest has no '@' separator: {repo_digests[0]}")
    return digest


# a JSON string literal, or a run of whitespace outside of one
_JSON_TOKEN_OR_SPACE = re.compile(r'("(?:[^"\\]|\\.)*")|[ \t\r\n]+')


def minify_json(raw: str | bytes) -> str:
    """Drop insignificant whitespace, keeping every token exactly as written."""
    load_json_document(raw)
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise MalformedReportError(f"report is not UTF-8: {exc}") from exc
    else:
        text = raw
    return _JSON_TOKEN_OR_SPACE.sub(lambda match: match.group(1) or "", text)


def normalize_created(value: datetime | str | None) -> str:
    if value is None or value == "":
        return EPOCH
    if isinstance(value, datetime):
        return format_utc(value)
    try:
        parsed = datetime.fromisoformat(_FRACTION.sub("", value).replace("Z", "+00:00"))
    except ValueError:
        LOGGER.warning("Unparseable image creation time %r, using %s", value, EPOCH)
        return EPOCH
    return format_utc(parsed)


def extract_vulnerabilities(kind: ScannerKind, report: GrypeReport | TrivyReport, scan_id: str = "") -> list[VulnerabilityRecord]:
    return list(DIALECTS[kind].records(report, scan_id))


def vulnerabilities_from_raw(kind: ScannerKind, raw: str | bytes, scan_id: str = "") -> list[VulnerabilityRecord]:
    return extract_vulnerabilities(kind, parse_report(kind, raw), scan_id)


def normalize(
    kind: ScannerKind,
    report: GrypeReport | TrivyReport,
    scan_started: datetime,
    image: str,
    raw_report: str | bytes,
    version: TrivyVersion | None = None,
    created: datetime | str | None = None,
) -> ScanSummary:
    """Build the canonical summary for one scan.

    Raises ``DigestMissingError`` when the report carries no repo digest and
    ``MalformedReportError`` when ``raw_report`` is not JSON. Severities
    outside the scanner's table are logged and counted in ``total`` only.
    """
    dialect = DIALECTS[kind]
    summary = ScanSummary(image=image, scanner=kind, time=format_utc(scan_started))
    summary.scanner_version, summary.scanner_db_version = dialect.metadata(report, version)
    summary.digest = extract_digest(dialect.repo_digests(report))
    summary.created = normalize_created(created if created is not None else dialect.created(report))

    for record in dialect.records(report, ""):
        summary.total += 1
        bucket = dialect.severities.get(record.severity)
        if bucket is None:
            LOGGER.warning("Unrecognized %s severity %r for %s", kind.value, record.severity, record.cve_id)
            continue
        setattr(summary, bucket, getattr(summary, bucket) + 1)

    summary.raw_report_json = minify_json(raw_report)
    summary.success = True
    summary.set_id()
    return summary
