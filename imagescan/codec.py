"""
Flat storage rows for scan summaries.

A scan is persisted as one flat row of scalar columns. Vulnerabilities are
never stored as nested columns: they live inside ``raw_report_json`` and are
rebuilt from it on the way out, so any back end that can hold a string column
can hold a scan.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from imagescan.errors import MalformedReportError, StoredRowDecodeError
from imagescan.models import EPOCH, ScanSummary, ScannerKind, VulnerabilityRecord, format_utc
from imagescan.normalizer import vulnerabilities_from_raw

FlatRow = dict[str, Any]

# column name -> ScanSummary attribute
COUNT_COLUMNS = {
    "low_cve_count": "low",
    "med_cve_count": "medium",
    "high_cve_count": "high",
    "crit_cve_count": "critical",
    "negligible_cve_count": "negligible",
    "unknown_cve_count": "unknown",
    "tot_cve_count": "total",
}

SCAN_COLUMNS = (
    "id",
    "image",
    "digest",
    "scanner",
    "scanner_version",
    "scanner_db_version",
    "time",
    "created",
    "success",
    *COUNT_COLUMNS,
    "raw_report_json",
)

VULN_COLUMNS = (
    "scan_id",
    "cve_id",
    "data_source",
    "severity",
    "package_name",
    "installed_version",
    "fixed_in_version",
    "artifact_type",
    "suppression_url",
    "suppression_reason",
)


class ScanRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    image: str
    digest: str = ""
    scanner: ScannerKind
    scanner_version: str = ""
    scanner_db_version: str = ""
    time: str
    created: str = EPOCH
    success: bool = False
    low_cve_count: int = 0
    med_cve_count: int = 0
    high_cve_count: int = 0
    crit_cve_count: int = 0
    negligible_cve_count: int = 0
    unknown_cve_count: int = 0
    tot_cve_count: int = 0
    # rows written before trivy support used the grype-only column name
    raw_report_json: str = Field(default="", validation_alias=AliasChoices("raw_report_json", "raw_grype_json"))

    @field_validator("time", "created", mode="before")
    @classmethod
    def _timestamp_text(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return format_utc(value)
        return value


def encode(summary: ScanSummary) -> FlatRow:
    if not summary.id:
        summary.set_id()
    row: FlatRow = {
        "id": summary.id,
        "image": summary.image,
        "digest": summary.digest,
        "scanner": summary.scanner.value,
        "scanner_version": summary.scanner_version,
        "scanner_db_version": summary.scanner_db_version,
        "time": summary.time,
        "created": summary.created,
        "success": summary.success,
    }
    for column, attribute in COUNT_COLUMNS.items():
        row[column] = getattr(summary, attribute)
    row["raw_report_json"] = summary.raw_report_json
    return row


def encode_vulnerability(record: VulnerabilityRecord) -> FlatRow:
    suppression = record.suppression
    return {
        "scan_id": record.scan_id,
        "cve_id": record.cve_id,
        "data_source": record.data_source,
        "severity": record.severity,
        "package_name": record.package_name,
        "installed_version": record.installed_version,
        "fixed_in_version": record.fixed_in_version,
        "artifact_type": record.artifact_type,
        "suppression_url": suppression.url if suppression else None,
        "suppression_reason": suppression.reason if suppression else None,
    }


def decode(row: Mapping[str, Any]) -> tuple[ScanSummary, list[VulnerabilityRecord]]:
    """Rebuild a summary and its vulnerabilities from a stored row.

    NULL columns fall back to their defaults. A row whose scalar columns do
    not validate, or whose embedded report cannot be re-parsed, raises
    ``StoredRowDecodeError``; an empty report column means no vulnerabilities.
    """
    values = {key: value for key, value in dict(row).items() if value is not None}
    try:
        stored = ScanRow.model_validate(values)
    except ValidationError as exc:
        raise StoredRowDecodeError(
            f"stored row {values.get('id', '?')} has invalid columns: {exc.error_count()} error(s)",
            row_id=values.get("id"),
            image=values.get("image"),
        ) from exc

    summary = ScanSummary(
        id=stored.id,
        image=stored.image,
        digest=stored.digest,
        scanner=stored.scanner,
        scanner_version=stored.scanner_version,
        scanner_db_version=stored.scanner_db_version,
        time=stored.time,
        created=stored.created,
        success=stored.success,
        raw_report_json=stored.raw_report_json,
    )
    for column, attribute in COUNT_COLUMNS.items():
        setattr(summary, attribute, getattr(stored, column))

    if not stored.raw_report_json:
        return summary, []
    try:
        vulnerabilities = vulnerabilities_from_raw(stored.scanner, stored.raw_report_json, stored.id)
    except MalformedReportError as exc:
        raise StoredRowDecodeError(
            f"stored report for {stored.image} ({stored.id}) cannot be re-parsed: {exc}",
            row_id=stored.id,
            image=stored.image,
        ) from exc
    return summary, vulnerabilities
