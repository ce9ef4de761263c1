from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from imagescan.codec import decode
from imagescan.errors import StoredRowDecodeError
from imagescan.models import ScanSummary, ScannerKind, format_utc

LOGGER = logging.getLogger(__name__)


@dataclass
class ImageSeverityReport:
    image: str
    scan_id: str
    time: str
    critical: int
    high: int
    medium: int
    low: int
    negligible: int
    vulnerabilities: int
    suppressed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RowFailure:
    image: str | None
    row_id: str | None
    error: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LatestScanReport:
    scanner: str | None
    processed: int = 0
    entries: list[ImageSeverityReport] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanner": self.scanner,
            "processed": self.processed,
            "entries": [entry.to_dict() for entry in self.entries],
            "failures": [failure.to_dict() for failure in self.failures],
        }

    def render(self) -> str:
        lines: list[str] = []
        for entry in self.entries:
            lines.append(entry.image)
            lines.append(f" - Critical: {entry.critical}")
            lines.append(f" - High:     {entry.high}")
            lines.append(f" - Medium:   {entry.medium}")
            lines.append(f" - Low:      {entry.low}")
            lines.append(f" - Neg:      {entry.negligible}")
        return "\n".join(lines)


def _row_time(row: Mapping[str, Any]) -> str:
    value = row.get("time")
    if isinstance(value, datetime):
        return format_utc(value)
    return str(value or "")


def select_latest(rows: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """One row per image: the one with the greatest ``time``.

    Timestamps share one fixed-width UTC format, so string order is time
    order. On a tie the row seen first wins. Output is sorted by image.
    """
    latest: dict[str, Mapping[str, Any]] = {}
    for row in rows:
        image = str(row.get("image") or "")
        current = latest.get(image)
        if current is None or _row_time(row) > _row_time(current):
            latest[image] = row
    return [latest[image] for image in sorted(latest)]


def _entry(summary: ScanSummary, vulnerability_count: int, suppressed: int) -> ImageSeverityReport:
    return ImageSeverityReport(
        image=summary.image,
        scan_id=summary.id,
        time=summary.time,
        critical=summary.critical,
        high=summary.high,
        medium=summary.medium,
        low=summary.low,
        negligible=summary.negligible,
        vulnerabilities=vulnerability_count,
        suppressed=suppressed,
    )


def build_report(rows: Iterable[Mapping[str, Any]], scanner: ScannerKind | None = None) -> LatestScanReport:
    if scanner is not None:
        rows = [row for row in rows if row.get("scanner") == scanner.value]
    report = LatestScanReport(scanner=scanner.value if scanner else None)

    for row in select_latest(rows):
        report.processed += 1
        try:
            summary, vulnerabilities = decode(row)
        except StoredRowDecodeError as exc:
            LOGGER.warning("Could not decode stored scan for %s: %s", exc.image or row.get("image"), exc)
            report.failures.append(RowFailure(image=exc.image or row.get("image"), row_id=exc.row_id, error=str(exc)))
            continue
        if summary.reported_total == 0:
            continue
        suppressed = sum(1 for record in vulnerabilities if record.suppression is not None)
        report.entries.append(_entry(summary, len(vulnerabilities), suppressed))

    LOGGER.info(
        "Processed %s latest scan(s): %s with vulnerabilities, %s failed",
        report.processed,
        len(report.entries),
        len(report.failures),
    )
    return report
