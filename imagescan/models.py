from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

EPOCH = "1970-01-01T00:00:00Z"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_utc(value: datetime) -> str:
    """Render ``value`` as second-precision UTC, e.g. ``2024-03-01T12:00:05Z``.

    Naive datetimes are taken to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


class ScannerKind(str, Enum):
    TRIVY = "trivy"
    GRYPE = "grype"

    @classmethod
    def from_value(cls, value: "str | ScannerKind") -> "ScannerKind":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"invalid scanner: {value}") from None


@dataclass
class Suppression:
    """Operator assertion that a CVE does not apply to a match."""

    cve: str
    reason: str
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class VulnerabilityRecord:
    scan_id: str
    cve_id: str
    data_source: str
    severity: str
    package_name: str
    installed_version: str
    fixed_in_version: str = ""
    artifact_type: str = ""
    suppression: Suppression | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanSummary:
    image: str
    scanner: ScannerKind
    time: str
    digest: str = ""
    scanner_version: str = ""
    scanner_db_version: str = ""
    created: str = EPOCH
    success: bool = False
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0
    negligible: int = 0
    unknown: int = 0
    total: int = 0
    raw_report_json: str = ""
    id: str = ""

    def set_id(self) -> str:
        # One row per (image, digest, scanner, scan start); re-encoding the same
        # summary yields the same id.
        parts = (self.scanner.value, self.image, self.digest, self.time)
        self.id = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
        return self.id

    def severity_counts(self) -> dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
            "negligible": self.negligible,
            "unknown": self.unknown,
        }

    @property
    def reported_total(self) -> int:
        """Sum of the five reported buckets (unknown is not reported)."""
        return self.critical + self.high + self.medium + self.low + self.negligible

    def to_dict(self, include_raw: bool = True) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "image": self.image,
            "digest": self.digest,
            "scanner": self.scanner.value,
            "scanner_version": self.scanner_version,
            "scanner_db_version": self.scanner_db_version,
            "time": self.time,
            "created": self.created,
            "success": self.success,
            **self.severity_counts(),
            "total": self.total,
        }
        if include_raw:
            payload["raw_report_json"] = self.raw_report_json
        return payload
