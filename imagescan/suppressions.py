"""
Operator suppressions ("this CVE does not apply here").

Rules come from a YAML file and are written into the matching entries of the
raw report before it is embedded, so they travel with the report and are
read back by the parsers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import yaml

from imagescan.models import ScannerKind

LOGGER = logging.getLogger(__name__)


@dataclass
class SuppressionRule:
    cve: str
    reason: str
    url: str | None = None
    package: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuppressionRule":
        cve = data.get("cve")
        reason = data.get("reason")
        if not cve or not reason:
            raise ValueError(f"Suppression needs both 'cve' and 'reason': {data}")
        return cls(cve=str(cve), reason=str(reason), url=data.get("url"), package=data.get("package"))

    def matches(self, cve_id: str, package: str) -> bool:
        return self.cve == cve_id and (not self.package or self.package == package)

    def annotation(self) -> dict[str, Any]:
        return {"cve": self.cve, "url": self.url, "reason": self.reason}


def load_suppressions(path: str) -> list[SuppressionRule]:
    """Read the rules file; an unreadable or malformed file raises ``ValueError``."""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ValueError(f"Cannot read suppressions file {path}: {exc}") from exc
    entries = (data.get("suppressions") or []) if isinstance(data, dict) else None
    if not isinstance(entries, list) or not all(isinstance(item, dict) for item in entries):
        raise ValueError(f"Suppressions file {path} must hold a 'suppressions' list of mappings")
    rules = [SuppressionRule.from_dict(item) for item in entries]
    LOGGER.info("Loaded %s suppression rule(s) from %s", len(rules), path)
    return rules


def _entries(kind: ScannerKind, report: dict[str, Any]):
    """Yield ``(entry, cve_id, package)`` for every match in a raw report dict."""
    if kind is ScannerKind.GRYPE:
        for match in report.get("matches") or []:
            yield match, (match.get("vulnerability") or {}).get("id", ""), (match.get("artifact") or {}).get("name", "")
    else:
        for result in report.get("Results") or []:
            for vuln in result.get("Vulnerabilities") or []:
                yield vuln, vuln.get("VulnerabilityID", ""), vuln.get("PkgName", "")


def annotate_report(kind: ScannerKind, report: dict[str, Any], rules: list[SuppressionRule]) -> int:
    """Attach the first matching rule to each entry, in place. Returns the count."""
    if not rules:
        return 0
    annotated = 0
    for entry, cve_id, package in _entries(kind, report):
        for rule in rules:
            if rule.matches(cve_id, package):
                entry["suppression"] = rule.annotation()
                annotated += 1
                break
    if annotated:
        LOGGER.info("Suppressed %s %s match(es)", annotated, kind.value)
    return annotated
