"""
cosign vulnerability attestation predicate.

The statement follows https://cosign.sigstore.dev/attestation/vuln/v1:
invocation provenance, the scanner that produced the result (with the full
SARIF document as ``result``) and the scan window.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from imagescan.models import format_utc
from imagescan.parsers import load_json_document, parse_sarif

VULN_PREDICATE_TYPE = "https://cosign.sigstore.dev/attestation/vuln/v1"


@dataclass
class Invocation:
    uri: str = "unknown"
    event_id: str = "unknown"
    builder_id: str = "unknown"


def build_statement(sarif_raw: str | bytes, started: datetime, finished: datetime, invocation: Invocation) -> dict[str, Any]:
    driver = parse_sarif(sarif_raw).runs[0].tool.driver
    return {
        "invocation": {
            "parameters": None,
            "uri": invocation.uri,
            "event_id": invocation.event_id,
            "builder.id": invocation.builder_id,
        },
        "scanner": {
            "uri": driver.information_uri,
            "version": driver.version,
            "db": {"uri": "", "version": ""},
            "result": load_json_document(sarif_raw),
        },
        "metadata": {
            "scanStartedOn": format_utc(started),
            "scanFinishedOn": format_utc(finished),
        },
    }
