import json
from datetime import datetime, timezone

import pytest

from imagescan.attestation import VULN_PREDICATE_TYPE, Invocation, build_statement
from imagescan.errors import MalformedReportError


def test_build_statement(sarif_report):
    started = datetime(2024, 1, 16, 8, 0, 0, tzinfo=timezone.utc)
    finished = datetime(2024, 1, 16, 8, 1, 30, 500, tzinfo=timezone.utc)
    invocation = Invocation(uri="https://ci.example.com/run/42", event_id="42", builder_id="ci")

    statement = build_statement(json.dumps(sarif_report), started, finished, invocation)

    assert statement["invocation"] == {
        "parameters": None,
        "uri": "https://ci.example.com/run/42",
        "event_id": "42",
        "builder.id": "ci",
    }
    assert statement["scanner"]["uri"] == "https://github.com/anchore/grype"
    assert statement["scanner"]["version"] == "0.74.0"
    assert statement["scanner"]["db"] == {"uri": "", "version": ""}
    assert statement["scanner"]["result"] == sarif_report
    assert statement["metadata"] == {
        "scanStartedOn": "2024-01-16T08:00:00Z",
        "scanFinishedOn": "2024-01-16T08:01:30Z",
    }


def test_default_invocation_is_unknown(sarif_report):
    now = datetime(2024, 1, 16, tzinfo=timezone.utc)
    statement = build_statement(json.dumps(sarif_report), now, now, Invocation())
    assert statement["invocation"]["uri"] == "unknown"
    assert statement["invocation"]["builder.id"] == "unknown"


def test_statement_needs_a_sarif_run():
    now = datetime(2024, 1, 16, tzinfo=timezone.utc)
    with pytest.raises(MalformedReportError):
        build_statement('{"runs": []}', now, now, Invocation())


def test_predicate_type():
    assert VULN_PREDICATE_TYPE == "https://cosign.sigstore.dev/attestation/vuln/v1"
