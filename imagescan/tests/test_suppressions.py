import pytest

from imagescan.models import ScannerKind
from imagescan.suppressions import SuppressionRule, annotate_report, load_suppressions

SUPPRESSIONS_YAML = """
suppressions:
  - cve: CVE-2023-2650
    reason: OBJ_obj2txt is never reached from our binaries
    url: https://example.com/triage/2650
  - cve: CVE-2005-2541
    package: tar
    reason: tar is not invoked on untrusted archives
"""


def test_load_suppressions(tmp_path):
    path = tmp_path / "suppressions.yaml"
    path.write_text(SUPPRESSIONS_YAML)
    rules = load_suppressions(str(path))
    assert [rule.cve for rule in rules] == ["CVE-2023-2650", "CVE-2005-2541"]
    assert rules[0].url == "https://example.com/triage/2650"
    assert rules[1].package == "tar"
    assert rules[1].url is None


def test_load_empty_file(tmp_path):
    path = tmp_path / "suppressions.yaml"
    path.write_text("")
    assert load_suppressions(str(path)) == []


def test_rule_requires_cve_and_reason():
    with pytest.raises(ValueError):
        SuppressionRule.from_dict({"cve": "CVE-2023-2650"})
    with pytest.raises(ValueError):
        SuppressionRule.from_dict({"reason": "because"})


def test_rule_package_restriction():
    rule = SuppressionRule(cve="CVE-1", reason="r", package="tar")
    assert rule.matches("CVE-1", "tar")
    assert not rule.matches("CVE-1", "gzip")
    assert SuppressionRule(cve="CVE-1", reason="r").matches("CVE-1", "gzip")


def test_annotate_grype_report(grype_report, tmp_path):
    path = tmp_path / "suppressions.yaml"
    path.write_text(SUPPRESSIONS_YAML)
    count = annotate_report(ScannerKind.GRYPE, grype_report, load_suppressions(str(path)))
    assert count == 2
    assert grype_report["matches"][1]["suppression"] == {
        "cve": "CVE-2023-2650",
        "url": "https://example.com/triage/2650",
        "reason": "OBJ_obj2txt is never reached from our binaries",
    }
    assert grype_report["matches"][4]["suppression"]["cve"] == "CVE-2005-2541"
    assert "suppression" not in grype_report["matches"][0]


def test_annotate_trivy_report(trivy_report):
    rules = [SuppressionRule(cve="CVE-2023-39325", reason="HTTP/2 disabled")]
    assert annotate_report(ScannerKind.TRIVY, trivy_report, rules) == 1
    vuln = trivy_report["Results"][1]["Vulnerabilities"][0]
    assert vuln["suppression"]["reason"] == "HTTP/2 disabled"


def test_annotate_without_rules(grype_report):
    assert annotate_report(ScannerKind.GRYPE, grype_report, []) == 0
    assert all("suppression" not in match for match in grype_report["matches"])


@pytest.mark.parametrize(
    "content",
    [
        "suppressions: [\n  - cve: CVE-1\n",
        "- cve: CVE-1\n  reason: r\n",
        "suppressions: CVE-1\n",
        "suppressions:\n  - CVE-1\n",
    ],
)
def test_malformed_suppressions_file(tmp_path, content):
    path = tmp_path / "suppressions.yaml"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_suppressions(str(path))


def test_missing_suppressions_file(tmp_path):
    with pytest.raises(ValueError) as excinfo:
        load_suppressions(str(tmp_path / "absent.yaml"))
    assert "absent.yaml" in str(excinfo.value)
