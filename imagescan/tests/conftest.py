"""
Shared scanner report samples.

Each fixture returns a fresh copy so tests can mutate freely.
"""
import copy

import pytest

GRYPE_REPORT = {
    "matches": [
        {
            "vulnerability": {
                "id": "CVE-2023-0464",
                "dataSource": "https://nvd.nist.gov/vuln/detail/CVE-2023-0464",
                "namespace": "wolfi:distro:wolfi:rolling",
                "severity": "Critical",
                "fix": {"versions": ["3.1.0-r1"], "state": "fixed"},
            },
            "artifact": {"name": "libcrypto3", "version": "3.1.0-r0", "type": "apk"},
        },
        {
            "vulnerability": {
                "id": "CVE-2023-2650",
                "dataSource": "https://nvd.nist.gov/vuln/detail/CVE-2023-2650",
                "severity": "High",
                "fix": {"versions": [], "state": "not-fixed"},
            },
            "artifact": {"name": "libssl3", "version": "3.1.0-r0", "type": "apk"},
        },
        {
            "vulnerability": {
                "id": "GHSA-vvpx-j8f3-3w6h",
                "dataSource": "https://github.com/advisories/GHSA-vvpx-j8f3-3w6h",
                "severity": "Medium",
                "fix": {"versions": ["0.7.0", "0.8.0"], "state": "fixed"},
            },
            "artifact": {"name": "golang.org/x/net", "version": "v0.5.0", "type": "go-module"},
        },
        {
            "vulnerability": {
                "id": "CVE-2022-48174",
                "dataSource": "https://nvd.nist.gov/vuln/detail/CVE-2022-48174",
                "severity": "Low",
            },
            "artifact": {"name": "busybox", "version": "1.36.0-r5", "type": "apk"},
        },
        {
            "vulnerability": {
                "id": "CVE-2005-2541",
                "dataSource": "https://security-tracker.debian.org/tracker/CVE-2005-2541",
                "severity": "Negligible",
            },
            "artifact": {"name": "tar", "version": "1.34", "type": "deb"},
        },
        {
            "vulnerability": {
                "id": "CVE-2023-9999",
                "dataSource": "https://nvd.nist.gov/vuln/detail/CVE-2023-9999",
                "severity": "Unknown",
            },
            "artifact": {"name": "zlib", "version": "1.2.13-r0", "type": "apk"},
        },
    ],
    "source": {
        "type": "image",
        "target": {
            "userInput": "cgr.dev/chainguard/static:latest",
            "imageID": "sha256:0d4ea6b7e2b0",
            "repoDigests": ["cgr.dev/chainguard/static@sha256:abc123"],
        },
    },
    "distro": {"name": "wolfi", "version": "20230201"},
    "descriptor": {
        "name": "grype",
        "version": "0.74.0",
        "db": {"built": "2024-01-16T01:25:18Z", "checksum": "sha256:5ef0cf5a1e5b"},
    },
}

TRIVY_REPORT = {
    "SchemaVersion": 2,
    "ArtifactName": "registry.example.com/team/app:1.2.3",
    "ArtifactType": "container_image",
    "Metadata": {
        "OS": {"Family": "debian", "Name": "12.4"},
        "RepoTags": ["registry.example.com/team/app:1.2.3"],
        "RepoDigests": ["registry.example.com/team/app@sha256:def456"],
        "ImageConfig": {"architecture": "amd64", "created": "2024-01-15T10:20:30.123456789Z"},
    },
    "Results": [
        {
            "Target": "registry.example.com/team/app:1.2.3 (debian 12.4)",
            "Class": "os-pkgs",
            "Type": "debian",
            "Vulnerabilities": [
                {
                    "VulnerabilityID": "CVE-2023-4911",
                    "PkgName": "libc6",
                    "InstalledVersion": "2.36-9+deb12u1",
                    "FixedVersion": "2.36-9+deb12u3",
                    "Severity": "HIGH",
                    "PrimaryURL": "https://avd.aquasec.com/nvd/cve-2023-4911",
                    "DataSource": {
                        "ID": "debian",
                        "Name": "Debian Security Tracker",
                        "URL": "https://security-tracker.debian.org/tracker/",
                    },
                },
                {
                    "VulnerabilityID": "CVE-2023-45853",
                    "PkgName": "zlib1g",
                    "InstalledVersion": "1:1.2.13.dfsg-1",
                    "Severity": "CRITICAL",
                    "PrimaryURL": "https://avd.aquasec.com/nvd/cve-2023-45853",
                },
                {
                    "VulnerabilityID": "CVE-2011-3374",
                    "PkgName": "apt",
                    "InstalledVersion": "2.6.1",
                    "Severity": "LOW",
                    "PrimaryURL": "https://avd.aquasec.com/nvd/cve-2011-3374",
                },
            ],
        },
        {
            "Target": "usr/local/bin/app",
            "Class": "lang-pkgs",
            "Type": "gobinary",
            "Vulnerabilities": [
                {
                    "VulnerabilityID": "CVE-2023-39325",
                    "PkgName": "golang.org/x/net",
                    "InstalledVersion": "v0.15.0",
                    "FixedVersion": "0.17.0",
                    "Severity": "HIGH",
                    "DataSource": {"ID": "ghsa", "Name": "GitHub Security Advisory", "URL": "https://github.com/advisories"},
                },
                {
                    "VulnerabilityID": "CVE-2024-0001",
                    "PkgName": "example.com/lib",
                    "InstalledVersion": "v1.0.0",
                    "Severity": "UNKNOWN",
                },
            ],
        },
        {"Target": "app/go.sum", "Class": "lang-pkgs", "Type": "gomod"},
    ],
}

TRIVY_VERSION = {
    "Version": "0.48.3",
    "VulnerabilityDB": {
        "Version": 2,
        "NextUpdate": "2024-01-16T12:10:44Z",
        "UpdatedAt": "2024-01-16T06:10:44.123Z",
        "DownloadedAt": "2024-01-16T07:00:00Z",
    },
}

SARIF_REPORT = {
    "version": "2.1.0",
    "$schema": "https://json.schemastore.org/sarif-2.1.0-rtm.5.json",
    "runs": [
        {
            "tool": {
                "driver": {
                    "name": "Grype",
                    "version": "0.74.0",
                    "informationUri": "https://github.com/anchore/grype",
                    "rules": [],
                }
            },
            "results": [],
        }
    ],
}


@pytest.fixture
def grype_report():
    return copy.deepcopy(GRYPE_REPORT)


@pytest.fixture
def trivy_report():
    return copy.deepcopy(TRIVY_REPORT)


@pytest.fixture
def trivy_version_output():
    return copy.deepcopy(TRIVY_VERSION)


@pytest.fixture
def sarif_report():
    return copy.deepcopy(SARIF_REPORT)
