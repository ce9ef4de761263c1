from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from imagescan.attestation import VULN_PREDICATE_TYPE
from imagescan.errors import ScannerError
from imagescan.models import ScannerKind, utc_now
from imagescan.parsers import TrivyVersion, parse_trivy_version

LOGGER = logging.getLogger(__name__)


@dataclass
class ScanExecution:
    kind: ScannerKind
    image: str
    fmt: str
    output_path: str
    started_at: datetime
    finished_at: datetime
    raw: bytes
    version: TrivyVersion | None = None


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def child_env(docker_config: str | None = None) -> dict[str, str]:
    env = os.environ.copy()
    if docker_config:
        env["DOCKER_CONFIG"] = docker_config
    return env


def run_command(command: list[str], cwd: str | None = None, timeout: int = 3600, env: dict[str, str] | None = None) -> tuple[int, str, str]:
    LOGGER.info("Executing command: %s", " ".join(command))
    process = subprocess.run(
        command,
        cwd=cwd,
        env=env or os.environ.copy(),
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )
    return process.returncode, process.stdout, process.stderr


def _require(name: str) -> None:
    if not command_exists(name):
        raise ScannerError(f"{name} not found in PATH")


def run_trivy_image(image: str, output_path: str, fmt: str = "json", timeout: str = "15m", docker_config: str | None = None) -> dict[str, Any]:
    _require("trivy")
    command = ["trivy", "--debug", "image", "--timeout", timeout, "--offline-scan", "-f", fmt, "-o", output_path, image]
    code, stdout, stderr = run_command(command, env=child_env(docker_config))
    if code != 0:
        raise ScannerError(f"trivy image failed: {stderr or stdout}")
    return {"exit_code": code, "stdout_path": output_path, "stderr": stderr}


def trivy_version(docker_config: str | None = None) -> TrivyVersion:
    _require("trivy")
    code, stdout, stderr = run_command(["trivy", "--version", "-f", "json"], timeout=300, env=child_env(docker_config))
    if code != 0:
        raise ScannerError(f"trivy --version failed: {stderr or stdout}")
    return parse_trivy_version(stdout)


def run_grype(image: str, output_path: str, fmt: str = "json", docker_config: str | None = None) -> dict[str, Any]:
    _require("grype")
    command = ["grype", "-v", "-o", fmt, "--file", output_path, image]
    code, stdout, stderr = run_command(command, env=child_env(docker_config))
    if code != 0:
        raise ScannerError(f"grype failed: {stderr or stdout}")
    return {"exit_code": code, "stdout_path": output_path, "stderr": stderr}


def scan_image(
    kind: ScannerKind,
    image: str,
    output_path: str,
    fmt: str = "json",
    timeout: str = "15m",
    docker_config: str | None = None,
) -> ScanExecution:
    """Run one scanner against ``image`` and collect the report bytes.

    The scan window is measured around the scanner process only. For trivy
    the version query runs afterwards because the report does not carry it.
    """
    LOGGER.info("Scanning %s with %s (format=%s)", image, kind.value, fmt)
    started_at = utc_now()
    if kind is ScannerKind.TRIVY:
        run_trivy_image(image, output_path, fmt=fmt, timeout=timeout, docker_config=docker_config)
    else:
        run_grype(image, output_path, fmt=fmt, docker_config=docker_config)
    finished_at = utc_now()

    raw = Path(output_path).read_bytes()
    version = trivy_version(docker_config) if kind is ScannerKind.TRIVY else None
    return ScanExecution(
        kind=kind,
        image=image,
        fmt=fmt,
        output_path=output_path,
        started_at=started_at,
        finished_at=finished_at,
        raw=raw,
        version=version,
    )


def cosign_attest(image: str, predicate_path: str, docker_config: str | None = None) -> None:
    _require("cosign")
    command = ["cosign", "attest", "--yes", "--type", VULN_PREDICATE_TYPE, "--predicate", predicate_path, image]
    code, stdout, stderr = run_command(command, env=child_env(docker_config))
    if code != 0:
        raise ScannerError(f"cosign attest failed: {stderr or stdout}")


def cosign_verify_attestation(image: str, docker_config: str | None = None) -> bool:
    """Verify the vuln attestation; failure is only a warning (private images)."""
    # TODO: verify against the signing identity instead of matching any identity/issuer
    command = [
        "cosign",
        "verify-attestation",
        "--type",
        VULN_PREDICATE_TYPE,
        "--certificate-identity-regexp",
        ".*",
        "--certificate-oidc-issuer-regexp",
        ".*",
        image,
    ]
    code, stdout, stderr = run_command(command, env=child_env(docker_config))
    if code != 0:
        LOGGER.warning("Could not verify attestation (is this a private image?): %s", stderr or stdout)
        return False
    return True
