from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

from imagescan.attestation import Invocation, build_statement
from imagescan.config import Settings, resolve_settings
from imagescan.errors import ImageScanError
from imagescan.models import ScanSummary, ScannerKind, VulnerabilityRecord
from imagescan.normalizer import extract_vulnerabilities, normalize
from imagescan.parsers import load_json_document, parse_report
from imagescan.scanners import ScanExecution, cosign_attest, cosign_verify_attestation, scan_image
from imagescan.selector import build_report
from imagescan.storage import open_store
from imagescan.suppressions import SuppressionRule, annotate_report, load_suppressions

LOGGER = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def write_json_file(path: str | Path, payload: dict | list) -> None:
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)


def summarize_execution(
    execution: ScanExecution,
    rules: list[SuppressionRule] | None = None,
) -> tuple[ScanSummary, list[VulnerabilityRecord]]:
    """Turn a JSON scan into its summary and write-time vulnerability rows."""
    raw: str | bytes = execution.raw
    if rules:
        document = load_json_document(raw)
        annotate_report(execution.kind, document, rules)
        raw = json.dumps(document, ensure_ascii=False)
    report = parse_report(execution.kind, raw)
    summary = normalize(
        execution.kind,
        report,
        execution.started_at,
        execution.image,
        raw,
        version=execution.version,
    )
    return summary, extract_vulnerabilities(execution.kind, report, summary.id)


def attest_execution(execution: ScanExecution, invocation: Invocation, workdir: str, docker_config: str | None) -> dict[str, Any]:
    statement = build_statement(execution.raw, execution.started_at, execution.finished_at, invocation)
    predicate_path = str(Path(workdir) / "predicate.json")
    write_json_file(predicate_path, statement)
    LOGGER.info("Attesting scan results for %s", execution.image)
    cosign_attest(execution.image, predicate_path, docker_config)
    cosign_verify_attestation(execution.image, docker_config)
    return statement


def run_scan(args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    kind = ScannerKind.from_value(args.scanner)
    # attestations carry SARIF, summaries need the native JSON report
    fmt = "sarif" if args.attest else "json"
    docker_config = args.docker_config or settings.docker_config
    rules = load_suppressions(settings.suppressions_path) if settings.suppressions_path else []

    with tempfile.TemporaryDirectory(prefix=f"{kind.value}-scan-") as workdir:
        execution = scan_image(
            kind,
            args.image,
            str(Path(workdir) / f"report.{fmt}"),
            fmt=fmt,
            timeout=settings.scanner_timeout,
            docker_config=docker_config,
        )
        if args.attest:
            invocation = Invocation(
                uri=args.invocation_uri,
                event_id=args.invocation_event_id,
                builder_id=args.invocation_builder_id,
            )
            statement = attest_execution(execution, invocation, workdir, docker_config)
            return {"image": args.image, "scanner": kind.value, "attested": True, "statement": statement}

    summary, vulnerabilities = summarize_execution(execution, rules)
    for record in vulnerabilities:
        LOGGER.info(
            "Vulnerability %s %s %s %s %s (id=%s)",
            record.package_name,
            record.installed_version,
            record.fixed_in_version,
            record.cve_id,
            record.artifact_type,
            record.scan_id,
        )
    if args.upload:
        open_store(settings).save(summary, vulnerabilities)
    return {
        "summary": summary.to_dict(include_raw=False),
        "vulnerabilities": [record.to_dict() for record in vulnerabilities],
    }


def run_latest(args: argparse.Namespace, settings: Settings) -> tuple[dict[str, Any], int]:
    kind = ScannerKind.from_value(args.scanner)
    rows = open_store(settings).fetch_rows(kind)
    report = build_report(rows, kind)
    text = report.render()
    if text:
        print(text)
    return report.to_dict(), 1 if report.failures else 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Container image vulnerability scan runner")
    parser.add_argument("--settings", default=os.getenv("IMAGESCAN_SETTINGS", "/app/config/settings.yaml"), help="Path to settings YAML")
    parser.add_argument("--log-level", help="Logging level (overrides settings)")
    parser.add_argument("--json-output", help="Optional path for the JSON result")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan one image and summarize, persist or attest the result")
    scan.add_argument("--image", default="cgr.dev/chainguard/static:latest", help="OCI image reference")
    scan.add_argument("--scanner", choices=[kind.value for kind in ScannerKind], default="grype", help="Which scanner to use")
    scan.add_argument("--attest", action="store_true", help="Attest the results with cosign instead of summarizing")
    scan.add_argument("--no-upload", dest="upload", action="store_false", help="Do not persist the summary")
    scan.add_argument("--invocation-uri", default="unknown", help="in-toto invocation uri")
    scan.add_argument("--invocation-event-id", default="unknown", help="in-toto invocation event_id")
    scan.add_argument("--invocation-builder-id", default="unknown", help="in-toto invocation builder.id")
    scan.add_argument("--docker-config", help="Explicit docker config directory for registry auth")

    latest = subparsers.add_parser("latest", help="Report severity counts of the latest scan per image")
    latest.add_argument("--scanner", choices=[kind.value for kind in ScannerKind], default="grype", help="Scanner whose rows to query")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = resolve_settings(args.settings)
    except (OSError, ValueError) as exc:
        setup_logging(args.log_level or "INFO")
        LOGGER.error("Invalid settings: %s", exc)
        return 2
    setup_logging(args.log_level or settings.log_level)

    exit_code = 0
    try:
        if args.command == "scan":
            payload = run_scan(args, settings)
            print(json.dumps(payload, indent=4, ensure_ascii=False))
        else:
            payload, exit_code = run_latest(args, settings)
    except ValueError as exc:
        LOGGER.error("Invalid arguments or configuration: %s", exc)
        return 2
    except ImageScanError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1

    if args.json_output:
        try:
            write_json_file(args.json_output, payload)
        except OSError as exc:
            LOGGER.error("Cannot write %s: %s", args.json_output, exc)
            return 1
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
