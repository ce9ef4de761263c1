from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

STORAGE_BACKENDS = {"sqlite", "bigquery"}


@dataclass
class StorageSettings:
    backend: str = "sqlite"
    db_path: str = "/data/image_scans.db"
    project: str | None = None
    dataset: str | None = None
    table: str = "scans"
    vulns_table: str = "vulns"


@dataclass
class Settings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    scanner_timeout: str = "15m"
    docker_config: str | None = None
    suppressions_path: str | None = None
    log_level: str = "INFO"


def load_yaml(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def resolve_settings(path: str | None = None, env: Mapping[str, str] | None = None) -> Settings:
    """Merge the YAML settings file (if any) over environment defaults.

    This is the only place that reads the process environment; everything
    downstream receives the returned ``Settings``.
    """
    env = os.environ if env is None else env
    raw = load_yaml(path) if path and Path(path).exists() else {}
    raw.setdefault("storage", {})
    raw.setdefault("scanner", {})
    raw.setdefault("suppressions", {})
    raw.setdefault("logging", {})

    storage = raw["storage"]
    storage.setdefault("backend", env.get("IMAGESCAN_STORAGE_BACKEND", "sqlite"))
    storage.setdefault("db_path", env.get("IMAGESCAN_DB_PATH", "/data/image_scans.db"))
    storage.setdefault("project", env.get("GCLOUD_PROJECT"))
    storage.setdefault("dataset", env.get("GCLOUD_DATASET"))
    storage.setdefault("table", env.get("GCLOUD_TABLE", "scans"))
    storage.setdefault("vulns_table", env.get("GCLOUD_TABLE_VULNS", "vulns"))
    raw["scanner"].setdefault("timeout", "15m")
    raw["scanner"].setdefault("docker_config", env.get("DOCKER_CONFIG"))
    raw["suppressions"].setdefault("path", env.get("IMAGESCAN_SUPPRESSIONS"))
    raw["logging"].setdefault("level", env.get("LOG_LEVEL", "INFO"))

    backend = str(storage["backend"]).lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unsupported storage backend: {storage['backend']}")

    return Settings(
        storage=StorageSettings(
            backend=backend,
            db_path=str(storage["db_path"]),
            project=storage["project"],
            dataset=storage["dataset"],
            table=str(storage["table"]),
            vulns_table=str(storage["vulns_table"]),
        ),
        scanner_timeout=str(raw["scanner"]["timeout"]),
        docker_config=raw["scanner"]["docker_config"] or None,
        suppressions_path=raw["suppressions"]["path"] or None,
        log_level=str(raw["logging"]["level"]),
    )
