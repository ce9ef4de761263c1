from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from imagescan.codec import SCAN_COLUMNS, VULN_COLUMNS, FlatRow, encode, encode_vulnerability
from imagescan.config import Settings
from imagescan.errors import StorageError
from imagescan.models import ScanSummary, ScannerKind, VulnerabilityRecord

LOGGER = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    image TEXT NOT NULL,
    digest TEXT NOT NULL,
    scanner TEXT NOT NULL,
    scanner_version TEXT,
    scanner_db_version TEXT,
    time TEXT NOT NULL,
    created TEXT NOT NULL,
    success INTEGER NOT NULL DEFAULT 0,
    low_cve_count INTEGER NOT NULL DEFAULT 0,
    med_cve_count INTEGER NOT NULL DEFAULT 0,
    high_cve_count INTEGER NOT NULL DEFAULT 0,
    crit_cve_count INTEGER NOT NULL DEFAULT 0,
    negligible_cve_count INTEGER NOT NULL DEFAULT 0,
    unknown_cve_count INTEGER NOT NULL DEFAULT 0,
    tot_cve_count INTEGER NOT NULL DEFAULT 0,
    raw_report_json TEXT
);

CREATE TABLE IF NOT EXISTS vulns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id TEXT NOT NULL,
    cve_id TEXT NOT NULL,
    data_source TEXT,
    severity TEXT,
    package_name TEXT,
    installed_version TEXT,
    fixed_in_version TEXT,
    artifact_type TEXT,
    suppression_url TEXT,
    suppression_reason TEXT,
    FOREIGN KEY (scan_id) REFERENCES scans(id)
);

CREATE INDEX IF NOT EXISTS idx_scans_scanner_image ON scans(scanner, image, time);
CREATE INDEX IF NOT EXISTS idx_vulns_scan_id ON vulns(scan_id);
CREATE INDEX IF NOT EXISTS idx_vulns_cve_id ON vulns(cve_id);
"""


class ScanStore(ABC):
    """Append-only sink and row source for scan summaries."""

    @abstractmethod
    def save(self, summary: ScanSummary, vulnerabilities: list[VulnerabilityRecord]) -> None:
        pass

    @abstractmethod
    def fetch_rows(self, scanner: ScannerKind) -> list[FlatRow]:
        """Every stored row for ``scanner``, in no particular order."""
        pass

    @abstractmethod
    def fetch_row(self, scan_id: str) -> FlatRow | None:
        pass


def connect(db_path: str) -> sqlite3.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    try:
        with connect(db_path) as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
    except (sqlite3.Error, OSError) as exc:
        raise StorageError(f"cannot initialize SQLite database {db_path}: {exc}") from exc
    LOGGER.info("SQLite initialized at %s", db_path)


class SQLiteStore(ScanStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        init_db(db_path)

    def save(self, summary: ScanSummary, vulnerabilities: list[VulnerabilityRecord]) -> None:
        row = encode(summary)
        scan_sql = f"INSERT INTO scans ({', '.join(SCAN_COLUMNS)}) VALUES ({', '.join('?' for _ in SCAN_COLUMNS)})"
        vuln_sql = f"INSERT INTO vulns ({', '.join(VULN_COLUMNS)}) VALUES ({', '.join('?' for _ in VULN_COLUMNS)})"
        vuln_rows = [encode_vulnerability(record) for record in vulnerabilities]
        try:
            with connect(self.db_path) as conn:
                conn.execute(scan_sql, [row[column] for column in SCAN_COLUMNS])
                conn.executemany(vuln_sql, [[item[column] for column in VULN_COLUMNS] for item in vuln_rows])
                conn.commit()
        except sqlite3.IntegrityError as exc:
            raise StorageError(f"scan {summary.id} is already stored: {exc}") from exc
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"cannot store scan {summary.id} in {self.db_path}: {exc}") from exc
        LOGGER.info("Persisted scan %s (%s) with %s vulnerability row(s)", summary.id, summary.image, len(vuln_rows))

    def _select(self, sql: str, params: tuple[Any, ...]) -> list[FlatRow]:
        try:
            with connect(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"SQLite query on {self.db_path} failed: {exc}") from exc
        return [dict(row) for row in rows]

    def fetch_rows(self, scanner: ScannerKind) -> list[FlatRow]:
        return self._select("SELECT * FROM scans WHERE scanner = ?", (scanner.value,))

    def fetch_row(self, scan_id: str) -> FlatRow | None:
        rows = self._select("SELECT * FROM scans WHERE id = ? LIMIT 1", (scan_id,))
        return rows[0] if rows else None


class BigQueryStore(ScanStore):
    """Streaming inserts into a scans table and a denormalized vulns table."""

    def __init__(self, project: str, dataset: str, table: str, vulns_table: str, client: Any | None = None) -> None:
        self.project = project
        self.dataset = dataset
        self.table = table
        self.vulns_table = vulns_table
        self._client = client

    @property
    def table_ref(self) -> str:
        return f"{self.project}.{self.dataset}.{self.table}"

    @property
    def vulns_table_ref(self) -> str:
        return f"{self.project}.{self.dataset}.{self.vulns_table}"

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                from google.cloud import bigquery
            except ImportError:
                raise StorageError(
                    "google-cloud-bigquery is required for the BigQuery store. "
                    "Install with: pip install google-cloud-bigquery"
                )
            try:
                self._client = bigquery.Client(project=self.project)
            except Exception as exc:  # noqa: BLE001
                raise StorageError(f"cannot create BigQuery client for {self.project}: {exc}") from exc
        return self._client

    def _insert(self, table_ref: str, rows: list[FlatRow], row_ids: list[str] | None = None) -> None:
        client = self._get_client()
        try:
            errors = client.insert_rows_json(table_ref, rows, row_ids=row_ids)
        except Exception as exc:  # noqa: BLE001
            raise StorageError(f"BigQuery insert into {table_ref} failed: {exc}") from exc
        if errors:
            raise StorageError(f"BigQuery insert into {table_ref} failed: {json.dumps(errors)}")

    def save(self, summary: ScanSummary, vulnerabilities: list[VulnerabilityRecord]) -> None:
        row = encode(summary)
        LOGGER.info("Adding 1 row to table %s (scan_id=%s)", self.table_ref, summary.id)
        self._insert(self.table_ref, [row], row_ids=[summary.id])
        if vulnerabilities:
            LOGGER.info("Adding %s row(s) to table %s", len(vulnerabilities), self.vulns_table_ref)
            self._insert(self.vulns_table_ref, [encode_vulnerability(record) for record in vulnerabilities])

    def _query(self, sql: str, name: str, value: str) -> list[FlatRow]:
        client = self._get_client()
        from google.cloud import bigquery

        job_config = bigquery.QueryJobConfig(
            query_parameters=[bigquery.ScalarQueryParameter(name, "STRING", value)],
            use_legacy_sql=False,
        )
        try:
            result = client.query(sql, job_config=job_config).result()
        except Exception as exc:  # noqa: BLE001
            raise StorageError(f"BigQuery query failed: {exc}") from exc
        return [dict(row.items()) for row in result]

    def fetch_rows(self, scanner: ScannerKind) -> list[FlatRow]:
        return self._query(f"SELECT * FROM `{self.table_ref}` WHERE scanner = @scanner", "scanner", scanner.value)

    def fetch_row(self, scan_id: str) -> FlatRow | None:
        rows = self._query(f"SELECT * FROM `{self.table_ref}` WHERE id = @scan_id LIMIT 1", "scan_id", scan_id)
        return rows[0] if rows else None


def open_store(settings: Settings) -> ScanStore:
    storage = settings.storage
    if storage.backend == "bigquery":
        if not storage.project or not storage.dataset:
            raise ValueError("BigQuery storage needs both a project and a dataset")
        return BigQueryStore(storage.project, storage.dataset, storage.table, storage.vulns_table)
    return SQLiteStore(storage.db_path)
