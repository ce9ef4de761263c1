"""
Read-only HTTP API over stored scans.

Serve with ``uvicorn --factory imagescan.api:app_from_env``.
"""
from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Query, status
from pydantic import BaseModel

from imagescan.codec import decode
from imagescan.config import Settings, resolve_settings
from imagescan.errors import StorageError, StoredRowDecodeError
from imagescan.models import ScannerKind
from imagescan.selector import build_report
from imagescan.storage import ScanStore, open_store

APP_TITLE = "Image Scan API"
APP_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime_seconds: float
    version: str
    storage_backend: str


def create_app(settings: Settings, store: ScanStore | None = None) -> FastAPI:
    app = FastAPI(title=APP_TITLE, version=APP_VERSION)
    app.state.store = store or open_store(settings)
    started = time.time()

    @app.get("/api/health", response_model=HealthResponse)
    def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime_seconds=round(time.time() - started, 2),
            version=APP_VERSION,
            storage_backend=settings.storage.backend,
        )

    @app.get("/api/latest")
    def latest_scans(scanner: ScannerKind = Query(default=ScannerKind.GRYPE)) -> dict[str, Any]:
        try:
            rows = app.state.store.fetch_rows(scanner)
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
        return build_report(rows, scanner).to_dict()

    @app.get("/api/scans/{scan_id}/vulnerabilities")
    def scan_vulnerabilities(scan_id: str) -> dict[str, Any]:
        try:
            row = app.state.store.fetch_row(scan_id)
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
        try:
            summary, vulnerabilities = decode(row)
        except StoredRowDecodeError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
        return {
            "scan": summary.to_dict(include_raw=False),
            "vulnerabilities": [record.to_dict() for record in vulnerabilities],
        }

    return app


def app_from_env() -> FastAPI:
    return create_app(resolve_settings(os.getenv("IMAGESCAN_SETTINGS")))
