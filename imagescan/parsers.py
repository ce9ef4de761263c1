"""
Typed decoders for the scanner reports we consume.

Only the fields the summary, the vulnerability rows and the attestation
envelope need are declared; everything else in the report is ignored here
and survives untouched in the embedded raw JSON.
"""
from __future__ import annotations

import json
from typing import Annotated, Any, TypeVar

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from imagescan.errors import MalformedReportError
from imagescan.models import ScannerKind

T = TypeVar("T")


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


# Both scanners emit ``null`` instead of ``[]`` for some empty lists.
NullableList = Annotated[list[T], BeforeValidator(_none_as_empty)]


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SuppressionAnnotation(_Schema):
    cve: str = Field(default="", validation_alias=AliasChoices("cve", "Cve"))
    url: str | None = Field(default=None, validation_alias=AliasChoices("url", "Url"))
    reason: str = Field(default="", validation_alias=AliasChoices("reason", "Reason"))


def _suppression_field() -> Any:
    # "nack" is what older annotated reports used for the same object
    return Field(default=None, validation_alias=AliasChoices("suppression", "nack", "Nack"))


# ---------------------------------------------------------------------------
# grype -o json
# ---------------------------------------------------------------------------

class GrypeFix(_Schema):
    versions: NullableList[str] = Field(default_factory=list)
    state: str = ""


class GrypeVulnerability(_Schema):
    id: str
    data_source: str = Field(default="", alias="dataSource")
    severity: str = ""
    fix: GrypeFix | None = None


class GrypeArtifact(_Schema):
    name: str = ""
    version: str = ""
    type: str = ""


class GrypeMatch(_Schema):
    vulnerability: GrypeVulnerability
    artifact: GrypeArtifact
    suppression: SuppressionAnnotation | None = _suppression_field()


class GrypeTarget(_Schema):
    user_input: str = Field(default="", alias="userInput")
    repo_digests: NullableList[str] = Field(default_factory=list, alias="repoDigests")
    # base64 of the image config blob
    config: str = ""


class GrypeSource(_Schema):
    type: str = ""
    target: GrypeTarget


class GrypeDbStatus(_Schema):
    built: str = ""
    schema_version: str = Field(default="", alias="schemaVersion")


class GrypeDb(_Schema):
    checksum: str = ""
    status: GrypeDbStatus | None = None

    @property
    def version(self) -> str:
        # Newer grype releases dropped the checksum in favour of db.status.
        if self.checksum:
            return self.checksum
        return self.status.built if self.status else ""


class GrypeDescriptor(_Schema):
    name: str = "grype"
    version: str = ""
    db: GrypeDb = Field(default_factory=GrypeDb)


class GrypeReport(_Schema):
    matches: NullableList[GrypeMatch] = Field(default_factory=list)
    source: GrypeSource
    descriptor: GrypeDescriptor


# ---------------------------------------------------------------------------
# trivy image -f json, trivy --version -f json
# ---------------------------------------------------------------------------

class TrivyDataSource(_Schema):
    id: str = Field(default="", alias="ID")
    name: str = Field(default="", alias="Name")
    url: str = Field(default="", alias="URL")


class TrivyVulnerability(_Schema):
    vulnerability_id: str = Field(alias="VulnerabilityID")
    pkg_name: str = Field(default="", alias="PkgName")
    installed_version: str = Field(default="", alias="InstalledVersion")
    fixed_version: str = Field(default="", alias="FixedVersion")
    severity: str = Field(default="", alias="Severity")
    primary_url: str = Field(default="", alias="PrimaryURL")
    data_source: TrivyDataSource | None = Field(default=None, alias="DataSource")
    suppression: SuppressionAnnotation | None = _suppression_field()


class TrivyResult(_Schema):
    target: str = Field(default="", alias="Target")
    result_class: str = Field(default="", alias="Class")
    type: str = Field(default="", alias="Type")
    vulnerabilities: NullableList[TrivyVulnerability] = Field(default_factory=list, alias="Vulnerabilities")


class TrivyImageConfig(_Schema):
    created: str | None = None


class TrivyMetadata(_Schema):
    repo_digests: NullableList[str] = Field(default_factory=list, alias="RepoDigests")
    image_config: TrivyImageConfig | None = Field(default=None, alias="ImageConfig")


class TrivyReport(_Schema):
    artifact_name: str = Field(default="", alias="ArtifactName")
    metadata: TrivyMetadata = Field(alias="Metadata")
    results: NullableList[TrivyResult] = Field(default_factory=list, alias="Results")


class TrivyDbMetadata(_Schema):
    updated_at: str = Field(default="", alias="UpdatedAt")


class TrivyVersion(_Schema):
    version: str = Field(alias="Version")
    vulnerability_db: TrivyDbMetadata | None = Field(default=None, alias="VulnerabilityDB")


# ---------------------------------------------------------------------------
# SARIF (attestation input)
# ---------------------------------------------------------------------------

class SarifDriver(_Schema):
    name: str = ""
    version: str = ""
    information_uri: str = Field(default="", alias="informationUri")


class SarifTool(_Schema):
    driver: SarifDriver


class SarifRun(_Schema):
    tool: SarifTool


class SarifReport(_Schema):
    runs: NullableList[SarifRun] = Field(default_factory=list)


REPORT_MODELS: dict[ScannerKind, type[_Schema]] = {
    ScannerKind.GRYPE: GrypeReport,
    ScannerKind.TRIVY: TrivyReport,
}


def _validate(model: type[_Schema], raw: str | bytes, what: str) -> Any:
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        raise MalformedReportError(f"invalid {what}: {first.get('msg')} at {location}") from exc


def parse_report(kind: ScannerKind, raw: str | bytes) -> GrypeReport | TrivyReport:
    return _validate(REPORT_MODELS[kind], raw, f"{kind.value} report")


def parse_trivy_version(raw: str | bytes) -> TrivyVersion:
    return _validate(TrivyVersion, raw, "trivy version output")


def parse_sarif(raw: str | bytes) -> SarifReport:
    report = _validate(SarifReport, raw, "sarif report")
    if not report.runs:
        raise MalformedReportError("invalid sarif report: no runs")
    return report


def load_json_document(raw: str | bytes) -> Any:
    """Plain ``json.loads`` with the decode error mapped into our taxonomy."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedReportError(f"report is not valid JSON: {exc}") from exc
