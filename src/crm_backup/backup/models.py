"""Pydantic models for bundles, jobs, summaries and service requests.

Wire-facing models serialize with camelCase aliases (``createdAt``,
``includeModules``) to match the bundle artifact and the service
responses; Python code uses the snake_case field names.

Usage:
    from crm_backup.backup.models import Bundle, BundleMeta

    bundle = Bundle(
        meta=BundleMeta(version="1.0.0", created_at="2026-01-01T00:00:00+00:00",
                        created_by="admin@example.com",
                        include_modules=["leads"], include_files=False),
        tables={"leads": [{"id": "l1"}]},
    )
    payload = bundle.model_dump(by_alias=True, exclude_none=True)
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


JobStatus = Literal["running", "success", "failed"]
RestoreMode = Literal["merge", "replace"]


class WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump with camelCase keys, the form callers and artifacts use."""
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# Registry
# ============================================================================


class ModuleDefinition(BaseModel):
    """A named grouping of tables exposed as one unit of selection."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    description: str = ""
    tables: tuple[str, ...]


# ============================================================================
# Bundle
# ============================================================================


class BundleMeta(WireModel):
    """Bundle metadata block."""

    version: str
    created_at: str
    created_by: str | None = None
    include_modules: list[str] = Field(default_factory=list)
    include_files: bool = False


class ManifestEntry(WireModel):
    """One attachment relocation record.

    ``copied`` is the success marker; failed copies also carry ``error``.
    """

    original_bucket: str
    original_path: str
    backup_path: str
    copied: bool = False
    error: str | None = None


class BundleFiles(WireModel):
    manifest: list[ManifestEntry] = Field(default_factory=list)


class Bundle(WireModel):
    """The portable snapshot: metadata, per-table rows, optional manifest."""

    meta: BundleMeta
    tables: dict[str, list[dict[str, Any]]]
    files: BundleFiles | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# ============================================================================
# Summaries
# ============================================================================


class ArtifactRef(WireModel):
    path: str
    url: str | None = None


class BackupArtifacts(WireModel):
    structured: ArtifactRef
    tabular: ArtifactRef


class BackupResultSummary(WireModel):
    """Persisted summary of a backup job."""

    counts: dict[str, int] = Field(default_factory=dict)
    include_modules: list[str] = Field(default_factory=list)
    include_files: bool = False
    generated_at: str | None = None
    files_copied: int = 0
    files_failed: int = 0
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class TableRestoreResult(WireModel):
    table: str
    rows: int
    action: str


class FileRestoreResult(WireModel):
    restored: int = 0
    skipped: int = 0


class RestoreSummary(WireModel):
    """Persisted summary of a restore job."""

    mode: RestoreMode
    include_modules: list[str] = Field(default_factory=list)
    tables_processed: list[TableRestoreResult] = Field(default_factory=list)
    file_restore: FileRestoreResult | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


# ============================================================================
# Job records
# ============================================================================


class BackupJob(BaseModel):
    """Row of the ``crm_backups`` tracking table."""

    id: str
    created_at: str | None = None
    created_by: str | None = None
    status: JobStatus = "running"
    include_modules: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=list)
    json_file_path: str | None = None
    xlsx_file_path: str | None = None
    result_summary: dict[str, Any] | None = None


class RestoreJob(BaseModel):
    """Row of the ``crm_restores`` tracking table."""

    id: str
    created_at: str | None = None
    created_by: str | None = None
    status: JobStatus = "running"
    mode: RestoreMode = "merge"
    include_modules: list[str] = Field(default_factory=list)
    source_backup_id: str | None = None
    source_file_path: str | None = None
    restore_files: bool = False
    result_summary: dict[str, Any] | None = None


# ============================================================================
# Service requests / responses
# ============================================================================


class CreateBackupRequest(WireModel):
    include_modules: list[str] | None = None
    include_files: bool = False


class CreateBackupResponse(WireModel):
    success: bool = True
    backup_id: str
    artifacts: BackupArtifacts
    result_summary: BackupResultSummary


class ListBackupsRequest(WireModel):
    limit: int | None = None


class BackupListItem(WireModel):
    id: str
    created_at: str | None = None
    created_by: str | None = None
    status: JobStatus
    include_modules: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=list)
    result_summary: dict[str, Any] | None = None
    structured_url: str | None = None
    tabular_url: str | None = None


class ListBackupsResponse(WireModel):
    success: bool = True
    backups: list[BackupListItem] = Field(default_factory=list)


class RestoreRequest(WireModel):
    mode: RestoreMode
    include_modules: list[str] | None = None
    source_backup_id: str | None = None
    source_file_path: str | None = None
    restore_files: bool = False


class RestoreResponse(WireModel):
    success: bool = True
    restore_id: str
    summary: RestoreSummary
