"""Tests for the backup archiver."""

import json
from io import BytesIO
from unittest.mock import AsyncMock

import openpyxl
import pytest

from crm_backup.backup.archiver import BUNDLE_VERSION, artifact_paths, create_backup
from crm_backup.backup.jobs import BACKUPS_TABLE
from crm_backup.backup.registry import MODULES_BY_KEY, all_module_keys
from crm_backup.errors import ArchiveError, ExtractionError


async def _backup(db, storage, jobs, settings, modules, include_files=False):
    return await create_backup(
        db,
        storage,
        jobs,
        settings,
        include_modules=modules,
        include_files=include_files,
        created_by="admin@example.com",
    )


def _bundle(storage, settings, job_id: str) -> dict:
    json_path, _ = artifact_paths(job_id)
    return json.loads(storage.objects[(settings.backup_bucket, json_path)].data)


def _job_row(db, job_id: str) -> dict:
    return next(r for r in db.rows(BACKUPS_TABLE) if r["id"] == job_id)


class TestCreateBackup:
    async def test_counts_only_selected_module_tables(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["tasks"])

        counts = response.result_summary.counts
        assert set(counts) == set(MODULES_BY_KEY["tasks"].tables)
        assert counts["tasks"] == 2
        assert counts["task_subtasks"] == 1
        assert counts["task_completion_templates"] == 0

    async def test_artifacts_uploaded_under_job_prefix(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["leads"])

        job_id = response.backup_id
        assert response.artifacts.structured.path == f"backups/{job_id}/backup.json"
        assert response.artifacts.tabular.path == f"backups/{job_id}/backup.xlsx"
        assert storage.paths(settings.backup_bucket) == {
            f"backups/{job_id}/backup.json",
            f"backups/{job_id}/backup.xlsx",
        }
        assert response.artifacts.structured.url is not None
        assert response.artifacts.tabular.url is not None

    async def test_bundle_document(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["leads"])

        bundle = _bundle(storage, settings, response.backup_id)
        assert bundle["meta"]["version"] == BUNDLE_VERSION
        assert bundle["meta"]["createdBy"] == "admin@example.com"
        assert bundle["meta"]["includeModules"] == ["leads"]
        assert bundle["meta"]["includeFiles"] is False
        assert bundle["meta"]["createdAt"] == response.result_summary.generated_at
        assert bundle["tables"]["leads"] == db.rows("leads")
        assert "files" not in bundle

    async def test_workbook_matches_bundle(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["leads"])

        _, xlsx_path = artifact_paths(response.backup_id)
        wb = openpyxl.load_workbook(BytesIO(storage.objects[(settings.backup_bucket, xlsx_path)].data))
        assert wb.sheetnames == ["README", "leads", "activity_log"]
        assert wb["leads"].max_row == 1 + len(db.rows("leads"))

    async def test_job_marked_success(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["tasks"])

        row = _job_row(db, response.backup_id)
        assert row["status"] == "success"
        assert row["json_file_path"] == response.artifacts.structured.path
        assert row["result_summary"]["counts"]["tasks"] == 2
        assert row["result_summary"]["includeModules"] == ["tasks"]

    async def test_all_modules(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, all_module_keys())

        bundle = _bundle(storage, settings, response.backup_id)
        for table, rows in db.tables.items():
            if table != BACKUPS_TABLE:
                assert bundle["tables"][table] == rows


class TestAttachmentCopies:
    async def test_manifest_has_each_referenced_path_once(self, db, storage, jobs, settings):
        db.rows("entity_attachments").append(
            {"id": "e3", "entity_id": "l1", "file_path": "leads/l1/contract.pdf"}
        )

        response = await _backup(db, storage, jobs, settings, ["attachments_files"], include_files=True)

        manifest = _bundle(storage, settings, response.backup_id)["files"]["manifest"]
        paths = [e["originalPath"] for e in manifest]
        assert sorted(paths) == ["leads/l1/contract.pdf", "leads/l2/photo.png", "quotes/q1.pdf"]
        assert all(e["copied"] for e in manifest)
        assert response.result_summary.files_copied == 3
        for path in paths:
            copy_path = f"backups/{response.backup_id}/files/{path}"
            assert (settings.backup_bucket, copy_path) in storage.objects

    async def test_missing_file_does_not_abort(self, db, storage, jobs, settings):
        del storage.objects[(settings.attachments_bucket, "quotes/q1.pdf")]

        response = await _backup(db, storage, jobs, settings, ["attachments_files"], include_files=True)

        summary = response.result_summary
        assert summary.files_copied == 2
        assert summary.files_failed == 1
        assert any("quotes/q1.pdf" in w for w in summary.warnings)
        manifest = _bundle(storage, settings, response.backup_id)["files"]["manifest"]
        failed = [e for e in manifest if not e["copied"]]
        assert failed[0]["originalPath"] == "quotes/q1.pdf"
        assert failed[0]["error"]
        assert _job_row(db, response.backup_id)["status"] == "success"

    async def test_files_not_copied_unless_requested(self, db, storage, jobs, settings):
        response = await _backup(db, storage, jobs, settings, ["attachments_files"])

        assert not any("/files/" in p for p in storage.paths(settings.backup_bucket))
        assert response.result_summary.files_copied == 0


class TestFailures:
    async def test_extraction_failure_marks_job_failed(self, db, storage, jobs, settings):
        db.fail_select["task_subtasks"] = RuntimeError("statement timeout")

        with pytest.raises(ExtractionError, match="task_subtasks"):
            await _backup(db, storage, jobs, settings, ["tasks"])

        row = db.rows(BACKUPS_TABLE)[0]
        assert row["status"] == "failed"
        assert "statement timeout" in row["result_summary"]["error"]
        assert row["result_summary"]["counts"] == {"tasks": 2}
        assert storage.paths(settings.backup_bucket) == set()

    async def test_upload_failure_marks_job_failed(self, db, storage, jobs, settings):
        storage.fail_upload.add("backups/job-1/backup.xlsx")

        with pytest.raises(ArchiveError):
            await _backup(db, storage, jobs, settings, ["leads"])

        row = _job_row(db, "job-1")
        assert row["status"] == "failed"
        assert "backup.xlsx" in row["result_summary"]["error"]
        assert row.get("json_file_path") is None

    async def test_signing_failure_is_not_fatal(self, db, storage, jobs, settings):
        storage.fail_sign = True

        response = await _backup(db, storage, jobs, settings, ["leads"])

        assert response.artifacts.structured.url is None
        assert _job_row(db, response.backup_id)["status"] == "success"

    async def test_failure_recording_error_keeps_original(self, db, storage, jobs, settings):
        db.fail_select["leads"] = RuntimeError("statement timeout")
        jobs.fail_backup = AsyncMock(side_effect=RuntimeError("datastore down"))

        with pytest.raises(ExtractionError, match="statement timeout"):
            await _backup(db, storage, jobs, settings, ["leads"])

        jobs.fail_backup.assert_awaited_once()


class TestWorkbookText:
    async def test_control_characters_do_not_fail_backup(self, db, storage, jobs, settings):
        db.rows("leads")[0]["notes"] = "pasted from pdf\x0bline two"

        response = await _backup(db, storage, jobs, settings, ["leads"])

        assert _job_row(db, response.backup_id)["status"] == "success"
        assert _bundle(storage, settings, response.backup_id)["tables"]["leads"][0]["notes"] == (
            "pasted from pdf\x0bline two"
        )
        _, xlsx_path = artifact_paths(response.backup_id)
        wb = openpyxl.load_workbook(BytesIO(storage.objects[(settings.backup_bucket, xlsx_path)].data))
        assert wb["leads"]["C2"].value == "pasted from pdfline two"
