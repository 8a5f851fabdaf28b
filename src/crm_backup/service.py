"""Backup service: the authorized entry points.

``BackupService`` exposes the create / list / restore operations (plus
bundle upload) behind a single admin guard.  Requests and responses use
the camelCase wire models from ``crm_backup.backup.models``.

Usage:
    from crm_backup.factory import build_service
    from crm_backup.backup.models import CreateBackupRequest

    service = build_service(profile, settings)
    response = await service.create_backup(
        token, CreateBackupRequest(include_modules=["leads"], include_files=True)
    )
    print(response.to_wire())
    await service.close()
"""

import logging
import uuid
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from crm_backup.adapters.base import DatabaseClient, StorageClient
from crm_backup.auth import Actor, Authorizer, admin_required
from crm_backup.backup.archiver import create_backup
from crm_backup.backup.jobs import JobTracker
from crm_backup.backup.models import (
    CreateBackupRequest,
    CreateBackupResponse,
    ListBackupsRequest,
    ListBackupsResponse,
    RestoreRequest,
    RestoreResponse,
)
from crm_backup.backup.registry import all_module_keys, unknown_modules
from crm_backup.backup.restore import parse_bundle, restore_backup
from crm_backup.config.models import BackupSettings
from crm_backup.errors import ArchiveError, StorageError, ValidationError

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], payload: dict[str, Any] | None) -> RequestT:
    """Build a request model from a camelCase payload.

    Raises:
        ValidationError: If the payload does not fit the model (e.g. an
            unknown restore mode).
    """
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid request: {e}") from e


def select_modules(include_modules: list[str] | None) -> list[str]:
    """Validated module selection; empty or missing means every module.

    Raises:
        ValidationError: If any key is not a registered module.
    """
    if not include_modules:
        return all_module_keys()
    unknown = unknown_modules(include_modules)
    if unknown:
        raise ValidationError(f"Unknown modules: {', '.join(unknown)}")
    return list(dict.fromkeys(include_modules))


class BackupService:
    """Authorized backup/restore operations over one datastore and storage.

    Args:
        adapter: Datastore holding CRM tables and the job tables.
        storage: Object storage for artifacts and attachments.
        authorizer: Caller verification.
        settings: Engine settings.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        storage: StorageClient,
        authorizer: Authorizer,
        settings: BackupSettings,
    ) -> None:
        self.adapter = adapter
        self.storage = storage
        self.authorizer = authorizer
        self.settings = settings
        self.jobs = JobTracker(
            adapter,
            storage,
            backup_bucket=settings.backup_bucket,
            signed_url_ttl=settings.signed_url_ttl,
        )

    @admin_required
    async def create_backup(
        self, actor: Actor, request: CreateBackupRequest
    ) -> CreateBackupResponse:
        modules = select_modules(request.include_modules)
        return await create_backup(
            self.adapter,
            self.storage,
            self.jobs,
            self.settings,
            include_modules=modules,
            include_files=request.include_files,
            created_by=actor.identity,
        )

    @admin_required
    async def list_backups(
        self, actor: Actor, request: ListBackupsRequest | None = None
    ) -> ListBackupsResponse:
        requested = request.limit if request and request.limit else self.settings.list_default_limit
        limit = max(1, min(requested, self.settings.list_max_limit))
        backups = await self.jobs.list_backups(limit)
        return ListBackupsResponse(backups=backups)

    @admin_required
    async def restore(self, actor: Actor, request: RestoreRequest) -> RestoreResponse:
        if not request.source_backup_id and not request.source_file_path:
            raise ValidationError("Missing source backup JSON")
        modules = select_modules(request.include_modules)
        return await restore_backup(
            self.adapter,
            self.storage,
            self.jobs,
            self.settings,
            mode=request.mode,
            include_modules=modules,
            source_backup_id=request.source_backup_id,
            source_file_path=request.source_file_path,
            restore_files=request.restore_files,
            created_by=actor.identity,
        )

    @admin_required
    async def upload_bundle(self, actor: Actor, local_file: str | Path) -> str:
        """Store a local bundle JSON in the backup bucket for restoring.

        The file is validated before upload.

        Returns:
            The storage path, usable as ``source_file_path``.

        Raises:
            ValidationError: The file is missing or not a valid bundle.
            ArchiveError: The upload failed.
        """
        path = Path(local_file)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise ValidationError(f"Backup file not found: {path}") from e
        parse_bundle(data)

        storage_path = f"uploads/{uuid.uuid4()}-{path.name}"
        try:
            await self.storage.upload(
                self.settings.backup_bucket,
                storage_path,
                data,
                "application/json",
                upsert=True,
            )
        except StorageError as e:
            raise ArchiveError(f"Failed to upload {path.name}: {e}") from e

        logger.info(f"{actor.identity} uploaded bundle {storage_path}")
        return storage_path

    async def close(self) -> None:
        await self.adapter.close()
        await self.storage.close()
