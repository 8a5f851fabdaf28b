"""crm-backup: module-based backup and restore for a Supabase-hosted CRM.

Usage:
    from crm_backup import BackupService, build_service, get_active_profile
    from crm_backup import CreateBackupRequest, RestoreRequest

    name, profile, settings = get_active_profile()
    service = build_service(profile, settings)
    response = await service.create_backup(token, CreateBackupRequest())
"""

from crm_backup.backup.models import (
    CreateBackupRequest,
    ListBackupsRequest,
    RestoreRequest,
)
from crm_backup.errors import (
    ArchiveError,
    AuthError,
    BackupError,
    ExtractionError,
    RestoreTableError,
    StorageError,
    ValidationError,
)
from crm_backup.factory import build_service, get_active_profile
from crm_backup.service import BackupService

__version__ = "0.1.0"

__all__ = [
    "BackupService",
    "build_service",
    "get_active_profile",
    "CreateBackupRequest",
    "ListBackupsRequest",
    "RestoreRequest",
    "BackupError",
    "AuthError",
    "ValidationError",
    "ExtractionError",
    "ArchiveError",
    "RestoreTableError",
    "StorageError",
]
