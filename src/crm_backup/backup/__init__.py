"""Backup and restore engine.

Usage:
    from crm_backup.backup import create_backup, restore_backup, validate_bundle
    from crm_backup.backup import resolve_tables, MODULES
"""

from crm_backup.backup.archiver import create_backup
from crm_backup.backup.jobs import JobTracker
from crm_backup.backup.models import Bundle, BundleMeta, ManifestEntry, ModuleDefinition
from crm_backup.backup.registry import MODULES, conflict_key, resolve_tables
from crm_backup.backup.restore import parse_bundle, restore_backup, validate_bundle

__all__ = [
    "MODULES",
    "ModuleDefinition",
    "Bundle",
    "BundleMeta",
    "ManifestEntry",
    "JobTracker",
    "conflict_key",
    "resolve_tables",
    "create_backup",
    "restore_backup",
    "parse_bundle",
    "validate_bundle",
]
