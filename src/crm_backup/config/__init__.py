"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from crm_backup.config import load_backup_config, BackupProfile, BackupSettings
"""

from crm_backup.config.loader import load_backup_config
from crm_backup.config.models import BackupConfig, BackupProfile, BackupSettings

__all__ = ["load_backup_config", "BackupConfig", "BackupProfile", "BackupSettings"]
