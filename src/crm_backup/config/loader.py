"""TOML configuration loader."""

import tomllib
from pathlib import Path

from crm_backup.config.models import BackupConfig, BackupProfile, BackupSettings


def load_backup_config(config_path: Path | None = None) -> BackupConfig:
    """Load backup configuration from a TOML file.

    Args:
        config_path: Path to the config file (default: ``./backup.toml``).

    Returns:
        BackupConfig with all profiles and engine settings.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        pydantic.ValidationError: If a profile or setting is malformed.

    Example:
        >>> config = load_backup_config(Path("backup.toml"))
        >>> config.settings.backup_bucket
        'crm-backups'
    """
    if config_path is None:
        config_path = Path.cwd() / "backup.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create backup.toml with at least one [profiles.<name>] table."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {
        name: BackupProfile(**profile_data)
        for name, profile_data in data.get("profiles", {}).items()
    }

    return BackupConfig(
        profiles=profiles,
        settings=BackupSettings(**data.get("backup", {})),
    )
