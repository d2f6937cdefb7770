"""
Configuration loading for backupd.

Settings come from a key=value file (``config.txt`` by default). Every key
can be overridden with a ``BACKUPD_<KEY>`` environment variable.
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict

from dotenv import dotenv_values


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.txt'
ENV_PREFIX = 'BACKUPD_'

CONFIG_KEYS = (
    'backup_hours',
    'keep_old_hours',
    'source_folder',
    'target_folder',
    'secondary_target',
    'compression_level',
    'archive_format',
)

DEFAULT_CONFIG_TEMPLATE = """\
# backupd configuration
#
# Hours between scheduled backups (positive integer)
backup_hours=
# Backups older than this many hours are deleted (positive integer)
keep_old_hours=
# Folder to back up
source_folder=
# Folder where backup archives are stored (created if missing)
target_folder=
# Optional second folder that always holds a copy of the newest backup
secondary_target=
# fast, balanced or maximum
compression_level=maximum
# zip, tar.gz, tar.bz2 or tar.xz
archive_format=zip
"""

ARCHIVE_EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
}


class ConfigError(Exception):
    """Raised when the configuration is missing or invalid."""
    pass


class CompressionLevel(Enum):
    """Compression effort, mapped onto the codec's numeric level."""

    FAST = 'fast'
    BALANCED = 'balanced'
    MAXIMUM = 'maximum'

    @property
    def codec_level(self) -> int:
        return {'fast': 1, 'balanced': 6, 'maximum': 9}[self.value]


@dataclass(frozen=True)
class BackupConfig:
    """Validated, immutable backup settings."""

    interval_hours: int
    retention_hours: int
    source_dir: str
    target_dir: str
    secondary_dir: Optional[str] = None
    compression_level: CompressionLevel = CompressionLevel.MAXIMUM
    archive_format: str = 'zip'

    @property
    def mirror_enabled(self) -> bool:
        return bool(self.secondary_dir and self.secondary_dir.strip())

    @property
    def archive_extension(self) -> str:
        return ARCHIVE_EXTENSIONS[self.archive_format]


def export_default_config(path: str):
    """
    Write the empty configuration template to ``path``.

    Args:
        path: Destination file

    Raises:
        ConfigError: If the template cannot be written
    """
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(DEFAULT_CONFIG_TEMPLATE)
    except OSError as e:
        raise ConfigError(f"Failed to write default config to {path}: {e}")


def read_config_values(path: str) -> Dict[str, str]:
    """
    Read raw values from the config file, applying environment overrides.

    A missing file is replaced by the default template first.
    """
    if not os.path.exists(path):
        logger.warning(f"No {path} found, creating an empty config...")
        export_default_config(path)

    values = {
        key: (value or '').strip()
        for key, value in dotenv_values(path).items()
    }

    for key in CONFIG_KEYS:
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value is not None:
            values[key] = env_value.strip()

    return values


def _positive_int(values: Dict[str, str], key: str) -> int:
    raw = values.get(key, '')
    try:
        number = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a positive integer (got {raw!r})")
    if number < 1:
        raise ConfigError(f"{key} must be a positive integer (got {number})")
    return number


def _required(values: Dict[str, str], key: str) -> str:
    value = values.get(key, '')
    if not value:
        raise ConfigError(f"{key} must not be empty")
    return value


def parse_config(values: Dict[str, str]) -> BackupConfig:
    """
    Validate raw key/value pairs and build a BackupConfig.

    Args:
        values: Raw string values keyed by config key

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If any value is missing or invalid
    """
    interval_hours = _positive_int(values, 'backup_hours')
    retention_hours = _positive_int(values, 'keep_old_hours')
    source_dir = _required(values, 'source_folder')
    target_dir = _required(values, 'target_folder')

    level_name = (values.get('compression_level') or 'maximum').lower()
    try:
        compression_level = CompressionLevel(level_name)
    except ValueError:
        raise ConfigError(
            f"compression_level must be one of "
            f"{[level.value for level in CompressionLevel]} (got {level_name!r})"
        )

    archive_format = (values.get('archive_format') or 'zip').lower()
    if archive_format not in ARCHIVE_EXTENSIONS:
        raise ConfigError(
            f"archive_format must be one of {list(ARCHIVE_EXTENSIONS)} "
            f"(got {archive_format!r})"
        )

    secondary_dir = values.get('secondary_target') or None

    return BackupConfig(
        interval_hours=interval_hours,
        retention_hours=retention_hours,
        source_dir=source_dir,
        target_dir=target_dir,
        secondary_dir=secondary_dir,
        compression_level=compression_level,
        archive_format=archive_format,
    )


def load_config(path: str = None) -> BackupConfig:
    """
    Load and validate the configuration file.

    Args:
        path: Config file path (default: BACKUPD_CONFIG or config.txt)

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If the file is unusable or any value is invalid
    """
    path = path or os.environ.get('BACKUPD_CONFIG') or DEFAULT_CONFIG_PATH
    values = read_config_values(path)
    config = parse_config(values)
    logger.info(f"Config loaded: {config}")
    return config
