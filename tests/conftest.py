"""
Shared pytest fixtures for backupd tests.

This module provides fixtures for:
- Source, target and secondary folders
- BackupConfig and BackupContext instances
- Fake archivers for call tracking and blocking cycles
- A running BackupOrchestrator that is always stopped afterwards
"""

import pytest

from backupd.config import BackupConfig, CompressionLevel, CONFIG_KEYS, ENV_PREFIX
from backupd.backup.executor import create_context
from backupd.scheduler import BackupOrchestrator

from tests.helpers import RecordingArchiver


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove BACKUPD_* overrides inherited from the shell."""
    for key in CONFIG_KEYS:
        monkeypatch.delenv(ENV_PREFIX + key.upper(), raising=False)


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a source folder named ``data`` with nested files.

    Creates:
    - data/file1.txt
    - data/file2.log
    - data/nested/file3.txt
    """
    source = tmp_path / 'data'
    source.mkdir()
    (source / 'file1.txt').write_text('Test content 1')
    (source / 'file2.log').write_text('Test log content')

    nested = source / 'nested'
    nested.mkdir()
    (nested / 'file3.txt').write_text('Nested test content')

    return source


@pytest.fixture
def target_dir(tmp_path):
    """Backup folder path (not created)."""
    return tmp_path / 'backups'


@pytest.fixture
def secondary_dir(tmp_path):
    """Secondary backup folder path (not created)."""
    return tmp_path / 'secondary'


@pytest.fixture
def backup_config(source_dir, target_dir):
    """BackupConfig with mirroring disabled."""
    return BackupConfig(
        interval_hours=1,
        retention_hours=1,
        source_dir=str(source_dir),
        target_dir=str(target_dir),
        secondary_dir='',
        compression_level=CompressionLevel.MAXIMUM,
        archive_format='zip'
    )


@pytest.fixture
def mirrored_config(backup_config, secondary_dir):
    """BackupConfig with a secondary folder."""
    return BackupConfig(
        interval_hours=backup_config.interval_hours,
        retention_hours=backup_config.retention_hours,
        source_dir=backup_config.source_dir,
        target_dir=backup_config.target_dir,
        secondary_dir=str(secondary_dir),
        compression_level=backup_config.compression_level,
        archive_format=backup_config.archive_format
    )


@pytest.fixture
def backup_context(backup_config):
    """Real context: zip archiver, retention and mirror."""
    return create_context(backup_config)


@pytest.fixture
def recording_archiver():
    return RecordingArchiver()


@pytest.fixture
def blocking_archiver():
    archiver = RecordingArchiver(block=True)
    yield archiver
    archiver.release.set()


@pytest.fixture
def orchestrator_factory(backup_config):
    """
    Build orchestrators around a given archiver.

    Every orchestrator built is stopped after the test.
    """
    created = []

    def _factory(archiver=None, config=None):
        context = create_context(config or backup_config)
        if archiver is not None:
            context.archiver = archiver
        orchestrator = BackupOrchestrator(context)
        created.append(orchestrator)
        return orchestrator

    yield _factory

    for orchestrator in created:
        archiver = orchestrator.context.archiver
        if isinstance(archiver, RecordingArchiver):
            archiver.release.set()
        orchestrator.stop(timeout=5)

