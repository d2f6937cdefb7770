"""
Unit tests for retention policy management (backupd/backup/retention.py).

Tests RetentionManager for cleaning up old backups. The folder is seeded
directly since the listing is the only record of existing archives.
"""

import contextlib
import os
import time
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from backupd.backup.retention import RetentionManager, RetentionDeleteError
from tests.helpers import seed_archive


HOUR = 60 * 60
NOW = 1_700_000_000.0


class TestRetentionManager:
    """Test RetentionManager basic functionality."""

    def test_retention_manager_initialization(self):
        """Test RetentionManager initializes correctly."""
        manager = RetentionManager('zip')

        assert manager.extension == 'zip'
        assert manager.logs == []
        assert manager.errors == []

    def test_prune_missing_folder(self, tmp_path):
        """Test a folder that does not exist deletes nothing."""
        manager = RetentionManager('zip')

        assert manager.prune(str(tmp_path / 'missing'), 1) == 0

    def test_prune_empty_folder(self, tmp_path):
        manager = RetentionManager('zip')

        assert manager.prune(str(tmp_path), 1, now=NOW) == 0

    def test_prune_deletes_only_expired(self, tmp_path):
        """Test only archives strictly older than the retention age are deleted."""
        old = seed_archive(tmp_path, 'data-old.zip', 5 * HOUR, now=NOW)
        older = seed_archive(tmp_path, 'data-older.zip', 30 * HOUR, now=NOW)
        recent = seed_archive(tmp_path, 'data-recent.zip', 10 * 60, now=NOW)

        manager = RetentionManager('zip')
        deleted = manager.prune(str(tmp_path), 2, now=NOW)

        assert deleted == 2
        assert not os.path.exists(old)
        assert not os.path.exists(older)
        assert os.path.exists(recent)

    def test_prune_age_boundary_uses_whole_hours(self, tmp_path):
        """Test age is truncated to whole hours and must exceed the limit."""
        # 1h 59m 59s counts as 1 hour: kept with a 1 hour limit
        kept = seed_archive(tmp_path, 'kept.zip', 2 * HOUR - 1, now=NOW)
        # Exactly 2 hours: deleted
        expired = seed_archive(tmp_path, 'expired.zip', 2 * HOUR, now=NOW)

        deleted = RetentionManager('zip').prune(str(tmp_path), 1, now=NOW)

        assert deleted == 1
        assert os.path.exists(kept)
        assert not os.path.exists(expired)

    def test_prune_never_deletes_archive_at_retention_age(self, tmp_path):
        """Test archives exactly at the retention age survive."""
        at_limit = seed_archive(tmp_path, 'limit.zip', 3 * HOUR, now=NOW)

        assert RetentionManager('zip').prune(str(tmp_path), 3, now=NOW) == 0
        assert os.path.exists(at_limit)

    def test_prune_is_idempotent(self, tmp_path):
        """Test pruning twice deletes nothing the second time."""
        for index in range(3):
            seed_archive(tmp_path, f'old-{index}.zip', 10 * HOUR, now=NOW)
        seed_archive(tmp_path, 'new.zip', 0, now=NOW)

        manager = RetentionManager('zip')

        assert manager.prune(str(tmp_path), 1, now=NOW) == 3
        assert manager.prune(str(tmp_path), 1, now=NOW) == 0
        assert os.listdir(tmp_path) == ['new.zip']

    def test_prune_ignores_other_files_and_folders(self, tmp_path):
        """Test non-archives, subfolders and nested archives are left alone."""
        notes = seed_archive(tmp_path, 'notes.txt', 100 * HOUR, now=NOW)
        partial = seed_archive(tmp_path, 'data.zip.partial', 100 * HOUR, now=NOW)
        nested = seed_archive(tmp_path / 'archive.zip', 'inner.zip', 100 * HOUR, now=NOW)
        os.utime(tmp_path / 'archive.zip', (NOW - 100 * HOUR, NOW - 100 * HOUR))

        deleted = RetentionManager('zip').prune(str(tmp_path), 1, now=NOW)

        assert deleted == 0
        assert os.path.exists(notes)
        assert os.path.exists(partial)
        assert os.path.exists(nested)

    def test_prune_extension_is_case_insensitive(self, tmp_path):
        upper = seed_archive(tmp_path, 'DATA.ZIP', 10 * HOUR, now=NOW)

        assert RetentionManager('zip').prune(str(tmp_path), 1, now=NOW) == 1
        assert not os.path.exists(upper)

    def test_prune_uses_configured_extension(self, tmp_path):
        """Test a tar.gz manager leaves zip archives alone."""
        zip_archive = seed_archive(tmp_path, 'data.zip', 10 * HOUR, now=NOW)
        tar_archive = seed_archive(tmp_path, 'data.tar.gz', 10 * HOUR, now=NOW)

        assert RetentionManager('tar.gz').prune(str(tmp_path), 1, now=NOW) == 1
        assert os.path.exists(zip_archive)
        assert not os.path.exists(tar_archive)

    @freeze_time("2024-01-15 12:00:00")
    def test_prune_defaults_to_current_time(self, tmp_path):
        """Test prune measures age against time.time()."""
        now = time.time()
        old = seed_archive(tmp_path, 'old.zip', 25 * HOUR, now=now)
        recent = seed_archive(tmp_path, 'recent.zip', 23 * HOUR, now=now)

        deleted = RetentionManager('zip').prune(str(tmp_path), 24)

        assert deleted == 1
        assert not os.path.exists(old)
        assert os.path.exists(recent)


class TestRetentionDeleteFailures:
    """Test per-file deletion failures."""

    def test_failed_delete_is_skipped(self, tmp_path):
        """Test one undeletable archive does not stop the others."""
        first = seed_archive(tmp_path, 'a.zip', 10 * HOUR, now=NOW)
        locked = seed_archive(tmp_path, 'b.zip', 10 * HOUR, now=NOW)
        last = seed_archive(tmp_path, 'c.zip', 10 * HOUR, now=NOW)

        real_remove = os.remove

        def remove(path):
            if path == locked:
                raise PermissionError(13, "Permission denied", path)
            real_remove(path)

        manager = RetentionManager('zip')
        with patch('backupd.backup.retention.os.remove', side_effect=remove):
            deleted = manager.prune(str(tmp_path), 1, now=NOW)

        assert deleted == 2
        assert not os.path.exists(first)
        assert not os.path.exists(last)
        assert os.path.exists(locked)

        assert len(manager.errors) == 1
        assert isinstance(manager.errors[0], RetentionDeleteError)
        assert 'b.zip' in str(manager.errors[0])

    def test_archive_vanishing_during_prune_is_skipped(self, tmp_path):
        """Test an archive removed after the listing does not abort the prune."""
        expired = seed_archive(tmp_path, 'a.zip', 10 * HOUR, now=NOW)

        vanished = MagicMock()
        vanished.name = 'gone.zip'
        vanished.is_file.return_value = True
        vanished.stat.side_effect = FileNotFoundError(2, "No such file or directory")

        real_scandir = os.scandir

        @contextlib.contextmanager
        def scandir_with_vanished(path):
            with real_scandir(path) as entries:
                yield [vanished] + list(entries)

        manager = RetentionManager('zip')
        with patch('backupd.backup.retention.os.scandir', side_effect=scandir_with_vanished):
            deleted = manager.prune(str(tmp_path), 1, now=NOW)

        assert deleted == 1
        assert not os.path.exists(expired)
        assert any('Skipping gone.zip' in line for line in manager.logs)

    def test_errors_reset_between_runs(self, tmp_path):
        """Test errors and logs only describe the latest prune."""
        locked = seed_archive(tmp_path, 'locked.zip', 10 * HOUR, now=NOW)
        manager = RetentionManager('zip')

        with patch('backupd.backup.retention.os.remove', side_effect=OSError("busy")):
            assert manager.prune(str(tmp_path), 1, now=NOW) == 0
        assert len(manager.errors) == 1

        assert manager.prune(str(tmp_path), 1, now=NOW) == 1
        assert manager.errors == []
        assert not os.path.exists(locked)


class TestRetentionLogging:
    """Test RetentionManager log output."""

    def test_logs_deleted_files_and_count(self, tmp_path):
        seed_archive(tmp_path, 'data-old.zip', 10 * HOUR, now=NOW)

        manager = RetentionManager('zip')
        manager.prune(str(tmp_path), 1, now=NOW)

        assert any('Deleted data-old.zip' in line for line in manager.logs)
        assert manager.logs[-1].endswith('Done! 1 deleted')

    @pytest.mark.parametrize("max_age_hours", [1, 24])
    def test_logs_retention_age(self, tmp_path, max_age_hours):
        manager = RetentionManager('zip')
        manager.prune(str(tmp_path), max_age_hours, now=NOW)

        assert f'older than {max_age_hours} hours' in manager.logs[0]
