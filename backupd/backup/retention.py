"""
Retention policy enforcement for backups.

Deletes archives in the target folder once they are older than the
configured number of hours. The folder listing is the only record of which
archives exist.
"""

import os
import time
import logging
from datetime import datetime
from typing import List

from .compression import has_archive_extension


logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 60 * 60


class RetentionDeleteError(Exception):
    """Raised when a single expired archive cannot be deleted."""
    pass


class RetentionManager:
    """
    Prunes expired archives from a backup folder.

    Only immediate entries are considered: files (not folders) whose name
    ends in the archive extension.
    """

    def __init__(self, extension: str = 'zip'):
        """
        Initialize retention manager.

        Args:
            extension: Archive extension without leading dot
        """
        self.extension = extension
        self.logs = []
        self.errors: List[RetentionDeleteError] = []

    def prune(self, directory: str, max_age_hours: int, now: float = None) -> int:
        """
        Delete archives older than max_age_hours.

        Age is counted in whole hours (integer division of seconds) and must
        strictly exceed max_age_hours. A file that cannot be deleted is
        logged and skipped.

        Args:
            directory: Folder holding the archives
            max_age_hours: Retention age in hours
            now: Current time as a Unix timestamp (default: time.time())

        Returns:
            Number of archives actually deleted

        Raises:
            OSError: If the folder exists but cannot be listed
        """
        now = time.time() if now is None else now
        self.logs = []
        self.errors = []
        self._log(f"Deleting backups older than {max_age_hours} hours in {directory}")

        if not os.path.isdir(directory):
            self._log(f"Backup folder does not exist, nothing to delete: {directory}")
            return 0

        deleted_count = 0
        expired = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if not has_archive_extension(entry.name, self.extension):
                    continue
                try:
                    if not entry.is_file():
                        continue
                    age_hours = self._age_hours(entry.stat().st_mtime, now)
                except OSError as e:
                    # Removed or unreadable since the listing
                    self._log(f"Skipping {entry.name}: {e}", level=logging.WARNING)
                    continue
                if age_hours > max_age_hours:
                    expired.append(entry)

        for entry in expired:
            try:
                self._delete(entry.path)
                deleted_count += 1
                self._log(f"Deleted {entry.name}")
            except RetentionDeleteError as e:
                self.errors.append(e)
                self._log(str(e), level=logging.WARNING)

        self._log(f"Done! {deleted_count} deleted")
        return deleted_count

    def _age_hours(self, mtime: float, now: float) -> int:
        return int(now - mtime) // SECONDS_PER_HOUR

    def _delete(self, path: str):
        try:
            os.remove(path)
        except OSError as e:
            raise RetentionDeleteError(f"Failed to delete old backup {path}: {e}") from e

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
