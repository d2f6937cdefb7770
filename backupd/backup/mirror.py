"""
Secondary backup handling.

Keeps a copy of the newest archive in a second folder. The folder holds at
most one archive: every older archive there is replaced by the new one.
"""

import os
import shutil
import logging
from datetime import datetime
from typing import Optional, Callable

from .compression import ArchiveFile, has_archive_extension


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.partial'


class MirrorError(Exception):
    """Raised when the secondary copy cannot be completed."""
    pass


class MirrorSync:
    """
    Replaces the archive in the secondary folder with the newest one.

    The new archive is copied under a temporary name first and old archives
    are only removed once the copy is complete, so a failed copy leaves the
    previous secondary backup in place.
    """

    def __init__(self, extension: str = 'zip'):
        """
        Initialize mirror handler.

        Args:
            extension: Archive extension without leading dot
        """
        self.extension = extension
        self.logs = []

    def sync(self, newest_archive: ArchiveFile, secondary_dir: str,
             shutdown_check: Optional[Callable[[], bool]] = None) -> Optional[str]:
        """
        Copy newest_archive into secondary_dir, removing older archives there.

        Args:
            newest_archive: Archive produced by the current cycle
            secondary_dir: Secondary backup folder (created if missing)
            shutdown_check: Optional function returning True when the process
                is shutting down; the copy is skipped in that case

        Returns:
            Path of the secondary copy, or None if skipped

        Raises:
            MirrorError: If the copy cannot be completed or an old archive
                cannot be removed
        """
        self.logs = []

        if shutdown_check and shutdown_check():
            self._log("Skipping secondary backup update due to shutdown")
            return None

        self._log("Updating secondary backup...")

        try:
            os.makedirs(secondary_dir, exist_ok=True)
        except OSError as e:
            raise MirrorError(f"Failed to create secondary folder {secondary_dir}: {e}") from e

        filename = newest_archive.name
        dest_path = os.path.join(secondary_dir, filename)
        partial_path = dest_path + PARTIAL_SUFFIX

        if os.path.exists(dest_path):
            raise MirrorError(f"Secondary backup already exists: {dest_path}")

        self._log("Copying backup...")
        try:
            shutil.copy2(newest_archive.path, partial_path)
        except (OSError, shutil.Error) as e:
            self._remove_quietly(partial_path)
            raise MirrorError(f"Failed to copy {filename} to {secondary_dir}: {e}") from e

        failed = self._delete_old_archives(secondary_dir, keep=filename)

        try:
            os.replace(partial_path, dest_path)
        except OSError as e:
            self._remove_quietly(partial_path)
            raise MirrorError(f"Failed to finalize secondary backup {dest_path}: {e}") from e

        if failed:
            raise MirrorError(
                f"Secondary backup updated but old archives could not be deleted: "
                f"{', '.join(failed)}"
            )

        self._log("Done!")
        return dest_path

    def _delete_old_archives(self, secondary_dir: str, keep: str) -> list:
        """
        Delete every archive in secondary_dir except keep; return names that failed.

        Leftover partial copies from interrupted syncs are deleted too, except
        the one for keep.
        """
        failed = []
        with os.scandir(secondary_dir) as entries:
            old = [
                entry for entry in entries
                if entry.is_file()
                and entry.name not in (keep, keep + PARTIAL_SUFFIX)
                and self._is_archive_or_partial(entry.name)
            ]

        for entry in old:
            try:
                os.remove(entry.path)
                self._log(f"Deleted old secondary backup: {entry.name}")
            except OSError as e:
                self._log(f"Failed to delete old secondary backup {entry.name}: {e}",
                          level=logging.WARNING)
                failed.append(entry.name)

        return failed

    def _is_archive_or_partial(self, name: str) -> bool:
        if name.lower().endswith(PARTIAL_SUFFIX):
            name = name[:-len(PARTIAL_SUFFIX)]
        return has_archive_extension(name, self.extension)

    def _remove_quietly(self, path: str):
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                self._log(f"Failed to remove partial copy {path}: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
