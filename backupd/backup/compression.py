"""
Archivers that turn a source folder into a single backup file.

Supports multiple formats:
- zip: Deflate compressed zip
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
"""

import os
import tarfile
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from backupd.config import CompressionLevel


TIMESTAMP_FORMAT = '%d-%m-%Y-%H-%M-%S'


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


@dataclass(frozen=True)
class ArchiveFile:
    """A backup archive produced by one cycle."""

    path: str
    created_at: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class Archiver(ABC):
    """
    Compresses a directory into one archive file.

    Implementations write exactly one file at ``dest_path``. On failure the
    partial file is removed before ArchiveError is raised, so callers never
    have to clean up after a failed archive.
    """

    extension = ''

    def archive(self, source_dir: str, dest_path: str,
                compression_level: CompressionLevel) -> ArchiveFile:
        """
        Create an archive of ``source_dir`` at ``dest_path``.

        Args:
            source_dir: Directory to archive (stored with its own name as root)
            dest_path: Full path of the archive to create
            compression_level: Compression effort

        Returns:
            ArchiveFile describing the created archive

        Raises:
            ArchiveError: If the source cannot be read or the archive cannot be written
        """
        source = Path(source_dir)
        if not source.is_dir():
            raise ArchiveError(f"Source is not a directory: {source_dir}")
        if os.path.exists(dest_path):
            raise ArchiveError(f"Archive already exists: {dest_path}")

        try:
            self._write(source, dest_path, compression_level)
            size = os.path.getsize(dest_path)
        except Exception as e:
            # Clean up partial archive on failure
            if os.path.exists(dest_path):
                try:
                    os.remove(dest_path)
                except OSError:
                    pass
            raise ArchiveError(f"Failed to create archive {dest_path}: {e}") from e

        return ArchiveFile(
            path=str(dest_path),
            created_at=datetime.fromtimestamp(os.path.getmtime(dest_path)),
            size_bytes=size,
        )

    @abstractmethod
    def _write(self, source: Path, dest_path: str, compression_level: CompressionLevel):
        """Write the archive; any exception aborts and triggers cleanup."""

    def _is_backup_output(self, path: Path, dest_path: str) -> bool:
        """
        Check whether path is the archive being written or a sibling archive.

        Matters when the target folder lies inside the source folder: the
        archive in progress and the rotated archives next to it are never
        added to a new archive.
        """
        dest = Path(dest_path).resolve()
        resolved = path.resolve()
        if resolved == dest:
            return True
        return (
            resolved.parent == dest.parent
            and resolved.is_file()
            and has_archive_extension(resolved.name, self.extension)
        )


class ZipArchiver(Archiver):
    """Deflate compressed ZIP archives."""

    extension = 'zip'

    def _write(self, source: Path, dest_path: str, compression_level: CompressionLevel):
        with zipfile.ZipFile(
            dest_path, 'x', zipfile.ZIP_DEFLATED,
            compresslevel=compression_level.codec_level
        ) as zipf:
            zipf.write(source, source.name)
            for item in sorted(source.rglob('*')):
                if self._is_backup_output(item, dest_path):
                    continue
                # Entries are relative to the parent so the folder is the root
                zipf.write(item, item.relative_to(source.parent))


class TarArchiver(Archiver):
    """TAR archives with gzip, bzip2 or xz compression."""

    _modes = {
        'tar.gz': 'x:gz',
        'tar.bz2': 'x:bz2',
        'tar.xz': 'x:xz',
    }

    def __init__(self, compression_format: str = 'tar.gz'):
        if compression_format not in self._modes:
            raise ValueError(
                f"Invalid tar format: {compression_format}. "
                f"Valid options: {list(self._modes.keys())}"
            )
        self.compression_format = compression_format
        self.extension = compression_format

    def _write(self, source: Path, dest_path: str, compression_level: CompressionLevel):
        mode = self._modes[self.compression_format]
        level = compression_level.codec_level

        # xz takes a preset, gzip and bzip2 take compresslevel
        if self.compression_format == 'tar.xz':
            options = {'preset': level}
        else:
            options = {'compresslevel': level}

        def skip_backups(tarinfo):
            if self._is_backup_output(source.parent / tarinfo.name, dest_path):
                return None
            return tarinfo

        with tarfile.open(dest_path, mode, **options) as tar:
            tar.add(source, arcname=source.name, recursive=True, filter=skip_backups)


def create_archiver(archive_format: str) -> Archiver:
    """
    Factory function to create the archiver for a format.

    Args:
        archive_format: 'zip', 'tar.gz', 'tar.bz2' or 'tar.xz'

    Returns:
        Archiver instance

    Raises:
        ValueError: If archive_format is invalid
    """
    if archive_format == 'zip':
        return ZipArchiver()
    elif archive_format in TarArchiver._modes:
        return TarArchiver(archive_format)
    else:
        raise ValueError(f"Invalid archive format: {archive_format}")


def generate_archive_filename(source_dir: str, extension: str, now: datetime = None) -> str:
    """
    Generate the archive filename for a source folder.

    Format: {folder_name}-{DD-MM-YYYY-HH-mm-ss}.{ext}

    Args:
        source_dir: Folder being backed up
        extension: Archive extension without leading dot
        now: Timestamp to use (default: current local time)

    Returns:
        Filename (without path)
    """
    now = now or datetime.now()
    folder_name = Path(source_dir).resolve().name
    return f"{folder_name}-{now.strftime(TIMESTAMP_FORMAT)}.{extension}"


def unique_archive_path(target_dir: str, filename: str, extension: str) -> str:
    """
    Return a path in target_dir for filename that does not exist yet.

    Two cycles within the same second get a ``-1``, ``-2``, ... suffix.
    """
    path = os.path.join(target_dir, filename)
    if not os.path.exists(path):
        return path

    base = filename[:-(len(extension) + 1)]
    sequence = 1
    while True:
        path = os.path.join(target_dir, f"{base}-{sequence}.{extension}")
        if not os.path.exists(path):
            return path
        sequence += 1


def has_archive_extension(filename: str, extension: str) -> bool:
    """Case-insensitive check that filename ends in ``.extension``."""
    return filename.lower().endswith('.' + extension.lower())
