"""
Backup executor - runs one complete backup cycle.

Workflow:
1. Check the source folder is a directory
2. Create the target folder if missing
3. Create the compressed archive
4. Delete expired archives from the target folder
5. Update the secondary backup (if configured and not shutting down)
6. Release memory after the heavy I/O

Steps 1-3 abort the cycle on failure. Failures in steps 4 and 5 are
reported but the new archive is kept and the cycle counts as successful.
"""

import gc
import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Callable

from backupd.config import BackupConfig
from .compression import (
    Archiver,
    ArchiveFile,
    ArchiveError,
    create_archiver,
    generate_archive_filename,
    unique_archive_path,
)
from .retention import RetentionManager
from .mirror import MirrorSync, MirrorError


logger = logging.getLogger(__name__)


class SourceNotDirectoryError(Exception):
    """Raised when the source folder is missing or not a directory."""
    pass


@dataclass
class BackupContext:
    """Everything a cycle needs, built once at startup."""

    config: BackupConfig
    archiver: Archiver
    retention: RetentionManager
    mirror: MirrorSync


def create_context(config: BackupConfig) -> BackupContext:
    """
    Build the cycle collaborators for a configuration.

    Args:
        config: Validated BackupConfig

    Returns:
        BackupContext instance
    """
    extension = config.archive_extension
    return BackupContext(
        config=config,
        archiver=create_archiver(config.archive_format),
        retention=RetentionManager(extension),
        mirror=MirrorSync(extension),
    )


@dataclass
class CycleResult:
    """Outcome of one backup cycle. Not persisted."""

    success: bool = False
    archive: Optional[ArchiveFile] = None
    deleted_count: int = 0
    error: Optional[Exception] = None
    failed_step: Optional[str] = None
    retention_error: Optional[Exception] = None
    mirror_error: Optional[Exception] = None
    mirrored_path: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)


class BackupExecutor:
    """
    Runs the archive, retention and mirror steps of a single cycle.
    """

    def __init__(self, context: BackupContext,
                 shutdown_check: Optional[Callable[[], bool]] = None):
        """
        Initialize backup executor.

        Args:
            context: BackupContext to run against
            shutdown_check: Function returning True once shutdown was requested
        """
        self.context = context
        self.config = context.config
        self.shutdown_check = shutdown_check or (lambda: False)
        self.result = None
        self.logs = []
        self._step = None

    def execute(self) -> CycleResult:
        """
        Execute the backup cycle.

        Never raises: every failure is recorded on the returned CycleResult.

        Returns:
            CycleResult with execution results
        """
        self.result = CycleResult(started_at=datetime.now())
        self._log("Creating backup...")

        try:
            self._execute_workflow()
            self.result.success = True
        except (SourceNotDirectoryError, ArchiveError, OSError) as e:
            self._fail(self._step, e)
        except Exception as e:
            logger.exception(f"Unexpected error during backup cycle ({self._step} step)")
            self._fail(self._step, e)
        finally:
            self.result.completed_at = datetime.now()
            self.result.logs = self.logs

        self._report()
        return self.result

    def _execute_workflow(self):
        """Execute the cycle steps in order."""
        # Step 1: Validate source
        self._step = 'source'
        source_dir = self.config.source_dir
        if not os.path.isdir(source_dir):
            raise SourceNotDirectoryError(f"source_folder is not a directory: {source_dir}")

        # Step 2: Ensure target exists
        self._step = 'target'
        target_dir = self.config.target_dir
        os.makedirs(target_dir, exist_ok=True)

        # Step 3: Create archive
        self._step = 'archive'
        archive = self._create_archive(source_dir, target_dir)
        self.result.archive = archive
        self._log(f"Backup finished: {archive.name} ({archive.size_bytes / 1024 / 1024:.2f} MB)")

        # Step 4: Retention
        self._step = 'retention'
        self._enforce_retention(target_dir)

        # Step 5: Secondary backup
        self._step = 'mirror'
        if self.config.mirror_enabled:
            self._update_mirror(archive)
        else:
            self._log("Secondary backup not configured, skipping")

        # Step 6: Reclaim memory after heavy I/O
        gc.collect()

    def _create_archive(self, source_dir: str, target_dir: str) -> ArchiveFile:
        """
        Create the archive for this cycle.

        Raises:
            ArchiveError: If archive creation fails
        """
        extension = self.context.archiver.extension
        filename = generate_archive_filename(source_dir, extension)
        archive_path = unique_archive_path(target_dir, filename, extension)

        self._log(f"Creating archive {os.path.basename(archive_path)} "
                  f"(level: {self.config.compression_level.value})")
        return self.context.archiver.archive(
            source_dir, archive_path, self.config.compression_level
        )

    def _enforce_retention(self, target_dir: str):
        """Delete expired archives; failures are recorded, never raised."""
        try:
            self.result.deleted_count = self.context.retention.prune(
                target_dir, self.config.retention_hours
            )
            self.logs.extend(self.context.retention.logs)
        except Exception as e:
            self.result.retention_error = e
            self._log(f"Deleting old backups failed: {e}", level=logging.ERROR)

    def _update_mirror(self, archive: ArchiveFile):
        """Copy the archive to the secondary folder; failures are recorded, never raised."""
        if self.shutdown_check():
            self._log("Skipping secondary backup update due to shutdown")
            return

        try:
            self.result.mirrored_path = self.context.mirror.sync(
                archive, self.config.secondary_dir, shutdown_check=self.shutdown_check
            )
            self.logs.extend(self.context.mirror.logs)
        except MirrorError as e:
            self.result.mirror_error = e
            self.logs.extend(self.context.mirror.logs)
            self._log(f"Secondary backup failed: {e}", level=logging.ERROR)
        except Exception as e:
            self.result.mirror_error = e
            self._log(f"Secondary backup failed unexpectedly: {e}", level=logging.ERROR)

    def _fail(self, step: str, error: Exception):
        self.result.success = False
        self.result.failed_step = step
        self.result.error = error
        self._log(f"Backup failed at {step} step: {error}", level=logging.ERROR)

    def _report(self):
        """Log a one-line summary of the cycle."""
        result = self.result
        if not result.success:
            logger.error(f"Backup cycle failed ({result.failed_step}): {result.error}")
            return

        summary = (
            f"Backup cycle complete. "
            f"Archive: {result.archive.name}, "
            f"Deleted: {result.deleted_count}"
        )
        if result.retention_error:
            summary += f", Retention error: {result.retention_error}"
        if result.mirror_error:
            summary += f", Secondary error: {result.mirror_error}"
        elif result.mirrored_path:
            summary += f", Secondary: {result.mirrored_path}"

        if result.retention_error or result.mirror_error:
            logger.warning(summary)
        else:
            logger.info(summary)

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


def execute_backup_cycle(context: BackupContext,
                         shutdown_check: Optional[Callable[[], bool]] = None) -> CycleResult:
    """
    Run one backup cycle against a context.

    Args:
        context: BackupContext to run against
        shutdown_check: Function returning True once shutdown was requested

    Returns:
        CycleResult with execution results
    """
    executor = BackupExecutor(context, shutdown_check)
    return executor.execute()
