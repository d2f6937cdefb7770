"""
Backup module for backupd.

This module handles one backup cycle:
- Compression of the source folder
- Retention policy enforcement
- Secondary backup copy
- Execution orchestration
"""

from .executor import BackupExecutor, BackupContext, CycleResult, create_context
from .compression import Archiver, ArchiveFile, create_archiver
from .retention import RetentionManager
from .mirror import MirrorSync

__all__ = [
    'BackupExecutor',
    'BackupContext',
    'CycleResult',
    'create_context',
    'Archiver',
    'ArchiveFile',
    'create_archiver',
    'RetentionManager',
    'MirrorSync'
]
