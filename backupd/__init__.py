import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(log_dir: str = None, debug: bool = None):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = log_dir or os.environ.get('BACKUPD_LOG_DIR') or 'logs'
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    if debug is None:
        debug = os.environ.get('BACKUPD_DEBUG', 'false').lower() == 'true'
    log_level = logging.DEBUG if debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'backupd.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)

    # APScheduler logs every job execution at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_path: str = None):
    """
    backupd application factory.

    Loads and validates the configuration and builds the orchestrator with
    its cycle context. Nothing is scheduled until start() is called.

    Args:
        config_path: Config file path (default: BACKUPD_CONFIG or config.txt)

    Returns:
        BackupOrchestrator instance

    Raises:
        ConfigError: If the configuration is invalid
    """
    from backupd.config import load_config
    from backupd.backup.executor import create_context
    from backupd.scheduler import BackupOrchestrator

    config = load_config(config_path)
    return BackupOrchestrator(create_context(config))
