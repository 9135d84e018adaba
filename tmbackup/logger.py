"""Logging configuration for tmbackup.

This module provides logging setup and utility functions for the backup system.
Supports DEBUG, INFO, WARNING and ERROR log levels with separate log and error
files, plus console output. Rotated log files are gzip-compressed.
"""

import gzip
import logging
import os
import shutil
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from tmbackup.config import LoggingConfig, VALID_LOG_LEVELS


# Logger name for the tmbackup package
LOGGER_NAME = "tmbackup"


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


class GzipRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files with gzip.

    Rotated files are named with a .gz extension.
    """

    def rotation_filename(self, default_name: str) -> str:
        return default_name + ".gz"

    def rotate(self, source: str, dest: str) -> None:
        """
        Rotate and compress the log file.

        Args:
            source: Path to the current log file
            dest: Path for the rotated (compressed) file
        """
        if not os.path.exists(source):
            return

        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError:
            # If compression fails, fall back to simple rename
            if os.path.exists(source):
                fallback_dest = dest[:-3] if dest.endswith('.gz') else dest
                try:
                    os.rename(source, fallback_dest)
                except OSError:
                    pass  # Best effort - don't fail logging


def _ensure_log_directory(log_path: Path) -> None:
    """Ensure the parent directory for a log file exists."""
    log_dir = log_path.parent
    if not log_dir.exists():
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LoggingError(f"Failed to create log directory {log_dir}: {e}")


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level_str = level_str.upper()
    if level_str not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{level_str}'. Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )
    return getattr(logging, level_str)


def setup_logging(
    config: Optional[LoggingConfig] = None,
    console_level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for tmbackup.

    Sets up logging with:
    - A rotating file handler for general logs (log_file)
    - A rotating file handler for error logs only (error_log_file)
    - Console output for immediate feedback

    Args:
        config: LoggingConfig object with settings (defaults if None)
        console_level: Override the console level (e.g. "DEBUG" for --verbose)

    Returns:
        Configured logger instance

    Raises:
        LoggingError: If log directory cannot be created or level is invalid
    """
    if config is None:
        config = LoggingConfig()

    # Expand ~ in paths
    log_file = Path(os.path.expanduser(str(config.log_file)))
    error_log_file = Path(os.path.expanduser(str(config.error_log_file)))

    _ensure_log_directory(log_file)
    _ensure_log_directory(error_log_file)

    log_level = _get_log_level(config.level)
    console_log_level = _get_log_level(console_level) if console_level else log_level

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)  # Allow all levels, handlers will filter

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    console_formatter = logging.Formatter("tmbackup: [%(levelname)s] %(message)s")

    try:
        file_handler = GzipRotatingFileHandler(
            log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        error_handler = GzipRotatingFileHandler(
            error_log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        raise LoggingError(f"Failed to open log file: {e}")

    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    logger.addHandler(file_handler)

    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(detailed_formatter)
    logger.addHandler(error_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_log_level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    return logger


def get_logger() -> logging.Logger:
    """
    Get the tmbackup logger instance.

    Returns:
        The tmbackup logger. If setup_logging hasn't been called,
        returns a logger with default configuration.
    """
    return logging.getLogger(LOGGER_NAME)


def log_backup_start(
    logger: logging.Logger,
    source: Path,
    destination: Path,
    target: Path,
) -> None:
    """Log the start of a backup run."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    logger.info(f"Backup started at {timestamp}")
    logger.info(f"Source: {source}")
    logger.info(f"Destination: {destination}")
    logger.info(f"Snapshot: {target.name}")


def log_backup_completion(
    logger: logging.Logger,
    duration_seconds: float,
    snapshot_path: Path,
    link_base: Optional[Path] = None,
    reclaimed: int = 0,
) -> None:
    """
    Log the completion of a backup run.

    Args:
        logger: Logger instance
        duration_seconds: How long the run took
        snapshot_path: Path to the completed snapshot
        link_base: Snapshot unchanged files were linked from
        reclaimed: Number of old snapshots deleted to free space
    """
    logger.info("Backup completed without errors.")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    logger.info(f"Snapshot: {snapshot_path}")
    if link_base is not None:
        logger.info(f"Linked against: {link_base.name}")
    if reclaimed:
        logger.info(f"Old snapshots deleted to free space: {reclaimed}")


def log_backup_error(
    logger: logging.Logger,
    error: Exception,
    context: Optional[str] = None,
) -> None:
    """
    Log a backup error.

    Args:
        logger: Logger instance
        error: The exception that occurred
        context: Additional context about what was happening
    """
    if context:
        logger.error(f"Backup failed during {context}: {error}")
    else:
        logger.error(f"Backup failed: {error}")


def log_rsync_output(logger: logging.Logger, output: str) -> None:
    """Log rsync output (only at DEBUG level)."""
    if output.strip():
        for line in output.strip().split("\n"):
            logger.debug(f"rsync: {line}")
