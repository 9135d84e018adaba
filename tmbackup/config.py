"""Configuration management for tmbackup.

This module provides dataclasses for configuration and functions for
parsing the optional TOML configuration file. Source and destination come
from the command line; the file only tunes how runs behave.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import tomllib


class ConfigurationError(Exception):
    """Raised when configuration file is missing or malformed."""
    pass


class ValidationError(Exception):
    """Raised when configuration values have invalid types."""
    pass


# Default config file path
DEFAULT_CONFIG_PATH = Path.home() / ".config/tmbackup/config.toml"

# Directory holding per-attempt rsync run logs
DEFAULT_PROFILE_DIR = Path.home() / ".tmbackup"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"  # "DEBUG", "INFO", "WARNING", "ERROR"
    log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/tmbackup.log"
    )
    error_log_file: Path = field(
        default_factory=lambda: Path.home() / ".local/log/tmbackup.err"
    )
    log_max_size_mb: int = 10  # Maximum log file size in MB before rotation
    log_backup_count: int = 5  # Number of rotated log files to keep

    @property
    def log_max_bytes(self) -> int:
        """Return max size in bytes for use with RotatingFileHandler."""
        return self.log_max_size_mb * 1024 * 1024


@dataclass
class SyncConfig:
    """Configuration for the rsync invocation."""
    rsync_path: str = "rsync"
    compress: bool = True
    extra_args: List[str] = field(default_factory=list)


@dataclass
class Configuration:
    """Main configuration for tmbackup."""
    profile_dir: Path = field(default_factory=lambda: DEFAULT_PROFILE_DIR)
    auto_confirm: bool = False
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _validate_type(value: Any, expected_type: type, key: str) -> None:
    """Validate that a value has the expected type."""
    if not isinstance(value, expected_type):
        raise ValidationError(
            f"Key '{key}' has invalid type: expected {expected_type.__name__}, "
            f"got {type(value).__name__}"
        )


def _expand(path: str) -> Path:
    return Path(os.path.expanduser(path))


def _parse_sync_config(data: Dict[str, Any]) -> SyncConfig:
    """Parse sync configuration from dict."""
    sync_data = data.get("sync", {})
    _validate_type(sync_data, dict, "sync")

    rsync_path = sync_data.get("rsync_path", "rsync")
    _validate_type(rsync_path, str, "sync.rsync_path")

    compress = sync_data.get("compress", True)
    _validate_type(compress, bool, "sync.compress")

    extra_args = sync_data.get("extra_args", [])
    _validate_type(extra_args, list, "sync.extra_args")
    for i, arg in enumerate(extra_args):
        _validate_type(arg, str, f"sync.extra_args[{i}]")

    return SyncConfig(
        rsync_path=os.path.expanduser(rsync_path),
        compress=compress,
        extra_args=extra_args,
    )


def _parse_logging_config(data: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    logging_data = data.get("logging", {})
    _validate_type(logging_data, dict, "logging")

    level = logging_data.get("level", "INFO")
    _validate_type(level, str, "logging.level")
    if level.upper() not in VALID_LOG_LEVELS:
        raise ValidationError(
            f"Key 'logging.level' must be one of {', '.join(sorted(VALID_LOG_LEVELS))}, "
            f"got '{level}'"
        )

    log_file = logging_data.get(
        "log_file",
        str(Path.home() / ".local/log/tmbackup.log")
    )
    _validate_type(log_file, str, "logging.log_file")

    error_log_file = logging_data.get(
        "error_log_file",
        str(Path.home() / ".local/log/tmbackup.err")
    )
    _validate_type(error_log_file, str, "logging.error_log_file")

    log_max_size_mb = logging_data.get("log_max_size_mb", 10)
    _validate_type(log_max_size_mb, int, "logging.log_max_size_mb")

    log_backup_count = logging_data.get("log_backup_count", 5)
    _validate_type(log_backup_count, int, "logging.log_backup_count")

    return LoggingConfig(
        level=level.upper(),
        log_file=_expand(log_file),
        error_log_file=_expand(error_log_file),
        log_max_size_mb=log_max_size_mb,
        log_backup_count=log_backup_count,
    )


def parse_config_string(toml_content: str) -> Configuration:
    """
    Parse TOML string into Configuration object.

    Args:
        toml_content: TOML formatted string

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If the TOML is malformed
        ValidationError: If value has wrong type
    """
    try:
        data = tomllib.loads(toml_content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML format: {e}")

    main_data = data.get("main", {})
    _validate_type(main_data, dict, "main")

    profile_dir = main_data.get("profile_dir", str(DEFAULT_PROFILE_DIR))
    _validate_type(profile_dir, str, "main.profile_dir")

    auto_confirm = main_data.get("auto_confirm", False)
    _validate_type(auto_confirm, bool, "main.auto_confirm")

    return Configuration(
        profile_dir=_expand(profile_dir),
        auto_confirm=auto_confirm,
        sync=_parse_sync_config(data),
        logging=_parse_logging_config(data),
    )


def parse_config(config_path: Optional[Path] = None) -> Configuration:
    """
    Parse TOML configuration file into Configuration object.

    The default file is optional: if it does not exist, defaults are used.
    An explicitly requested file must exist.

    Args:
        config_path: Path to config file. Defaults to ~/.config/tmbackup/config.toml

    Returns:
        Configuration object

    Raises:
        ConfigurationError: If an explicit file doesn't exist or can't be read
        ValidationError: If value has wrong type
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return Configuration()
        config_path = DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}"
        )

    try:
        content = config_path.read_text()
    except PermissionError:
        raise ConfigurationError(
            f"Permission denied reading configuration file: {config_path}"
        )
    except OSError as e:
        raise ConfigurationError(
            f"Error reading configuration file {config_path}: {e}"
        )

    return parse_config_string(content)
