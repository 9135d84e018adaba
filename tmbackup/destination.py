"""Destination validation for tmbackup.

A directory is only ever treated as a backup destination when it holds
the marker file. The check is repeated every time a destination is about
to be mutated; its result is never cached.
"""

from pathlib import Path
from typing import Union

from tmbackup.errors import NotABackupDestination


MARKER_FILE_NAME = "backup.marker"
INPROGRESS_FILE_NAME = "backup.inprogress"
LATEST_POINTER_NAME = "latest"


def backup_marker_path(destination: Union[str, Path]) -> Path:
    """Return the path of the marker file for a destination."""
    return Path(destination) / MARKER_FILE_NAME


def inprogress_marker_path(destination: Union[str, Path]) -> Path:
    """Return the path of the in-progress marker for a destination."""
    return Path(destination) / INPROGRESS_FILE_NAME


def latest_pointer_path(destination: Union[str, Path]) -> Path:
    """Return the path of the latest pointer for a destination."""
    return Path(destination) / LATEST_POINTER_NAME


def is_backup_destination(destination: Union[str, Path]) -> bool:
    """
    Check whether a directory is a backup destination.

    Args:
        destination: Directory to check

    Returns:
        True if the marker file exists under the directory
    """
    return backup_marker_path(destination).is_file()


def require_backup_destination(destination: Union[str, Path]) -> Path:
    """
    Validate that a directory is a backup destination.

    Args:
        destination: Directory about to be mutated

    Returns:
        The destination as a Path

    Raises:
        NotABackupDestination: If the marker file is missing. The exception
                               carries the marker path and remediation text.
    """
    # Convert to Path if string
    destination = Path(destination)

    if not is_backup_destination(destination):
        raise NotABackupDestination(destination, backup_marker_path(destination))

    return destination

