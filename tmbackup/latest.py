"""Latest pointer maintenance for tmbackup.

The latest pointer is a symbolic link at the destination root that always
targets the newest completed snapshot by absolute path.
"""

from pathlib import Path
from typing import Optional, Union
import logging
import os

from tmbackup.destination import latest_pointer_path, require_backup_destination


logger = logging.getLogger(__name__)


def update_latest_pointer(destination: Union[str, Path], snapshot: Path) -> Path:
    """
    Point the latest pointer at a completed snapshot.

    The new link is created beside the old one and renamed over it, so
    the pointer is never missing or dangling at any instant.

    Args:
        destination: Backup destination root
        snapshot: The snapshot that just completed

    Returns:
        Path of the latest pointer

    Raises:
        NotABackupDestination: If the destination lacks the marker file
        OSError: If the link cannot be created or replaced
    """
    destination = require_backup_destination(destination)
    pointer = latest_pointer_path(destination)
    target = Path(os.path.abspath(snapshot))

    staging = destination / f".{pointer.name}.{os.getpid()}"
    if staging.is_symlink() or staging.exists():
        staging.unlink()
    os.symlink(target, staging)
    try:
        os.replace(staging, pointer)
    except OSError:
        staging.unlink()
        raise

    logger.debug(f"Latest pointer now targets {target}")
    return pointer


def resolve_latest(destination: Union[str, Path]) -> Optional[Path]:
    """
    Resolve the latest pointer.

    Args:
        destination: Backup destination root

    Returns:
        Absolute path the pointer targets if it is a link to an existing
        directory, otherwise None
    """
    pointer = latest_pointer_path(destination)
    if not pointer.is_symlink():
        return None
    target = Path(os.readlink(pointer))
    if not target.is_absolute():
        target = pointer.parent / target
    target = Path(os.path.abspath(target))
    if not target.is_dir():
        return None
    return target
