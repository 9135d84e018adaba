"""Space reclamation for tmbackup.

When rsync runs out of space, the oldest snapshot is deleted so the pass
can be retried. The snapshot being written is never a candidate, and the
last remaining history is never sacrificed.
"""

from pathlib import Path
from typing import Union
import logging
import os
import shutil

from tmbackup.destination import require_backup_destination
from tmbackup.errors import NoSpaceAndNoOldBackup
from tmbackup.snapshot import Snapshot, list_snapshots


logger = logging.getLogger(__name__)

# Fewer snapshots than this means the only one left is the active target
MIN_SNAPSHOTS_TO_RECLAIM = 2


def reclaim_oldest(destination: Union[str, Path], target: Path) -> Snapshot:
    """
    Delete the oldest snapshot of a destination.

    Args:
        destination: Backup destination root
        target: Snapshot directory the current run is writing

    Returns:
        The deleted snapshot

    Raises:
        NoSpaceAndNoOldBackup: If fewer than two snapshots exist, or the
                               oldest one is the active target
        NotABackupDestination: If the oldest snapshot's parent lacks the
                               marker file
    """
    snapshots = list_snapshots(destination)
    if snapshots.count() < MIN_SNAPSHOTS_TO_RECLAIM:
        raise NoSpaceAndNoOldBackup()

    oldest = snapshots.oldest()
    if os.path.abspath(oldest.path) == os.path.abspath(target):
        raise NoSpaceAndNoOldBackup(
            "No space left on device, and the oldest backup is the one being written."
        )

    # Double-check that we're on a backup destination to be completely sure
    # we're deleting the right folder
    require_backup_destination(oldest.path.parent)

    logger.info(f"Deleting '{oldest.path}'...")
    shutil.rmtree(oldest.path)
    return oldest
