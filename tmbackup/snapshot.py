"""Snapshot naming and enumeration for tmbackup.

Snapshots are directories directly under the destination root named
YYYY-MM-DD-HHMMSS (local time, zero padded). Because the format is fixed
width, sorting names lexicographically sorts snapshots chronologically.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union
import logging
import re
import time


logger = logging.getLogger(__name__)

# Timestamp format for snapshot directories
SNAPSHOT_NAME_FORMAT = "%Y-%m-%d-%H%M%S"

_SNAPSHOT_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}-\d{6}$")


def is_snapshot_name(name: str) -> bool:
    """
    Check whether a directory name is a snapshot timestamp.

    Args:
        name: Directory name

    Returns:
        True if the name is a valid YYYY-MM-DD-HHMMSS timestamp
    """
    if not _SNAPSHOT_NAME_RE.match(name):
        return False
    try:
        datetime.strptime(name, SNAPSHOT_NAME_FORMAT)
    except ValueError:
        return False
    return True


def format_snapshot_name(moment: datetime) -> str:
    """Format a datetime as a snapshot directory name."""
    return moment.strftime(SNAPSHOT_NAME_FORMAT)


def generate_snapshot_name(
    destination: Union[str, Path],
    now: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], None] = time.sleep,
    max_retries: int = 3,
) -> str:
    """
    Generate the snapshot name for a new run.

    If a directory with the current timestamp already exists (two runs
    within the same second), waits for the next second and tries again.

    Args:
        destination: Backup destination root
        now: Clock returning local time
        sleep: Sleep function used while waiting for a new second
        max_retries: Maximum times to wait for a free name

    Returns:
        Snapshot name in YYYY-MM-DD-HHMMSS format
    """
    destination = Path(destination)
    name = format_snapshot_name(now())

    for _ in range(max_retries):
        if not (destination / name).exists():
            return name
        logger.debug(f"Snapshot name {name} already in use, waiting 1 second")
        sleep(1)
        name = format_snapshot_name(now())

    return name


@dataclass(frozen=True)
class Snapshot:
    """A snapshot directory under a destination root."""
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def timestamp(self) -> datetime:
        return datetime.strptime(self.name, SNAPSHOT_NAME_FORMAT)


class SnapshotList:
    """
    Snapshots of one destination, oldest first.

    An empty list is valid and describes a fresh destination.
    """

    def __init__(self, snapshots: List[Snapshot]):
        self._snapshots = sorted(snapshots, key=lambda s: s.name)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self._snapshots)

    def __len__(self) -> int:
        return len(self._snapshots)

    def __getitem__(self, index: int) -> Snapshot:
        return self._snapshots[index]

    def count(self) -> int:
        return len(self._snapshots)

    def newest(self) -> Optional[Snapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def second_newest(self) -> Optional[Snapshot]:
        return self._snapshots[-2] if len(self._snapshots) > 1 else None

    def oldest(self) -> Optional[Snapshot]:
        return self._snapshots[0] if self._snapshots else None

    def names(self) -> List[str]:
        return [s.name for s in self._snapshots]


def list_snapshots(destination: Union[str, Path]) -> SnapshotList:
    """
    List snapshot directories directly under a destination root.

    Only immediate subdirectories are inspected; matched directories are
    never descended into. Symbolic links (such as the latest pointer) are
    not snapshots.

    Args:
        destination: Backup destination root

    Returns:
        SnapshotList sorted oldest first
    """
    destination = Path(destination)
    if not destination.is_dir():
        return SnapshotList([])

    snapshots = []
    for entry in destination.iterdir():
        if entry.is_symlink() or not entry.is_dir():
            continue
        if is_snapshot_name(entry.name):
            snapshots.append(Snapshot(entry))

    return SnapshotList(snapshots)
