"""Resume handling for interrupted runs.

When a previous run died, the in-progress marker is still present and the
newest snapshot is the partial one. Renaming it to this run's target lets
rsync continue filling it instead of transferring everything again.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging
import os

from tmbackup.destination import inprogress_marker_path, require_backup_destination
from tmbackup.latest import resolve_latest
from tmbackup.snapshot import list_snapshots


logger = logging.getLogger(__name__)


@dataclass
class ResumePlan:
    """Where this run writes and which snapshot it links against.

    Attributes:
        target: Snapshot directory this run populates
        link_base: Completed snapshot to hard-link unchanged files from
        resumed_from: Name of the partial snapshot renamed to target, if any
        stale_marker: True if the marker was left by a run that had in fact
                      completed; the caller clears it
    """
    target: Path
    link_base: Optional[Path] = None
    resumed_from: Optional[str] = None
    stale_marker: bool = False

    @property
    def resumed(self) -> bool:
        return self.resumed_from is not None


def _same_path(a: Path, b: Path) -> bool:
    return os.path.abspath(a) == os.path.abspath(b)


def plan_run(destination: Union[str, Path], target_name: str) -> ResumePlan:
    """
    Decide the target snapshot and link base for a run.

    Process:
    1. No in-progress marker: fresh target, link base is the newest snapshot
    2. Marker present, no snapshots: fresh target, no link base
    3. Marker present, latest pointer already on the newest snapshot: the
       previous run completed before clearing its marker. The plan flags
       the stale marker and the run proceeds as in case 1
    4. Otherwise: the newest snapshot is renamed to the target and the
       second-newest snapshot (if any) becomes the link base

    Args:
        destination: Backup destination root
        target_name: Snapshot name generated for this run

    Returns:
        ResumePlan describing the run

    Raises:
        NotABackupDestination: If the destination lacks the marker file
    """
    destination = require_backup_destination(destination)
    target = destination / target_name
    marker = inprogress_marker_path(destination)
    snapshots = list_snapshots(destination)
    newest = snapshots.newest()

    if not marker.exists():
        return ResumePlan(target=target, link_base=newest.path if newest else None)

    if newest is None:
        logger.info(f"{marker} exists but there is no snapshot to resume - creating new one.")
        return ResumePlan(target=target)

    latest = resolve_latest(destination)
    if latest is not None and _same_path(latest, newest.path):
        logger.warning(
            f"{marker} exists but {newest.name} is already the latest completed "
            f"snapshot - treating marker as stale."
        )
        return ResumePlan(
            target=target,
            link_base=newest.path,
            stale_marker=True,
        )

    logger.info(
        f"{marker} already exists - the previous backup failed or was "
        f"interrupted. Backup will resume from there."
    )
    second = snapshots.second_newest()

    require_backup_destination(destination)
    if not _same_path(newest.path, target):
        newest.path.rename(target)

    return ResumePlan(
        target=target,
        link_base=second.path if second else None,
        resumed_from=newest.name,
    )
