"""tmbackup - Time Machine style incremental backups with rsync and hard links."""

__version__ = "0.1.0"

from tmbackup.errors import (
    BackupError,
    ArgumentError,
    NotABackupDestination,
    SyncFailure,
    OutOfSpace,
    NoSpaceAndNoOldBackup,
    InterruptedBySignal,
)
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    parse_config_string,
)
from tmbackup.destination import (
    is_backup_destination,
    require_backup_destination,
)
from tmbackup.snapshot import (
    Snapshot,
    SnapshotList,
    list_snapshots,
)
from tmbackup.resume import ResumePlan, plan_run
from tmbackup.sync import SyncInvoker, SyncResult, detect_out_of_space
from tmbackup.reclaim import reclaim_oldest
from tmbackup.latest import update_latest_pointer, resolve_latest
from tmbackup.backup import (
    BackupResult,
    RunContext,
    run_backup,
    EXIT_SUCCESS,
    EXIT_GENERAL_ERROR,
)

__all__ = [
    "BackupError",
    "ArgumentError",
    "NotABackupDestination",
    "SyncFailure",
    "OutOfSpace",
    "NoSpaceAndNoOldBackup",
    "InterruptedBySignal",
    "Configuration",
    "ConfigurationError",
    "ValidationError",
    "parse_config",
    "parse_config_string",
    "is_backup_destination",
    "require_backup_destination",
    "Snapshot",
    "SnapshotList",
    "list_snapshots",
    "ResumePlan",
    "plan_run",
    "SyncInvoker",
    "SyncResult",
    "detect_out_of_space",
    "reclaim_oldest",
    "update_latest_pointer",
    "resolve_latest",
    "BackupResult",
    "RunContext",
    "run_backup",
    "EXIT_SUCCESS",
    "EXIT_GENERAL_ERROR",
]
