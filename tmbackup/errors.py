"""Exception types for tmbackup.

Every fatal condition of a backup run is an exception deriving from
BackupError. Each carries the process exit status the CLI should use.
"""

from pathlib import Path
from typing import Optional


EXIT_GENERAL_ERROR = 1


class BackupError(Exception):
    """Base exception for backup errors."""

    def __init__(self, message: str, exit_code: int = EXIT_GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


class ArgumentError(BackupError):
    """Raised when a command-line path contains unsafe characters."""
    pass


class NotABackupDestination(BackupError):
    """Raised when a directory lacks the backup marker file."""

    def __init__(self, destination: Path, marker_path: Path):
        super().__init__(
            f"Safety check failed - {destination} does not appear to be a "
            f"backup folder or drive (marker file not found)."
        )
        self.destination = destination
        self.marker_path = marker_path

    @property
    def guidance(self) -> str:
        """Remediation text telling the user how to mark the destination."""
        return (
            "If it is indeed a backup folder, you may add the marker file "
            "by running the following command:\n"
            "\n"
            f'touch "{self.marker_path}"\n'
        )


class SyncFailure(BackupError):
    """Raised when rsync exits non-zero for a reason other than lack of space."""

    def __init__(self, exit_code: int, message: Optional[str] = None):
        super().__init__(message or f"Exited with error code {exit_code}", exit_code)


class OutOfSpace(BackupError):
    """Raised when rsync ran out of space on the destination.

    Recoverable: the orchestrator reclaims the oldest snapshot and retries.
    """

    def __init__(self, exit_code: int):
        super().__init__("No space left on device", exit_code)


class NoSpaceAndNoOldBackup(BackupError):
    """Raised when space ran out and no old snapshot can be sacrificed."""

    def __init__(self, message: str = "No space left on device, and no old backup to delete."):
        super().__init__(message)


class InterruptedBySignal(BackupError):
    """Raised from the signal handler when the run is interrupted."""

    def __init__(self, signal_name: str):
        super().__init__(f"{signal_name} caught.")
        self.signal_name = signal_name
