"""Sync invocation for tmbackup.

This module runs one rsync pass into a snapshot directory. The command is
built as an argument list and spawned without a shell. Exit status is the
primary result; the per-attempt run log is scanned as a best-effort
fallback for out-of-space conditions, since rsync may report them either
way depending on where the failure happened.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union
import logging
import os
import re
import shlex
import subprocess

from tmbackup.destination import inprogress_marker_path, require_backup_destination
from tmbackup.errors import OutOfSpace, SyncFailure
from tmbackup.logger import log_rsync_output
from tmbackup.snapshot import format_snapshot_name


logger = logging.getLogger(__name__)

# errno values rsync surfaces when the destination fills up
ENOSPC_EXIT_CODE = 28
ERANGE_EXIT_CODE = 34
OUT_OF_SPACE_EXIT_CODES = (ENOSPC_EXIT_CODE, ERANGE_EXIT_CODE)

OUT_OF_SPACE_LOG_PATTERNS = (
    "No space left on device (28)",
    "Result too large (34)",
)

# rsync's own diagnostics, optionally behind the "date time [pid] " prefix of
# --log-file lines. Itemized file lines never match, whatever the file name.
_RSYNC_DIAGNOSTIC = re.compile(
    r"^(?:\S+ \S+ \[\d+\] )?rsync(?: error)?: .*(?:%s)"
    % "|".join(re.escape(pattern) for pattern in OUT_OF_SPACE_LOG_PATTERNS),
    re.MULTILINE,
)

# Exit status used when the rsync binary cannot be started
EXIT_RSYNC_NOT_FOUND = 127


def detect_out_of_space(exit_code: int, log_text: str = "") -> bool:
    """
    Decide whether an rsync pass failed because the destination is full.

    The exit status decides first: a zero status is never exhaustion. The
    log is only consulted for a failed pass, and only rsync's own error
    lines count.

    Args:
        exit_code: rsync exit status
        log_text: Contents of the run log and captured output

    Returns:
        True if the exit status or an rsync error line reports exhaustion
    """
    if exit_code == 0:
        return False
    if exit_code in OUT_OF_SPACE_EXIT_CODES:
        return True
    return _RSYNC_DIAGNOSTIC.search(log_text) is not None


def shell_exit_status(returncode: int) -> int:
    """Map a child killed by signal N (returncode -N) to 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


def is_reportable_line(line: str) -> bool:
    """Keep deletions and non-directory entries of itemized rsync output."""
    if line.startswith("deleting"):
        return True
    return bool(line) and not line.endswith("/")


@dataclass
class SyncResult:
    """Result of one rsync pass."""
    exit_code: int
    out_of_space: bool
    command: List[str] = field(default_factory=list)
    log_text: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.out_of_space

    def raise_for_status(self) -> None:
        """
        Raise if the pass did not succeed.

        Raises:
            OutOfSpace: If the destination filled up
            SyncFailure: If rsync failed for any other reason
        """
        if self.out_of_space:
            raise OutOfSpace(self.exit_code)
        if self.exit_code != 0:
            raise SyncFailure(self.exit_code)


class SyncInvoker:
    """
    Runs rsync passes into snapshot directories.

    The invoker owns the in-progress marker: it creates the marker before
    every pass and is the only component that removes it, once the run is
    confirmed complete.
    """

    def __init__(
        self,
        profile_dir: Path,
        rsync_path: str = "rsync",
        compress: bool = True,
        extra_args: Optional[List[str]] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the sync invoker.

        Args:
            profile_dir: Directory holding per-attempt run logs
            rsync_path: rsync executable
            compress: Pass --compress to rsync
            extra_args: Additional rsync arguments
            now: Clock used to name run logs
        """
        self.profile_dir = Path(profile_dir)
        self.rsync_path = rsync_path
        self.compress = compress
        self.extra_args = list(extra_args or [])
        self._now = now

    def build_command(
        self,
        source: Path,
        target: Path,
        log_file: Path,
        link_base: Optional[Path] = None,
        include_file: Optional[Path] = None,
        exclude_file: Optional[Path] = None,
    ) -> List[str]:
        """
        Build the rsync argument list.

        Flags used:
        - --archive, --numeric-ids, --links, --hard-links: preserve attributes,
          numeric ownership, symbolic and hard links
        - --delete, --delete-excluded: mirror deletions, including files that
          the filter rules now exclude
        - --itemize-changes, --verbose, --log-file: per-run log
        - --link-dest: hard-link unchanged files from the link base

        Args:
            source: Directory to back up
            target: Snapshot directory to populate
            log_file: Run log for this attempt
            link_base: Previous completed snapshot, if any
            include_file: rsync include rules file
            exclude_file: rsync exclude rules file

        Returns:
            List of command arguments for subprocess
        """
        cmd = [self.rsync_path]
        if self.compress:
            cmd.append("--compress")
        cmd.extend([
            "--numeric-ids",
            "--links",
            "--hard-links",
            "--delete",
            "--delete-excluded",
            "--archive",
            "--itemize-changes",
            "--verbose",
            "--log-file", str(log_file),
        ])
        if include_file is not None:
            cmd.extend(["--include-from", str(include_file)])
        if exclude_file is not None:
            cmd.extend(["--exclude-from", str(exclude_file)])
        cmd.extend(self.extra_args)

        # rsync resolves a relative --link-dest against the target, so always
        # hand it an absolute path
        if link_base is not None:
            cmd.append(f"--link-dest={os.path.abspath(link_base)}")

        cmd.extend(["--", f"{str(source).rstrip('/')}/", f"{str(target).rstrip('/')}/"])
        return cmd

    def mark_in_progress(self, destination: Union[str, Path]) -> Path:
        """Create or refresh the in-progress marker."""
        destination = require_backup_destination(destination)
        marker = inprogress_marker_path(destination)
        marker.touch()
        return marker

    def clear_in_progress(self, destination: Union[str, Path]) -> None:
        """Remove the in-progress marker after a confirmed successful run."""
        destination = require_backup_destination(destination)
        inprogress_marker_path(destination).unlink(missing_ok=True)

    def _ensure_profile_dir(self) -> None:
        if not self.profile_dir.is_dir():
            logger.info(f"Creating profile folder in '{self.profile_dir}'...")
            self.profile_dir.mkdir(parents=True, exist_ok=True)

    def run_sync(
        self,
        source: Path,
        target: Path,
        link_base: Optional[Path] = None,
        include_file: Optional[Path] = None,
        exclude_file: Optional[Path] = None,
    ) -> SyncResult:
        """
        Run one rsync pass into a snapshot directory.

        Process:
        1. Create the target directory if it does not exist
        2. Touch the in-progress marker
        3. Run rsync, logging its itemized output at DEBUG level
        4. Scan the run log for out-of-space reports
        5. Delete the run log, whatever the outcome

        Args:
            source: Directory to back up
            target: Snapshot directory directly under the destination root
            link_base: Previous completed snapshot, if any
            include_file: rsync include rules file
            exclude_file: rsync exclude rules file

        Returns:
            SyncResult with exit status and exhaustion flag

        Raises:
            NotABackupDestination: If the target's parent lacks the marker file
        """
        destination = require_backup_destination(Path(target).parent)
        self._ensure_profile_dir()

        if not target.is_dir():
            logger.info(f"Creating destination {target}")
            target.mkdir(parents=True, exist_ok=True)

        log_file = self.profile_dir / f"{format_snapshot_name(self._now())}.log"
        cmd = self.build_command(
            source,
            target,
            log_file,
            link_base=link_base,
            include_file=include_file,
            exclude_file=exclude_file,
        )

        logger.info("Starting backup...")
        logger.info(f"From: {source}")
        logger.info(f"To:   {target}")
        logger.info("Running command:")
        logger.info(shlex.join(cmd))

        self.mark_in_progress(destination)

        try:
            exit_code, output = self._execute(cmd)
            log_text = ""
            if log_file.exists():
                log_text = log_file.read_text(encoding="utf-8", errors="replace")
        finally:
            log_file.unlink(missing_ok=True)

        out_of_space = detect_out_of_space(exit_code, log_text + output)
        return SyncResult(
            exit_code=exit_code,
            out_of_space=out_of_space,
            command=cmd,
            log_text=log_text,
        )

    def _execute(self, cmd: List[str]) -> tuple[int, str]:
        """Spawn rsync and stream its output; returns (exit_code, output)."""
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise SyncFailure(EXIT_RSYNC_NOT_FOUND, f"Cannot run rsync: {e}")

        lines = []
        try:
            for line_bytes in process.stdout:
                # Decode with error handling for non-UTF-8 file names
                line = line_bytes.decode("utf-8", errors="replace").rstrip("\n")
                lines.append(line)
                if is_reportable_line(line):
                    log_rsync_output(logger, line)
            process.wait()
        except BaseException:
            # Interrupted: do not leave rsync writing into the snapshot
            process.kill()
            process.wait()
            raise
        finally:
            process.stdout.close()

        return shell_exit_status(process.returncode), "\n".join(lines)
