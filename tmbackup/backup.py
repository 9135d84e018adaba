"""Main backup orchestration for tmbackup.

This module sequences one backup run:
- Validate arguments and the destination marker
- Register signal handlers
- Pick the target snapshot, resuming an interrupted run if there is one
- Run rsync, reclaiming the oldest snapshot and retrying while the
  destination is full
- Point latest at the new snapshot, then clear the in-progress marker

A failed or interrupted run leaves the partial snapshot and the
in-progress marker in place; the next run resumes from them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Union
import logging
import time

from tmbackup.config import Configuration
from tmbackup.confirm import Confirm, RECLAIM_PROMPT, ask_user, auto_confirm
from tmbackup.destination import require_backup_destination
from tmbackup.errors import (
    EXIT_GENERAL_ERROR,
    ArgumentError,
    BackupError,
    NotABackupDestination,
    OutOfSpace,
)
from tmbackup.latest import update_latest_pointer
from tmbackup.logger import (
    LoggingError,
    setup_logging,
    get_logger,
    log_backup_start,
    log_backup_completion,
    log_backup_error,
)
from tmbackup.reclaim import reclaim_oldest
from tmbackup.resume import plan_run
from tmbackup.signal_handler import SignalHandler
from tmbackup.snapshot import generate_snapshot_name, list_snapshots
from tmbackup.sync import SyncInvoker


EXIT_SUCCESS = 0

PathLike = Union[str, Path]


@dataclass
class RunContext:
    """State of one backup run, threaded through every step."""
    source: Path
    destination: Path
    include_file: Optional[Path] = None
    exclude_file: Optional[Path] = None
    target: Optional[Path] = None
    link_base: Optional[Path] = None
    resumed_from: Optional[str] = None
    attempts: int = 0
    reclaimed: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)


@dataclass
class BackupResult:
    """Result of a backup run."""
    success: bool
    exit_code: int
    snapshot_path: Optional[Path] = None
    link_base: Optional[Path] = None
    resumed_from: Optional[str] = None
    reclaimed: List[str] = field(default_factory=list)
    attempts: int = 0
    aborted: bool = False  # True if the user declined to delete old backups
    error: Optional[Exception] = None
    error_message: Optional[str] = None


def _strip_trailing_slash(path: PathLike) -> Path:
    text = str(path)
    stripped = text.rstrip("/")
    return Path(stripped or "/")


def validate_arguments(*paths: Optional[PathLike]) -> None:
    """
    Reject paths containing single quote characters.

    Args:
        paths: Command-line paths; None entries are skipped

    Raises:
        ArgumentError: If any path contains a single quote
    """
    for path in paths:
        if path is not None and "'" in str(path):
            raise ArgumentError("Arguments may not have any single quote characters.")


def create_context(
    source: PathLike,
    destination: PathLike,
    include_file: Optional[PathLike] = None,
    exclude_file: Optional[PathLike] = None,
) -> RunContext:
    """Validate command-line paths and build the run context."""
    validate_arguments(source, destination, include_file, exclude_file)
    return RunContext(
        source=_strip_trailing_slash(source),
        destination=_strip_trailing_slash(destination),
        include_file=Path(include_file) if include_file else None,
        exclude_file=Path(exclude_file) if exclude_file else None,
    )


def _rederive_link_base(context: RunContext) -> Optional[Path]:
    """Newest remaining snapshot other than the target, or None."""
    candidates = [
        s for s in list_snapshots(context.destination)
        if s.path.resolve() != context.target.resolve()
    ]
    return candidates[-1].path if candidates else None


def _sync_until_done(
    context: RunContext,
    sync_invoker: SyncInvoker,
    confirm: Confirm,
    logger: logging.Logger,
) -> bool:
    """
    Run rsync until it succeeds, freeing space as needed.

    Returns:
        True on success, False if the user declined to delete old backups

    Raises:
        SyncFailure: If rsync fails for a reason other than lack of space
        NoSpaceAndNoOldBackup: If no old snapshot is left to delete
    """
    while True:
        if context.link_base is None:
            logger.info("No previous backup - creating new one.")
        else:
            logger.info(
                f"Previous backup found - doing incremental backup from {context.link_base}"
            )

        context.attempts += 1
        result = sync_invoker.run_sync(
            context.source,
            context.target,
            link_base=context.link_base,
            include_file=context.include_file,
            exclude_file=context.exclude_file,
        )

        try:
            result.raise_for_status()
        except OutOfSpace:
            if not confirm(RECLAIM_PROMPT):
                return False

            logger.warning("No space left on device - removing oldest backup and resuming.")
            deleted = reclaim_oldest(context.destination, context.target)
            context.reclaimed.append(deleted.name)

            if context.link_base is not None and not context.link_base.exists():
                context.link_base = _rederive_link_base(context)
            continue

        return True


def run_backup(
    source: PathLike,
    destination: PathLike,
    include_file: Optional[PathLike] = None,
    exclude_file: Optional[PathLike] = None,
    config: Optional[Configuration] = None,
    confirm: Optional[Confirm] = None,
    sync_invoker: Optional[SyncInvoker] = None,
    now: Callable[[], datetime] = datetime.now,
    verbose: bool = False,
    handle_signals: bool = True,
) -> BackupResult:
    """
    Run a complete backup.

    Process:
    1. Reject unsafe arguments (before touching the filesystem)
    2. Set up logging
    3. Check the destination marker file
    4. Register signal handlers
    5. Choose the target snapshot and link base (resume if interrupted)
    6. Sync, deleting the oldest snapshot and retrying while out of space
    7. Update the latest pointer, then clear the in-progress marker

    Args:
        source: Directory to back up
        destination: Backup destination root (must hold backup.marker)
        include_file: Optional rsync include rules file
        exclude_file: Optional rsync exclude rules file
        config: Loaded configuration (defaults if None)
        confirm: Asked before deleting an old snapshot; defaults to asking
                 on the terminal, or auto-confirming if configured
        sync_invoker: rsync runner (built from config if None)
        now: Clock used to name the snapshot
        verbose: Log DEBUG output to the console
        handle_signals: Install SIGINT/SIGTERM handlers for the run

    Returns:
        BackupResult. exit_code is 0 on success or when the user declines
        to delete old backups, rsync's status on sync failure, else 1.
    """
    if config is None:
        config = Configuration()

    # Rejected before logging creates any directory or file
    try:
        validate_arguments(source, destination, include_file, exclude_file)
    except ArgumentError as e:
        get_logger().error(str(e))
        return _failure(e, None)

    try:
        logger = setup_logging(config.logging, console_level="DEBUG" if verbose else None)
    except LoggingError as e:
        logger = get_logger()
        logger.warning(f"Failed to set up logging: {e}")

    if confirm is None:
        confirm = auto_confirm if config.auto_confirm else ask_user

    if sync_invoker is None:
        sync_invoker = SyncInvoker(
            profile_dir=config.profile_dir,
            rsync_path=config.sync.rsync_path,
            compress=config.sync.compress,
            extra_args=config.sync.extra_args,
        )

    signal_handler: Optional[SignalHandler] = None
    context: Optional[RunContext] = None

    try:
        context = create_context(source, destination, include_file, exclude_file)
        require_backup_destination(context.destination)

        if handle_signals:
            signal_handler = SignalHandler()
            signal_handler.register()

        target_name = generate_snapshot_name(context.destination, now=now)
        plan = plan_run(context.destination, target_name)
        context.target = plan.target
        context.link_base = plan.link_base
        context.resumed_from = plan.resumed_from
        if plan.stale_marker:
            sync_invoker.clear_in_progress(context.destination)

        log_backup_start(logger, context.source, context.destination, context.target)

        if not _sync_until_done(context, sync_invoker, confirm, logger):
            logger.info("Not deleting old backups - aborting.")
            return BackupResult(
                success=False,
                exit_code=EXIT_SUCCESS,
                snapshot_path=context.target,
                link_base=context.link_base,
                resumed_from=context.resumed_from,
                reclaimed=context.reclaimed,
                attempts=context.attempts,
                aborted=True,
            )

        # Pointer first: a crash before the marker is cleared is detected
        # on the next run by the pointer already naming this snapshot
        update_latest_pointer(context.destination, context.target)
        sync_invoker.clear_in_progress(context.destination)

        log_backup_completion(
            logger,
            duration_seconds=time.time() - context.started_at,
            snapshot_path=context.target,
            link_base=context.link_base,
            reclaimed=len(context.reclaimed),
        )
        return BackupResult(
            success=True,
            exit_code=EXIT_SUCCESS,
            snapshot_path=context.target,
            link_base=context.link_base,
            resumed_from=context.resumed_from,
            reclaimed=context.reclaimed,
            attempts=context.attempts,
        )

    except NotABackupDestination as e:
        logger.error(str(e))
        for line in e.guidance.splitlines():
            if line:
                logger.error(line)
        return _failure(e, context)
    except BackupError as e:
        logger.error(str(e))
        return _failure(e, context)
    except Exception as e:
        log_backup_error(logger, e, "unexpected error")
        return _failure(e, context, message=f"Unexpected error: {e}")
    finally:
        if signal_handler is not None:
            signal_handler.unregister()


def _failure(
    error: Exception,
    context: Optional[RunContext],
    message: Optional[str] = None,
) -> BackupResult:
    exit_code = error.exit_code if isinstance(error, BackupError) else EXIT_GENERAL_ERROR
    return BackupResult(
        success=False,
        exit_code=exit_code,
        snapshot_path=context.target if context else None,
        link_base=context.link_base if context else None,
        resumed_from=context.resumed_from if context else None,
        reclaimed=context.reclaimed if context else [],
        attempts=context.attempts if context else 0,
        error=error,
        error_message=message or str(error),
    )
