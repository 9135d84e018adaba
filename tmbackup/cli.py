"""Command-line interface for tmbackup.

Usage:
    tmbackup [options] SOURCE DESTINATION [INCLUDE_FILE [EXCLUDE_FILE]]
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from tmbackup import __version__
from tmbackup.backup import run_backup, EXIT_SUCCESS, EXIT_GENERAL_ERROR
from tmbackup.config import (
    Configuration,
    ConfigurationError,
    ValidationError,
    parse_config,
    DEFAULT_CONFIG_PATH,
)
from tmbackup.confirm import make_confirm


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog='tmbackup',
        description='Time Machine style incremental backups with rsync and hard links'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--config', '-c',
        type=Path,
        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})',
        metavar='PATH'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose output'
    )
    confirm_group = parser.add_mutually_exclusive_group()
    confirm_group.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Delete old backups without asking when the destination is full'
    )
    confirm_group.add_argument(
        '--no-reclaim',
        action='store_true',
        help='Never delete old backups; stop when the destination is full'
    )
    parser.add_argument('source', help='Directory to back up')
    parser.add_argument('destination', help='Backup destination (must contain backup.marker)')
    parser.add_argument('include_file', nargs='?', help='rsync include rules file')
    parser.add_argument('exclude_file', nargs='?', help='rsync exclude rules file')
    return parser


def load_config(config_path: Optional[Path]) -> Optional[Configuration]:
    """
    Load configuration from file.

    Returns None and prints error on failure.
    """
    try:
        return parse_config(config_path)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return None
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        return None


def main(argv: list = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success or a declined cleanup, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    if config is None:
        return EXIT_GENERAL_ERROR

    if args.yes or args.no_reclaim:
        confirm = make_confirm(assume_yes=args.yes, assume_no=args.no_reclaim)
    else:
        confirm = make_confirm(assume_yes=config.auto_confirm)

    try:
        result = run_backup(
            source=args.source,
            destination=args.destination,
            include_file=args.include_file,
            exclude_file=args.exclude_file,
            config=config,
            confirm=confirm,
            verbose=args.verbose,
        )
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_GENERAL_ERROR

    return result.exit_code


if __name__ == '__main__':
    sys.exit(main())
