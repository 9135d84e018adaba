"""Allow running tmbackup as ``python -m tmbackup``."""

import sys

from tmbackup.cli import main


sys.exit(main())
