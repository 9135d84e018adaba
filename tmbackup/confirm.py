"""Confirmation callbacks for deleting old snapshots.

The reclaim loop never talks to the terminal itself; it is handed one of
these callables, which take the question and return True to proceed.
"""

from typing import Callable, Optional
import sys


Confirm = Callable[[str], bool]

RECLAIM_PROMPT = (
    "It looks like there is no space left on the destination. "
    "Delete old backup? (Y/n) "
)


def auto_confirm(prompt: str) -> bool:
    """Always agree."""
    return True


def always_decline(prompt: str) -> bool:
    """Always refuse."""
    return False


def ask_user(prompt: str, input_func: Optional[Callable[[str], str]] = None) -> bool:
    """
    Ask on the terminal.

    An answer starting with n or N declines; anything else, including an
    empty answer, agrees. End of input declines, since nobody is there to
    agree.
    """
    if input_func is None:
        input_func = input
    try:
        answer = input_func(prompt)
    except EOFError:
        print(file=sys.stderr)
        return False
    return not answer.strip().lower().startswith("n")


def make_confirm(assume_yes: bool = False, assume_no: bool = False) -> Confirm:
    """Pick the confirmation callback for the command-line flags."""
    if assume_no:
        return always_decline
    if assume_yes:
        return auto_confirm
    return ask_user
