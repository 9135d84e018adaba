"""Signal handling during backup runs.

On SIGINT or SIGTERM the run stops at once. Nothing on the destination is
cleaned up: the in-progress marker and the partial snapshot stay behind so
the next run can resume from them.
"""

import logging
import signal
import threading
from typing import Any, Dict

from tmbackup.errors import InterruptedBySignal


class SignalHandler:
    """
    Turns termination signals into InterruptedBySignal.

    Raising from the handler unwinds out of the blocking rsync call, which
    kills the rsync child on the way out.

    Usage:
        handler = SignalHandler()
        handler.register()
        try:
            # ... do backup ...
        finally:
            handler.unregister()
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self):
        self._original_handlers: Dict[int, Any] = {}
        self._registered = False
        self._logger = logging.getLogger(__name__)

    def register(self) -> None:
        """
        Register handlers for SIGINT and SIGTERM.

        Signal handlers can only be registered from the main thread. From
        any other thread this logs and leaves the existing handlers alone.
        """
        if threading.current_thread() is not threading.main_thread():
            self._logger.debug(
                "Signal handlers not registered: not running in main thread"
            )
            self._registered = True
            return

        try:
            for sig in self.SIGNALS:
                self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
            self._registered = True
            self._logger.debug("Signal handlers registered")
        except ValueError as e:
            self._logger.debug(f"Signal handlers not registered: {e}")
            self._registered = True

    def unregister(self) -> None:
        """Restore the original signal handlers."""
        if not self._registered:
            return

        if self._original_handlers and threading.current_thread() is threading.main_thread():
            for sig, handler in self._original_handlers.items():
                signal.signal(sig, handler)

        self._original_handlers.clear()
        self._registered = False
        self._logger.debug("Signal handlers unregistered")

    def _handle_signal(self, signum: int, frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        self._logger.warning(f"{sig_name} caught.")
        raise InterruptedBySignal(sig_name)

    @property
    def is_registered(self) -> bool:
        """Return whether signal handlers are currently registered."""
        return self._registered
