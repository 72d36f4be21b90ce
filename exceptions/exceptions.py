"""
Custom exceptions for the LED-Sync state log and its callers.

These exceptions are intentionally simple and descriptive.
They are used across:

  - runtime/store/
  - runtime/api/
  - cli/

Placing them at the project root (exceptions/) avoids circular imports
and keeps exception types consistent across modules.

Missing or empty log files and unparseable lines are NOT errors: reads
fall back to the default record or skip the line. Only lock and I/O
problems are raised.
"""


class StateLogError(Exception):
    """
    Base class for failures of the state log.

    Carries the log path so callers can report which file was involved.
    """

    def __init__(self, path, message):
        self.path = str(path)
        super().__init__(f"{message} (log file: {self.path})")


class LockTimeoutError(StateLogError):
    """
    Raised when a shared or exclusive lock on the log file could not be
    acquired within the configured timeout.
    """

    def __init__(self, path, mode, timeout):
        self.mode = mode
        self.timeout = timeout
        super().__init__(
            path,
            f"Timed out after {timeout:.2f}s waiting for {mode} lock",
        )


class StateLogIOError(StateLogError):
    """
    Raised when the log file cannot be opened, locked or written.

    The original OSError is kept as `cause` (and chained as __cause__).
    """

    def __init__(self, path, action, cause=None):
        self.action = action
        self.cause = cause
        details = f": {cause}" if cause is not None else ""
        super().__init__(path, f"Failed to {action}{details}")
