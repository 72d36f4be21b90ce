from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


load_dotenv()


def _optional_int(raw: Optional[str], default: Optional[int]) -> Optional[int]:
    """Parse an integer env value where '', 'none' and '0' mean disabled."""
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in ("", "none", "null", "off"):
        return None
    value = int(raw)
    return value if value > 0 else None


def _optional_float(raw: Optional[str], default: Optional[float]) -> Optional[float]:
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in ("", "none", "null", "off"):
        return None
    return float(raw)


def _flag(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Central configuration for LED-Sync.

    Values are loaded once from environment variables (with sensible defaults)
    and then exposed via typed properties.
    """

    def __init__(self) -> None:
        # State log file + retention
        self._log_file = Path(
            os.getenv("LEDSYNC_LOG_FILE", "runtime/data/result.txt")
        )
        self._max_log_entries = _optional_int(
            os.getenv("LEDSYNC_MAX_LOG_ENTRIES"), 2000
        )
        self._fsync = _flag(os.getenv("LEDSYNC_FSYNC"), True)

        # Channel fields carried by every state record
        raw_channels = os.getenv("LEDSYNC_CHANNELS", "led1,led2")
        self._channels = tuple(
            name.strip() for name in raw_channels.split(",") if name.strip()
        )

        # History length served to clients
        self._default_history = int(os.getenv("LEDSYNC_DEFAULT_HISTORY", "50"))
        self._max_history = int(os.getenv("LEDSYNC_MAX_HISTORY", "1000"))

        # Locking and time source
        self._lock_timeout = _optional_float(
            os.getenv("LEDSYNC_LOCK_TIMEOUT"), 5.0
        )
        self._timezone = os.getenv("LEDSYNC_TIMEZONE", "America/Los_Angeles")

        self._log_level = os.getenv("LEDSYNC_LOG_LEVEL", "INFO").upper()

    # ------------------------------------------------------------------
    # State log
    # ------------------------------------------------------------------

    @property
    def log_file(self) -> Path:
        return self._log_file

    @property
    def max_log_entries(self) -> Optional[int]:
        """Retention ceiling, or None when trimming is disabled."""
        return self._max_log_entries

    @property
    def fsync(self) -> bool:
        return self._fsync

    @property
    def channels(self) -> Tuple[str, ...]:
        if not self._channels:
            raise RuntimeError(
                "LEDSYNC_CHANNELS is empty. Configure at least one channel name, "
                "e.g. LEDSYNC_CHANNELS=led1,led2."
            )
        return self._channels

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def default_history(self) -> int:
        return self._default_history

    @property
    def max_history(self) -> int:
        return self._max_history

    # ------------------------------------------------------------------
    # Locking / time / logging
    # ------------------------------------------------------------------

    @property
    def lock_timeout(self) -> Optional[float]:
        return self._lock_timeout

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def log_level(self) -> str:
        return self._log_level


settings = Settings()
