"""StateLog: append-only JSON Lines log of actuator (LED) state snapshots.

Layout on disk (one JSON object per line, newest last):

    {"led1":"ON","led2":"OFF","timestamp":"2025-03-01T10:00:00-08:00"}
    {"led1":"ON","led2":"ON","timestamp":"2025-03-01T10:00:05-08:00"}

Web clients append partial updates; the microcontroller polls the latest
record. Every operation opens the file, takes an OS advisory lock
(shared for reads, exclusive for writes) and releases it before
returning, so several server processes can share one log without any
in-process state.

Reads never load the whole file: lines are produced newest-first by a
chunked backward reader and parsing stops as soon as enough records are
found. Unparseable lines (e.g. a tail truncated by a crash) are skipped.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import stat
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from exceptions.exceptions import LockTimeoutError, StateLogError, StateLogIOError


logger = logging.getLogger(__name__)

ON = "ON"
OFF = "OFF"
TIMESTAMP_FIELD = "timestamp"
DEFAULT_CHANNELS = ("led1", "led2")

_LOCK_POLL_INTERVAL = 0.01


def iter_lines_reversed(handle: BinaryIO, chunk_size: int = 4096) -> Iterator[bytes]:
    """Yield the lines of a binary file from last to first.

    Reads fixed-size blocks backward from the end and splits them on
    b"\\n". Newlines are stripped; an empty trailing segment (the file
    ends with a newline) is yielded as b"" and left to the caller to
    skip. The first line of the file is yielded once the start is
    reached, newline or not.
    """
    handle.seek(0, os.SEEK_END)
    position = handle.tell()
    tail = b""
    while position > 0:
        step = min(chunk_size, position)
        position -= step
        handle.seek(position)
        block = handle.read(step) + tail
        parts = block.split(b"\n")
        # parts[0] may continue in the previous block
        tail = parts[0]
        for line in reversed(parts[1:]):
            yield line
    yield tail


def parse_record(line: bytes) -> Optional[Dict[str, Any]]:
    """Decode one log line, returning None unless it is a JSON object."""
    try:
        record = json.loads(line.decode("utf-8").strip())
    except (UnicodeDecodeError, ValueError):
        return None
    return record if isinstance(record, dict) else None


class StateLog:
    """File-backed log of actuator state records.

    Parameters
    ----------
    path:
        The JSON Lines file. Created (with parent directories) on the
        first append; never deleted.
    channels:
        Channel fields every record carries. They default to "OFF" when
        the log has no usable latest record.
    max_entries:
        Retention ceiling. After an append, a log holding more than this
        many lines is rewritten to keep only the newest ones. None or 0
        disables trimming.
    history_cap:
        Hard upper bound for `read_history` limits.
    lock_timeout:
        Seconds to wait for a lock before raising LockTimeoutError.
        None waits indefinitely.
    clock:
        Callable returning the current datetime, used for timestamps.
        Defaults to `datetime.now` in `timezone` (or the local zone).
    timezone:
        IANA zone name used by the default clock.
    fsync:
        Force each appended line to disk before the lock is released.
    chunk_size:
        Block size of the backward reader.
    """

    def __init__(
        self,
        path,
        channels: Sequence[str] = DEFAULT_CHANNELS,
        max_entries: Optional[int] = 2000,
        history_cap: int = 1000,
        lock_timeout: Optional[float] = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: Optional[str] = None,
        fsync: bool = True,
        chunk_size: int = 4096,
    ) -> None:
        if not channels:
            raise ValueError("StateLog needs at least one channel")
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.path = Path(path)
        self.channels = tuple(channels)
        self.max_entries = max_entries if max_entries and max_entries > 0 else None
        self.history_cap = max(0, int(history_cap))
        self.lock_timeout = lock_timeout
        self.fsync = fsync
        self.chunk_size = chunk_size

        if clock is None:
            tz = ZoneInfo(timezone) if timezone else None

            def clock() -> datetime:
                return datetime.now(tz)

        self.clock = clock

    @classmethod
    def from_settings(cls, settings, **overrides) -> "StateLog":
        """Build a StateLog from a configs.settings.Settings instance."""
        options = dict(
            path=settings.log_file,
            channels=settings.channels,
            max_entries=settings.max_log_entries,
            history_cap=settings.max_history,
            lock_timeout=settings.lock_timeout,
            timezone=settings.timezone,
            fsync=settings.fsync,
        )
        options.update(overrides)
        return cls(**options)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def now(self) -> str:
        """Current timestamp, ISO-8601 with offset at seconds precision."""
        current = self.clock()
        if current.tzinfo is None:
            current = current.astimezone()
        return current.isoformat(timespec="seconds")

    def default_state(self) -> Dict[str, Any]:
        """Record returned when the log has no usable latest line."""
        state: Dict[str, Any] = {channel: OFF for channel in self.channels}
        state[TIMESTAMP_FIELD] = self.now()
        return state

    def clamp_limit(self, limit: int) -> int:
        return max(0, min(int(limit), self.history_cap))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_latest(self) -> Dict[str, Any]:
        """Return the last record in the log, or the default record.

        Only the true last non-empty line is considered. If it does not
        parse, the default record is returned; older lines are not used
        as a fallback.
        """
        with self._open_shared() as handle:
            if handle is None:
                return self.default_state()
            return self._latest_from(handle)

    def read_history(self, limit: int, exclude_latest: bool = False) -> List[Dict[str, Any]]:
        """Return up to `limit` records, newest first.

        Malformed lines are dropped and do not count toward `limit`.
        With `exclude_latest`, the last non-empty line is skipped
        without being parsed.
        """
        limit = self.clamp_limit(limit)
        if limit == 0:
            return []
        with self._open_shared() as handle:
            if handle is None:
                return []
            return self._history_from(handle, limit, exclude_latest)

    def read_state(self, limit: int) -> Dict[str, Any]:
        """Latest record plus its preceding history, under one shared lock."""
        limit = self.clamp_limit(limit)
        with self._open_shared() as handle:
            if handle is None:
                return {**self.default_state(), "history": []}
            latest = self._latest_from(handle)
            history = self._history_from(handle, limit, True) if limit else []
        return {**latest, "history": history}

    def _latest_from(self, handle: BinaryIO) -> Dict[str, Any]:
        for line in iter_lines_reversed(handle, self.chunk_size):
            if not line:
                continue
            record = parse_record(line)
            if record is None:
                logger.warning(
                    "[STATE_LOG] Last line of %s is malformed; using default state",
                    self.path,
                )
                return self.default_state()
            missing = [key for key in (*self.channels, TIMESTAMP_FIELD) if key not in record]
            if missing:
                default = self.default_state()
                for key in missing:
                    record[key] = default[key]
            return record
        return self.default_state()

    def _history_from(self, handle: BinaryIO, limit: int, exclude_latest: bool) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        skip_latest = exclude_latest
        for line in iter_lines_reversed(handle, self.chunk_size):
            if not line:
                continue
            if skip_latest:
                skip_latest = False
                continue
            record = parse_record(line)
            if record is None:
                continue
            records.append(record)
            if len(records) >= limit:
                break
        return records

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, update: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge `update` onto the latest record, append it and return it.

        Fields absent from `update` keep their latest value; the
        timestamp is always refreshed. The read-merge-write runs under a
        single exclusive lock. Raises StateLogError if the line could
        not be written; a failed trim afterwards is only logged.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StateLogIOError(self.path, "create log directory", exc) from exc

        with self._open_exclusive("a+b") as handle:
            state = self._latest_from(handle)
            state.update(update)
            state[TIMESTAMP_FIELD] = self.now()

            line = json.dumps(state, ensure_ascii=False, separators=(",", ":"))
            data = line.encode("utf-8") + b"\n"
            try:
                if self._missing_final_newline(handle):
                    # keep a crash-truncated tail on its own line
                    data = b"\n" + data
                handle.write(data)
                handle.flush()
                if self.fsync:
                    os.fsync(handle.fileno())
            except OSError as exc:
                raise StateLogIOError(self.path, "append state record", exc) from exc

        logger.debug("[STATE_LOG] Appended to %s: %s", self.path, line)

        if self.max_entries is not None:
            self.trim()
        return state

    def trim(self) -> bool:
        """Keep only the newest `max_entries` lines.

        The kept lines go to `<path>.tmp`, which then replaces the log
        with os.replace, so readers see either the old or the new file.
        Returns True if the log was rewritten. Failures leave the log
        untouched and are logged, not raised.
        """
        if self.max_entries is None or not self.path.exists():
            return False

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with self._open_exclusive("rb") as handle:
                lines = [line for line in handle.read().split(b"\n") if line]
                if len(lines) <= self.max_entries:
                    return False

                kept = lines[-self.max_entries:]
                mode = stat.S_IMODE(os.fstat(handle.fileno()).st_mode)
                try:
                    with open(tmp_path, "wb") as tmp:
                        tmp.write(b"\n".join(kept) + b"\n")
                        tmp.flush()
                        if self.fsync:
                            os.fsync(tmp.fileno())
                    os.chmod(tmp_path, mode)
                    os.replace(tmp_path, self.path)
                except OSError:
                    logger.exception(
                        "[STATE_LOG] Failed to rewrite %s; original left intact",
                        self.path,
                    )
                    self._discard(tmp_path)
                    return False
        except (StateLogError, OSError) as exc:
            logger.warning("[STATE_LOG] Skipping trim of %s: %s", self.path, exc)
            return False

        logger.info(
            "[STATE_LOG] Trimmed %s from %d to %d entries",
            self.path,
            len(lines),
            len(kept),
        )
        return True

    # ------------------------------------------------------------------
    # Files and locks
    # ------------------------------------------------------------------

    @contextmanager
    def _open_shared(self) -> Iterator[Optional[BinaryIO]]:
        """Open the log for reading under a shared lock; None if absent."""
        try:
            handle = open(self.path, "rb")
        except FileNotFoundError:
            handle = None
        except OSError as exc:
            raise StateLogIOError(self.path, "open log for reading", exc) from exc

        if handle is None:
            yield None
            return

        with handle:
            self._acquire(handle, exclusive=False)
            try:
                yield handle
            finally:
                self._release(handle)

    @contextmanager
    def _open_exclusive(self, mode: str) -> Iterator[BinaryIO]:
        """Open the log with an exclusive lock on the file currently at path.

        A trim may replace the file while we wait for the lock; in that
        case the stale handle is dropped and the new file is opened.
        """
        while True:
            try:
                handle = open(self.path, mode)
            except OSError as exc:
                raise StateLogIOError(self.path, "open log for writing", exc) from exc
            try:
                self._acquire(handle, exclusive=True)
            except BaseException:
                handle.close()
                raise
            if self._is_current(handle):
                break
            logger.debug("[STATE_LOG] %s was replaced while waiting; reopening", self.path)
            self._release(handle)
            handle.close()

        try:
            yield handle
        finally:
            self._release(handle)
            handle.close()

    def _acquire(self, handle: BinaryIO, exclusive: bool) -> None:
        operation = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        mode = "exclusive" if exclusive else "shared"
        try:
            if self.lock_timeout is None:
                fcntl.flock(handle.fileno(), operation)
                return
            deadline = time.monotonic() + self.lock_timeout
            while True:
                try:
                    fcntl.flock(handle.fileno(), operation | fcntl.LOCK_NB)
                    return
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockTimeoutError(self.path, mode, self.lock_timeout) from None
                    time.sleep(_LOCK_POLL_INTERVAL)
        except OSError as exc:
            raise StateLogIOError(self.path, f"acquire {mode} lock", exc) from exc

    def _release(self, handle: BinaryIO) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _is_current(self, handle: BinaryIO) -> bool:
        try:
            on_disk = os.stat(self.path)
        except FileNotFoundError:
            return False
        opened = os.fstat(handle.fileno())
        return (on_disk.st_dev, on_disk.st_ino) == (opened.st_dev, opened.st_ino)

    @staticmethod
    def _missing_final_newline(handle: BinaryIO) -> bool:
        size = os.fstat(handle.fileno()).st_size
        if size == 0:
            return False
        handle.seek(size - 1)
        return handle.read(1) != b"\n"

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("[STATE_LOG] Could not remove temporary file %s", path)
