import fcntl
import json
import multiprocessing

import pytest

from conftest import read_lines
from exceptions.exceptions import LockTimeoutError
from runtime.store.state_log import StateLog


def _append_worker(path, worker_id, count, max_entries):
    log = StateLog(path, max_entries=max_entries, lock_timeout=30.0, fsync=False)
    for n in range(count):
        log.append({"worker": worker_id, "n": n})


def _read_worker(path, rounds, history_limit):
    log = StateLog(path, lock_timeout=30.0)
    for _ in range(rounds):
        latest = log.read_latest()
        # the log is seeded with led1=ON before readers start
        assert latest["led1"] == "ON", latest
        assert "worker" in latest or "seeded" in latest, latest
        history = log.read_history(history_limit)
        assert 1 <= len(history) <= history_limit
        assert all(record["led1"] == "ON" for record in history)


def _run_workers(path, workers, count, max_entries):
    ctx = multiprocessing.get_context("fork")
    processes = [
        ctx.Process(target=_append_worker, args=(str(path), worker_id, count, max_entries))
        for worker_id in range(workers)
    ]
    for process in processes:
        process.start()
    for process in processes:
        process.join(timeout=60)
    assert [process.exitcode for process in processes] == [0] * workers


class TestLockTimeout:
    def test_writer_gives_up_while_another_process_holds_exclusive_lock(self, state_log):
        state_log.append({"led1": "ON"})
        state_log.lock_timeout = 0.05

        with open(state_log.path, "rb") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX)
            with pytest.raises(LockTimeoutError) as excinfo:
                state_log.append({"led1": "OFF"})
            with pytest.raises(LockTimeoutError):
                state_log.read_latest()

        assert excinfo.value.mode == "exclusive"
        assert state_log.read_latest()["led1"] == "ON"
        assert len(read_lines(state_log.path)) == 1

    def test_readers_share_the_lock(self, state_log):
        stored = state_log.append({"led2": "ON"})
        state_log.lock_timeout = 0.05

        with open(state_log.path, "rb") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_SH)
            assert state_log.read_latest() == stored
            assert state_log.read_history(5) == [stored]
            with pytest.raises(LockTimeoutError):
                state_log.append({"led2": "OFF"})

    def test_lock_is_released_after_a_failed_wait(self, state_log):
        state_log.append({"led1": "ON"})
        state_log.lock_timeout = 0.05

        with open(state_log.path, "rb") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX)
            with pytest.raises(LockTimeoutError):
                state_log.read_history(5)

        assert state_log.append({"led2": "ON"})["led2"] == "ON"

    def test_trim_skips_when_lock_unavailable(self, log_path, clock):
        log = StateLog(log_path, max_entries=1, clock=clock, fsync=False)
        log.append({"seq": 0})
        with open(log_path, "ab") as handle:
            handle.write(b'{"seq":1}\n')
        log.lock_timeout = 0.05

        with open(log_path, "rb") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_SH)
            assert log.trim() is False

        assert len(read_lines(log_path)) == 2


class TestConcurrentProcesses:
    def test_no_append_is_lost_or_interleaved(self, log_path):
        _run_workers(log_path, workers=4, count=25, max_entries=None)

        records = [json.loads(line) for line in read_lines(log_path)]
        assert len(records) == 100
        assert {(r["worker"], r["n"]) for r in records} == {
            (w, n) for w in range(4) for n in range(25)
        }
        for worker in range(4):
            ns = [r["n"] for r in records if r["worker"] == worker]
            assert ns == sorted(ns)

    def test_concurrent_appends_with_retention(self, log_path):
        _run_workers(log_path, workers=4, count=25, max_entries=30)

        records = [json.loads(line) for line in read_lines(log_path)]
        assert len(records) == 30
        # the very last append of the run is some worker's final one
        assert records[-1]["n"] == 24
        for worker in range(4):
            ns = [r["n"] for r in records if r["worker"] == worker]
            assert ns == sorted(ns)
        assert not log_path.with_name("result.txt.tmp").exists()

    def test_readers_see_whole_files_while_writers_trim(self, log_path):
        StateLog(log_path, fsync=False).append({"led1": "ON", "seeded": True})

        ctx = multiprocessing.get_context("fork")
        writers = [
            ctx.Process(target=_append_worker, args=(str(log_path), worker_id, 100, 5))
            for worker_id in range(3)
        ]
        readers = [
            ctx.Process(target=_read_worker, args=(str(log_path), 150, 10))
            for _ in range(3)
        ]
        for process in writers + readers:
            process.start()
        for process in writers + readers:
            process.join(timeout=120)

        assert [process.exitcode for process in readers] == [0, 0, 0]
        assert [process.exitcode for process in writers] == [0, 0, 0]

        records = [json.loads(line) for line in read_lines(log_path)]
        assert len(records) == 5
        assert all(record["led1"] == "ON" for record in records)
        assert not log_path.with_name("result.txt.tmp").exists()
